import json
import logging
from typing import Any, Callable, Iterator, List, Optional, Tuple
from urllib.parse import urljoin

from ecom_crawler.crawler.document import Document

STATE_MARKERS = ('__PRELOADED_STATE__', '__INITIAL_STATE__')
JSON_SCRIPT_TYPES = ('application/json', 'application/ld+json')
URL_KEYS = frozenset(['productUrl', 'product_url', 'url', 'href', 'link'])

_OPENERS = {'{': '}', '[': ']'}


def is_state_script(script_type: Optional[str], text: str) -> bool:
    if script_type and script_type.strip().lower() in JSON_SCRIPT_TYPES:
        return True
    return any(marker in text for marker in STATE_MARKERS)


def balanced_json(text: str, start: int = 0) -> Optional[str]:
    """
    Return the first balanced JSON object or array at or after start.
    Brackets inside string literals are ignored.
    """
    begin = -1
    for index in range(start, len(text)):
        if text[index] in _OPENERS:
            begin = index
            break
    if begin < 0:
        return None

    stack = []
    in_string = False
    escaped = False
    for index in range(begin, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == '\\':
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char in _OPENERS:
            stack.append(_OPENERS[char])
        elif char in ('}', ']'):
            if not stack or stack.pop() != char:
                return None
            if not stack:
                return text[begin:index + 1]
    return None


def extract_payload(text: str) -> Optional[str]:
    """JSON-bearing part of a script block"""
    seen_marker = False
    for marker in STATE_MARKERS:
        position = text.find(marker)
        if position < 0:
            continue
        seen_marker = True
        assign = text.find('=', position + len(marker))
        if assign < 0:
            continue
        payload = balanced_json(text, assign + 1)
        if payload is not None:
            return payload
    if seen_marker:
        return None
    return text.strip() or None


def iter_url_fields(data: Any, max_depth: int = 64) -> Iterator[str]:
    """Yield every string stored under a URL-like key, walking at most max_depth levels"""
    stack: List[Tuple[Any, int]] = [(data, 0)]
    while stack:
        node, depth = stack.pop()
        if depth > max_depth:
            continue
        if isinstance(node, dict):
            children = []
            for key, value in node.items():
                if key in URL_KEYS and isinstance(value, str):
                    yield value
                elif isinstance(value, (dict, list)):
                    children.append((value, depth + 1))
            stack.extend(reversed(children))
        elif isinstance(node, list):
            stack.extend((item, depth + 1) for item in reversed(node) if isinstance(item, (dict, list)))


class JsonStateExtractor:
    """Finds product URLs inside embedded page state (JSON scripts, __INITIAL_STATE__ blobs)"""

    def __init__(self, max_depth: int = 64, logger: Optional[logging.Logger] = None):
        self.max_depth = max_depth
        self.logger = logger or logging.getLogger('crawler.json')

    def candidate_urls(self, document: Document, page_url: str) -> List[str]:
        urls = []
        for block in document.script_blocks(is_state_script):
            payload = extract_payload(block)
            if not payload:
                continue
            try:
                data = json.loads(payload)
            except ValueError:
                continue
            for value in iter_url_fields(data, self.max_depth):
                try:
                    urls.append(urljoin(page_url, value.strip()))
                except ValueError:
                    continue
        return urls

    def extract(self, document: Document, page_url: str, domain: str,
                record: Callable[[str, str], bool]) -> int:
        """
        Feed every URL found in the page's embedded state to record(url, domain).
        Returns how many were recorded as products.
        """
        found = 0
        for url in self.candidate_urls(document, page_url):
            if record(url, domain):
                found += 1
        if found:
            self.logger.debug(f"Embedded state on {page_url} yielded {found} product URLs")
        return found
