from enum import Enum
from typing import AbstractSet, Dict, Iterable, Optional, Pattern
from urllib.parse import urlparse

from ecom_crawler.config.crawl_config import (
    DOMAIN_CONFIGS,
    GENERIC_PRODUCT_PATTERNS,
    SKIP_EXTENSIONS,
    DomainConfig,
)


class UrlClass(Enum):
    SKIP = 'skip'
    PRODUCT = 'product'
    FOLLOW = 'follow'


def has_skip_extension(url: str, extensions: Iterable[str] = SKIP_EXTENSIONS) -> bool:
    """True when the URL path ends with a non-HTML extension"""
    try:
        path = urlparse(url).path.lower()
    except ValueError:
        path = url.lower()
    return any(path.endswith(ext) for ext in extensions)


def _is_parsable(url: str) -> bool:
    try:
        parsed = urlparse(url)
        # Accessing port validates the netloc
        parsed.port
    except ValueError:
        return False
    return bool(parsed.scheme and parsed.netloc)


class ProductURLDetector:
    """Decides whether a discovered URL names a product page.

    The detector holds only immutable pattern tables, so one instance can be
    shared by every coroutine of a crawl.
    """

    def __init__(self, domain_configs: Optional[Dict[str, DomainConfig]] = None,
                 generic_patterns: Iterable[Pattern] = GENERIC_PRODUCT_PATTERNS,
                 skip_extensions: Iterable[str] = SKIP_EXTENSIONS):
        self.domain_configs = DOMAIN_CONFIGS if domain_configs is None else domain_configs
        self.generic_patterns = tuple(generic_patterns)
        self.skip_extensions = tuple(skip_extensions)

    def is_excluded(self, url: str, domain: str) -> bool:
        config = self.domain_configs.get(domain)
        if not config:
            return False
        return any(pattern.search(url) for pattern in config.excluded_patterns)

    def classify(self, url: str, domain: str,
                 known_products: AbstractSet[str] = frozenset()) -> UrlClass:
        """
        Classify a URL for the given domain.
        known_products: URLs already recorded for that domain
        """
        if has_skip_extension(url, self.skip_extensions) or url in known_products:
            return UrlClass.SKIP

        if self.is_excluded(url, domain):
            return UrlClass.SKIP

        matched = False
        config = self.domain_configs.get(domain)
        if config and any(pattern.search(url) for pattern in config.product_patterns):
            matched = True
        elif any(pattern.search(url) for pattern in self.generic_patterns):
            matched = True

        if matched and _is_parsable(url):
            return UrlClass.PRODUCT
        return UrlClass.FOLLOW
