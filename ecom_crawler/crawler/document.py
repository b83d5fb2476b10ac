from typing import Callable, List, Optional

from bs4 import BeautifulSoup
from bs4.element import Tag

ScriptPredicate = Callable[[Optional[str], str], bool]


class Document:
    """Parsed page as seen by the crawler"""

    def links(self) -> List[str]:
        raise NotImplementedError

    def script_blocks(self, predicate: ScriptPredicate) -> List[str]:
        """Text of every script block for which predicate(type, text) holds"""
        raise NotImplementedError


class DocumentParser:
    """Turns fetched HTML into a Document"""

    def parse(self, html: str) -> Document:
        raise NotImplementedError


class SoupDocument(Document):
    def __init__(self, soup: BeautifulSoup):
        self.soup = soup

    def links(self) -> List[str]:
        hrefs = []
        for anchor in self.soup.find_all('a', href=True):
            href = anchor['href'].strip()
            if href:
                hrefs.append(href)
        return hrefs

    def script_blocks(self, predicate: ScriptPredicate) -> List[str]:
        blocks = []
        for script in self.soup.find_all('script'):
            if not isinstance(script, Tag):
                continue
            text = script.string if script.string is not None else script.get_text()
            if text and predicate(script.get('type'), text):
                blocks.append(text)
        return blocks


class SoupDocumentParser(DocumentParser):
    """BeautifulSoup with the stdlib html.parser backend"""

    def __init__(self, features: str = 'html.parser'):
        self.features = features

    def parse(self, html: str) -> Document:
        return SoupDocument(BeautifulSoup(html, self.features))
