import gzip
import logging
import zlib
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional, Set, Union

from lxml import etree

from ecom_crawler.config.crawl_config import get_domain
from ecom_crawler.crawler.fetcher import CrawlError, DecodeError, FetchError, Fetcher, build_headers

GZIP_MAGIC = b'\x1f\x8b'


class SitemapParseError(CrawlError):
    """Payload is not a sitemap index or URL set"""


@dataclass
class SitemapIndex:
    sitemaps: List[str] = field(default_factory=list)


@dataclass
class UrlSet:
    urls: List[str] = field(default_factory=list)


SitemapNode = Union[SitemapIndex, UrlSet]


def _local_name(tag) -> str:
    if not isinstance(tag, str):
        return ''
    return tag.rsplit('}', 1)[-1]


def _locations(root, entry_name: str) -> List[str]:
    # A document with a single entry still yields a list of one
    locations = []
    for entry in root:
        if _local_name(entry.tag) != entry_name:
            continue
        for child in entry:
            if _local_name(child.tag) == 'loc' and child.text and child.text.strip():
                locations.append(child.text.strip())
                break
    return locations


def parse_sitemap(payload: bytes) -> SitemapNode:
    parser = etree.XMLParser(resolve_entities=False, no_network=True, huge_tree=True)
    try:
        root = etree.fromstring(payload.strip(), parser=parser)
    except (etree.XMLSyntaxError, ValueError) as e:
        raise SitemapParseError(f"Malformed sitemap XML: {str(e)}") from e

    name = _local_name(root.tag)
    if name == 'sitemapindex':
        return SitemapIndex(_locations(root, 'sitemap'))
    if name == 'urlset':
        return UrlSet(_locations(root, 'url'))
    raise SitemapParseError(f"Unexpected sitemap root element <{name}>")


def decompress(url: str, body: bytes) -> bytes:
    """Gunzip .gz sitemaps and payloads that carry the gzip magic bytes"""
    if not (url.lower().endswith('.gz') or body[:2] == GZIP_MAGIC):
        return body
    try:
        return gzip.decompress(body)
    except (OSError, EOFError, zlib.error) as e:
        raise DecodeError(f"Could not decompress {url}: {str(e)}") from e


class SitemapResolver:
    """Walks sitemap trees and hands each leaf URL to ``on_url``"""

    def __init__(self, fetcher: Fetcher, on_url: Callable[[str], bool],
                 timeout: float = 15.0, logger: Optional[logging.Logger] = None,
                 schedule: Optional[Callable[[str, Callable[[], Awaitable]], Awaitable]] = None,
                 headers: Callable[[], dict] = build_headers):
        self.fetcher = fetcher
        self.on_url = on_url
        self.timeout = timeout
        self.logger = logger or logging.getLogger('crawler.sitemap')
        self.schedule = schedule
        self.headers = headers
        self.resolved: Set[str] = set()

    async def _fetch(self, url: str):
        async def do_fetch():
            return await self.fetcher.fetch(url, headers=self.headers(), timeout=self.timeout, binary=True)

        if self.schedule is None:
            return await do_fetch()
        return await self.schedule(get_domain(url), do_fetch)

    async def resolve(self, url: str) -> None:
        if url in self.resolved:
            self.logger.debug(f"Sitemap already resolved: {url}")
            return
        self.resolved.add(url)

        self.logger.info(f"Parsing sitemap: {url}")
        try:
            response = await self._fetch(url)
            body = response.body
            if isinstance(body, str):
                body = body.encode('utf-8')
            node = parse_sitemap(decompress(url, body))
        except (FetchError, DecodeError, SitemapParseError) as e:
            self.logger.error(f"Error parsing sitemap {url}: {str(e)}")
            return
        except ValueError as e:
            self.logger.error(f"Invalid sitemap URL {url}: {str(e)}")
            return

        if isinstance(node, SitemapIndex):
            self.logger.info(f"Found sitemap index with {len(node.sitemaps)} sitemaps")
            for child in node.sitemaps:
                await self.resolve(child)
        else:
            self.logger.info(f"Found {len(node.urls)} URLs in sitemap {url}")
            found = 0
            for location in node.urls:
                if self.on_url(location):
                    found += 1
            if found:
                self.logger.info(f"Sitemap {url} yielded {found} product URLs")
