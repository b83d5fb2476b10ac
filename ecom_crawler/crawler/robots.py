import asyncio
import logging
import re
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional
from urllib.parse import urljoin

from ecom_crawler.config.crawl_config import DomainConfig, get_domain
from ecom_crawler.crawler.fetcher import FetchError, Fetcher, build_headers

SITEMAP_DIRECTIVE = re.compile(r'^\s*sitemap\s*:\s*(\S+)', re.IGNORECASE | re.MULTILINE)
ALLOW_DIRECTIVE = re.compile(r'^\s*allow\s*:\s*(\S+)', re.IGNORECASE | re.MULTILINE)


@dataclass
class RobotsDirectives:
    sitemaps: List[str] = field(default_factory=list)
    allows: List[str] = field(default_factory=list)


def parse_robots(text: str) -> RobotsDirectives:
    """Sitemap and Allow values in file order; comments are dropped"""
    lines = '\n'.join(line.split('#', 1)[0] for line in text.splitlines())
    return RobotsDirectives(
        sitemaps=SITEMAP_DIRECTIVE.findall(lines),
        allows=ALLOW_DIRECTIVE.findall(lines),
    )


class RobotsResolver:
    """
    Reads robots.txt for sitemap declarations and, for domains with category
    patterns, allow-listed category paths to seed the page crawl.
    """

    def __init__(self, fetcher: Fetcher,
                 resolve_sitemap: Callable[[str], Awaitable[None]],
                 crawl_page: Callable[[str, int], Awaitable[None]],
                 domain_config: Callable[[str], Optional[DomainConfig]],
                 timeout: float = 10.0, logger: Optional[logging.Logger] = None,
                 schedule: Optional[Callable[[str, Callable[[], Awaitable]], Awaitable]] = None,
                 headers: Callable[[], dict] = build_headers):
        self.fetcher = fetcher
        self.resolve_sitemap = resolve_sitemap
        self.crawl_page = crawl_page
        self.domain_config = domain_config
        self.timeout = timeout
        self.logger = logger or logging.getLogger('crawler.robots')
        self.schedule = schedule
        self.headers = headers

    async def _fetch_text(self, url: str) -> str:
        async def do_fetch():
            return await self.fetcher.fetch(url, headers=self.headers(), timeout=self.timeout)

        if self.schedule is None:
            response = await do_fetch()
        else:
            response = await self.schedule(get_domain(url), do_fetch)
        return response.text()

    async def resolve(self, robots_url: str) -> None:
        try:
            domain = get_domain(robots_url)
            self.logger.info(f"Parsing robots.txt for {domain}")
            directives = parse_robots(await self._fetch_text(robots_url))
        except (FetchError, ValueError) as e:
            self.logger.error(f"Error parsing robots.txt {robots_url}: {str(e)}")
            return

        for sitemap_url in directives.sitemaps:
            self.logger.info(f"Found sitemap in robots.txt: {sitemap_url}")
            try:
                full_url = urljoin(robots_url, sitemap_url)
            except ValueError as e:
                self.logger.error(f"Invalid sitemap URL in robots.txt {sitemap_url!r}: {str(e)}")
                continue
            await self.resolve_sitemap(full_url)

        config = self.domain_config(domain)
        if not config or not config.category_patterns:
            return

        category_urls = []
        for path in directives.allows:
            if not any(pattern.search(path) for pattern in config.category_patterns):
                continue
            try:
                full_url = urljoin(robots_url, path)
            except ValueError as e:
                self.logger.error(f"Invalid category path in robots.txt {path!r}: {str(e)}")
                continue
            self.logger.info(f"Found category path in robots.txt: {full_url}")
            category_urls.append(full_url)

        if category_urls:
            await asyncio.gather(*(self.crawl_page(url, 0) for url in category_urls))
