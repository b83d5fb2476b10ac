import asyncio
import logging
from collections import Counter
from typing import Dict, List, Optional, Set
from urllib.parse import urljoin, urlparse, urlunparse

from ecom_crawler.config.crawl_config import CrawlSettings, get_domain
from ecom_crawler.crawler.document import DocumentParser, SoupDocumentParser
from ecom_crawler.crawler.fetcher import AiohttpFetcher, FetchError, Fetcher, FetchResponse, build_headers
from ecom_crawler.crawler.robots import RobotsResolver
from ecom_crawler.crawler.scheduler import CrawlScheduler
from ecom_crawler.crawler.sitemap import SitemapResolver
from ecom_crawler.detectors.json_state import JsonStateExtractor
from ecom_crawler.detectors.product_detector import ProductURLDetector, UrlClass, has_skip_extension

BLOCKED_STATUS = 403


class EcommerceCrawler:
    """
    One crawl-engine instance: robots.txt, then sitemaps, then link traversal
    for the domains in its settings.

    The instance owns its visited set and product store; every recursive call
    goes through ``self`` so nothing is shared with other engines.
    """

    def __init__(self, settings: CrawlSettings, fetcher: Optional[Fetcher] = None,
                 parser: Optional[DocumentParser] = None,
                 scheduler: Optional[CrawlScheduler] = None,
                 logger: Optional[logging.Logger] = None):
        settings.validate()
        self.settings = settings
        self.logger = logger or logging.getLogger('crawler')
        self.fetcher = fetcher or AiohttpFetcher(verify_ssl=settings.verify_ssl)
        self.parser = parser or SoupDocumentParser()
        self.scheduler = scheduler or CrawlScheduler(
            max_concurrent=settings.max_concurrent_requests,
            request_delay=settings.request_delay,
            logger=self.logger.getChild('scheduler'),
        )
        self.detector = ProductURLDetector(settings.domain_configs)
        self.json_extractor = JsonStateExtractor(
            max_depth=settings.max_json_depth,
            logger=self.logger.getChild('json'),
        )
        self.allowed_domains: Set[str] = set(settings.allowed_domains())

        self.visited_urls: Set[str] = set()
        self.results: Dict[str, Set[str]] = {domain: set() for domain in settings.domains}
        self.pages_per_domain: Counter = Counter()

        self.sitemap_resolver = SitemapResolver(
            self.fetcher,
            on_url=self.record_if_product,
            timeout=settings.sitemap_timeout,
            logger=self.logger.getChild('sitemap'),
            schedule=self.scheduler.schedule,
            headers=self._headers,
        )
        self.robots_resolver = RobotsResolver(
            self.fetcher,
            resolve_sitemap=self.sitemap_resolver.resolve,
            crawl_page=self.crawl_page,
            domain_config=settings.domain_config,
            timeout=settings.robots_timeout,
            logger=self.logger.getChild('robots'),
            schedule=self.scheduler.schedule,
            headers=self._headers,
        )

    def _headers(self) -> Dict[str, str]:
        return build_headers(self.settings.user_agents)

    def classify(self, url: str, domain: str) -> UrlClass:
        return self.detector.classify(url, domain, self.results.get(domain, frozenset()))

    def store_product_url(self, url: str, domain: str) -> None:
        self.results.setdefault(domain, set()).add(url)
        self.logger.info(f"Found product URL: {url}")

    def record_if_product(self, url: str, domain: Optional[str] = None) -> bool:
        """
        Classify a discovered URL under its own domain and store it if it is a product.
        URLs outside the allowed domains, or not on the expected domain, are ignored.
        """
        try:
            url_domain = get_domain(url)
        except ValueError:
            return False
        if url_domain not in self.allowed_domains:
            return False
        if domain is not None and url_domain != domain:
            return False
        if self.classify(url, url_domain) is UrlClass.PRODUCT:
            self.store_product_url(url, url_domain)
            return True
        return False

    def _should_skip(self, url: str, depth: int) -> bool:
        if url in self.visited_urls or depth > self.settings.max_depth:
            return True
        if has_skip_extension(url, self.detector.skip_extensions):
            return True
        budget = self.settings.max_pages_per_domain
        if budget is not None and self.pages_per_domain[get_domain(url)] >= budget:
            return True
        return False

    def _mirror_url(self, url: str, domain: str) -> Optional[str]:
        config = self.settings.domain_config(domain)
        if not config or not config.alt_domain:
            return None
        parsed = urlparse(url)
        return urlunparse(parsed._replace(netloc=config.alt_domain))

    async def _fetch_page(self, url: str, domain: str) -> FetchResponse:
        async def do_fetch():
            return await self.fetcher.fetch(
                url,
                headers=self._headers(),
                timeout=self.settings.page_timeout,
                accept_statuses=(BLOCKED_STATUS,),
            )

        return await self.scheduler.schedule(domain, do_fetch)

    async def crawl_page(self, url: str, depth: int, mirror_hops: int = 0) -> None:
        """Crawl a single page and process discovered URLs"""
        if self._should_skip(url, depth):
            return

        # Marked before the fetch so concurrent callers never dispatch it twice
        self.visited_urls.add(url)
        domain = get_domain(url)
        self.pages_per_domain[domain] += 1

        try:
            self.logger.debug(f"Crawling: {url} (depth: {depth})")
            response = await self._fetch_page(url, domain)

            if response.status == BLOCKED_STATUS:
                mirror = self._mirror_url(url, domain)
                if mirror is None:
                    self.logger.warning(f"Blocked (HTTP {BLOCKED_STATUS}) on {url}")
                elif mirror_hops >= self.settings.max_mirror_retries:
                    self.logger.warning(f"Mirror retries exhausted for blocked {url}")
                else:
                    self.logger.info(f"Trying alternative domain for blocked page: {mirror}")
                    await self.crawl_page(mirror, depth, mirror_hops + 1)
                return

            document = self.parser.parse(response.text())
            links = document.links()
        except FetchError as e:
            self.logger.error(f"Error crawling {url}: {str(e)}")
            return
        except Exception as e:
            self.logger.error(f"Error parsing HTML from {url}: {str(e)}")
            return

        self.logger.debug(f"Found {len(links)} links on {url}")

        tasks = []
        for link in links:
            try:
                target = self._process_link(link, url, depth)
            except Exception as e:
                self.logger.error(f"Error processing link {link!r} on {url}: {str(e)}")
                continue
            if target:
                tasks.append(self.crawl_page(target, depth + 1))

        if tasks:
            await asyncio.gather(*tasks)

        try:
            self.json_extractor.extract(document, url, domain, self.record_if_product)
        except Exception as e:
            self.logger.error(f"Error extracting JSON data from {url}: {str(e)}")

    def _process_link(self, link: str, page_url: str, depth: int) -> Optional[str]:
        """Record the link if it is a product; return it when it should be followed"""
        try:
            absolute_url = urljoin(page_url, link)
            parsed = urlparse(absolute_url)
            if parsed.scheme not in ('http', 'https'):
                return None
            absolute_url = urlunparse(parsed._replace(fragment=''))
            link_domain = get_domain(absolute_url)
        except ValueError as e:
            self.logger.debug(f"Skipping invalid link {link!r} on {page_url}: {str(e)}")
            return None

        if link_domain not in self.allowed_domains:
            return None
        if self.detector.is_excluded(absolute_url, link_domain):
            return None

        verdict = self.classify(absolute_url, link_domain)
        if verdict is UrlClass.PRODUCT:
            self.store_product_url(absolute_url, link_domain)
        elif verdict is UrlClass.FOLLOW and depth < self.settings.max_depth:
            return absolute_url
        return None

    async def crawl(self) -> Dict[str, List[str]]:
        """Run robots, sitemap and page stages for every configured seed"""
        settings = self.settings
        self.logger.info(f"Starting crawler for domains: {', '.join(settings.domains)}")
        try:
            await asyncio.gather(*(self.robots_resolver.resolve(url) for url in settings.robots_urls))
            await asyncio.gather(*(self.sitemap_resolver.resolve(url) for url in settings.sitemap_urls))
            await asyncio.gather(*(self.crawl_page(url, 0) for url in settings.start_urls))
        finally:
            await self.fetcher.close()

        self.logger.info(f"Crawling statistics: {self.get_statistics()}")
        return self.snapshot()

    def snapshot(self) -> Dict[str, List[str]]:
        """Immutable export of the product store"""
        return {domain: sorted(urls) for domain, urls in self.results.items()}

    def get_statistics(self) -> Dict:
        """Get crawling statistics"""
        domains = set(self.results) | set(self.pages_per_domain)
        return {
            domain: {
                'product_urls': len(self.results.get(domain, ())),
                'total_pages_crawled': self.pages_per_domain.get(domain, 0),
            }
            for domain in sorted(domains)
        }
