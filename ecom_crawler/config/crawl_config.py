from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Pattern, Tuple
from urllib.parse import urlparse
import os
import re


class ConfigurationError(Exception):
    """Raised when the crawl cannot start because of missing configuration"""


@dataclass(frozen=True)
class DomainConfig:
    """Pattern rules for one supported domain"""
    domain: str
    product_patterns: Tuple[Pattern, ...] = ()
    excluded_patterns: Tuple[Pattern, ...] = ()
    category_patterns: Tuple[Pattern, ...] = ()
    alt_domain: Optional[str] = None


def _patterns(*expressions: str) -> Tuple[Pattern, ...]:
    return tuple(re.compile(expression) for expression in expressions)


DOMAIN_CONFIGS: Dict[str, DomainConfig] = {
    config.domain: config for config in [
        DomainConfig(
            domain='myntra.com',
            product_patterns=_patterns(
                r'/p/[a-zA-Z0-9\-_]+',
                r'/product/[a-zA-Z0-9\-_]+',
                r'/[a-zA-Z0-9\-_]+/buy$',
            ),
            excluded_patterns=_patterns(r'wishlist|cart|account|login'),
        ),
        DomainConfig(
            domain='virgio.com',
            product_patterns=_patterns(r'/products/[a-zA-Z0-9\-_]+'),
            excluded_patterns=_patterns(r'collections|category'),
        ),
        DomainConfig(
            domain='tatacliq.com',
            product_patterns=_patterns(r'/p-mp[a-zA-Z0-9]+'),
            excluded_patterns=_patterns(r'wishlist|cart|account'),
        ),
        DomainConfig(
            domain='nykaafashion.com',
            product_patterns=_patterns(
                r'/p/[a-zA-Z0-9\-_]+',
                r'/product-details/[a-zA-Z0-9\-_]+',
            ),
            excluded_patterns=_patterns(r'search|collections'),
            category_patterns=_patterns(r'/clothing/|/footwear/|/accessories/|/jewellery/'),
            alt_domain='intl.nykaafashion.com',
        ),
        DomainConfig(
            domain='intl.nykaafashion.com',
            product_patterns=_patterns(
                r'/p/[a-zA-Z0-9\-_]+',
                r'/product-details/[a-zA-Z0-9\-_]+',
            ),
            category_patterns=_patterns(r'/clothing/|/footwear/|/accessories/|/jewellery/'),
        ),
        DomainConfig(
            domain='westside.com',
            product_patterns=_patterns(r'/products/[a-zA-Z0-9\-_]+'),
            excluded_patterns=_patterns(r'collections|pages'),
        ),
    ]
}

# Shared by every domain, checked after the domain's own rules
GENERIC_PRODUCT_PATTERNS: Tuple[Pattern, ...] = _patterns(
    r'/products/[a-zA-Z0-9\-_]+',
    r'/apparel/[a-zA-Z0-9\-_]+',
    r'/p-[a-zA-Z0-9]+',
    r'/buy[a-zA-Z0-9]+',
    r'/p-mp[a-zA-Z0-9]+',
    r'/p/[a-zA-Z0-9\-_]+',
    r'/item/[a-zA-Z0-9\-_]+',
    r'/items/[a-zA-Z0-9\-_]+',
    r'/pdp/[a-zA-Z0-9\-_]+',
    r'/product/[a-zA-Z0-9\-_]+',
    r'/product-details/[a-zA-Z0-9\-_]+',
    r"/women's-clothing/[a-zA-Z0-9\-_]+",
    r"/men's-clothing/[a-zA-Z0-9\-_]+",
    r'/[a-zA-Z0-9\-_]+/buy$',
)

SKIP_EXTENSIONS: Tuple[str, ...] = (
    '.png', '.jpeg', '.jpg', '.gif', '.pdf', '.svg', '.webp',
    '.css', '.js', '.mp3', '.mp4', '.mov', '.zip', '.rar',
)

USER_AGENTS: Tuple[str, ...] = (
    'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) '
    'Chrome/120.0.0.0 Safari/537.36',
    'Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) '
    'Version/16.5 Safari/605.1.15',
    'Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) '
    'Chrome/120.0.0.0 Safari/537.36',
    'Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:109.0) Gecko/20100101 Firefox/119.0',
)

DEFAULT_DOMAINS: Tuple[str, ...] = (
    'virgio.com',
    'tatacliq.com',
    'westside.com',
    'nykaafashion.com',
)

# Seeds that differ from the https://www.<domain>/sitemap.xml convention
KNOWN_SITEMAPS: Dict[str, List[str]] = {
    'nykaafashion.com': ['https://www.nykaafashion.com/sitemap-v2/sitemap-index.xml'],
}


def get_domain(url: str) -> str:
    """Domain key of a URL: lowercased hostname without a leading www."""
    hostname = (urlparse(url).hostname or '').lower()
    if hostname.startswith('www.'):
        hostname = hostname[4:]
    return hostname


def _default_workers() -> int:
    return max(1, (os.cpu_count() or 1) - 1)


@dataclass
class CrawlSettings:
    """Run-wide knobs shared by every shard"""
    domains: List[str] = field(default_factory=list)
    start_urls: List[str] = field(default_factory=list)
    robots_urls: List[str] = field(default_factory=list)
    sitemap_urls: List[str] = field(default_factory=list)
    max_depth: int = 10
    max_pages_per_domain: Optional[int] = None
    max_concurrent_requests: int = 25
    request_delay: float = 0.1
    robots_timeout: float = 10.0
    sitemap_timeout: float = 15.0
    page_timeout: float = 15.0
    workers: int = field(default_factory=_default_workers)
    max_mirror_retries: int = 1
    max_json_depth: int = 64
    output_dir: str = 'urls'
    verify_ssl: bool = False
    user_agents: Tuple[str, ...] = USER_AGENTS
    domain_configs: Dict[str, DomainConfig] = field(default_factory=lambda: dict(DOMAIN_CONFIGS))

    @classmethod
    def for_domains(cls, domains: List[str], **overrides) -> 'CrawlSettings':
        """Settings with seed URLs derived for each domain"""
        domains = [get_domain(d if '://' in d else f'https://{d}') for d in domains]
        start_urls, robots_urls, sitemap_urls = [], [], []
        for domain in domains:
            # Bare registrable domains are served from www., explicit subdomains as-is
            base = f'https://{domain}' if domain.count('.') > 1 else f'https://www.{domain}'
            start_urls.append(f'{base}/')
            robots_urls.append(f'{base}/robots.txt')
            sitemap_urls.extend(KNOWN_SITEMAPS.get(domain, [f'{base}/sitemap.xml']))
        return cls(
            domains=domains,
            start_urls=start_urls,
            robots_urls=robots_urls,
            sitemap_urls=sitemap_urls,
            **overrides
        )

    @classmethod
    def from_env(cls, domains: Optional[List[str]] = None) -> 'CrawlSettings':
        if not domains:
            raw_domains = os.getenv('CRAWL_DOMAINS', '')
            domains = [d.strip() for d in raw_domains.split(',') if d.strip()] or list(DEFAULT_DOMAINS)

        overrides = {}
        if os.getenv('CRAWL_MAX_DEPTH'):
            overrides['max_depth'] = int(os.getenv('CRAWL_MAX_DEPTH'))
        if os.getenv('CRAWL_MAX_PAGES'):
            overrides['max_pages_per_domain'] = int(os.getenv('CRAWL_MAX_PAGES'))
        if os.getenv('CRAWL_CONCURRENCY'):
            overrides['max_concurrent_requests'] = int(os.getenv('CRAWL_CONCURRENCY'))
        if os.getenv('CRAWL_REQUEST_DELAY_MS'):
            overrides['request_delay'] = int(os.getenv('CRAWL_REQUEST_DELAY_MS')) / 1000
        if os.getenv('CRAWL_WORKERS'):
            overrides['workers'] = max(1, int(os.getenv('CRAWL_WORKERS')))
        if os.getenv('CRAWL_OUTPUT_DIR'):
            overrides['output_dir'] = os.getenv('CRAWL_OUTPUT_DIR')

        return cls.for_domains(domains, **overrides)

    def validate(self) -> None:
        if not self.domains:
            raise ConfigurationError('No domains configured')
        if self.max_concurrent_requests < 1:
            raise ConfigurationError('max_concurrent_requests must be at least 1')
        if self.max_depth < 0:
            raise ConfigurationError('max_depth must not be negative')

    def domain_config(self, domain: str) -> Optional[DomainConfig]:
        return self.domain_configs.get(domain)

    def allowed_domains(self) -> List[str]:
        """Configured domains plus the mirrors they fall back to"""
        allowed = list(self.domains)
        for domain in self.domains:
            config = self.domain_config(domain)
            if config and config.alt_domain and config.alt_domain not in allowed:
                allowed.append(config.alt_domain)
        return allowed

    def restricted_to(self, domains: List[str]) -> 'CrawlSettings':
        """Copy of these settings holding only the seeds of the given domains"""
        keep = set(domains)
        return replace(
            self,
            domains=[d for d in self.domains if d in keep],
            start_urls=[u for u in self.start_urls if get_domain(u) in keep],
            robots_urls=[u for u in self.robots_urls if get_domain(u) in keep],
            sitemap_urls=[u for u in self.sitemap_urls if get_domain(u) in keep],
        )
