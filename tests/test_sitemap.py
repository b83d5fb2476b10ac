"""Tests for sitemap parsing and recursive resolution."""

import gzip

import pytest

from conftest import FakeFetcher
from ecom_crawler.crawler.fetcher import DecodeError, FetchError
from ecom_crawler.crawler.sitemap import (
    SitemapIndex,
    SitemapParseError,
    SitemapResolver,
    UrlSet,
    decompress,
    parse_sitemap,
)

NS = 'xmlns="http://www.sitemaps.org/schemas/sitemap/0.9"'


def urlset(*locations):
    entries = ''.join(f'<url><loc>{loc}</loc><changefreq>daily</changefreq></url>' for loc in locations)
    return f'<?xml version="1.0" encoding="UTF-8"?><urlset {NS}>{entries}</urlset>'


def sitemap_index(*locations):
    entries = ''.join(f'<sitemap><loc>{loc}</loc></sitemap>' for loc in locations)
    return f'<?xml version="1.0" encoding="UTF-8"?><sitemapindex {NS}>{entries}</sitemapindex>'


def make_resolver(routes):
    fetcher = FakeFetcher(routes)
    recorded = []

    def on_url(url):
        recorded.append(url)
        return '/products/' in url

    return SitemapResolver(fetcher, on_url=on_url), fetcher, recorded


def test_parse_urlset_and_index():
    node = parse_sitemap(urlset('https://shop.test/products/a', 'https://shop.test/about').encode())
    assert node == UrlSet(['https://shop.test/products/a', 'https://shop.test/about'])

    node = parse_sitemap(sitemap_index('https://shop.test/s1.xml', 'https://shop.test/s2.xml.gz').encode())
    assert node == SitemapIndex(['https://shop.test/s1.xml', 'https://shop.test/s2.xml.gz'])


def test_single_entry_is_a_list_of_one():
    assert parse_sitemap(urlset('https://shop.test/products/only').encode()).urls == ['https://shop.test/products/only']
    assert parse_sitemap(sitemap_index('https://shop.test/one.xml').encode()).sitemaps == ['https://shop.test/one.xml']


def test_parse_without_namespace_and_with_whitespace():
    payload = b'\n  <urlset><url><loc>\n https://shop.test/products/x \n</loc></url><url></url></urlset>'
    assert parse_sitemap(payload).urls == ['https://shop.test/products/x']


def test_parse_rejects_other_documents():
    with pytest.raises(SitemapParseError):
        parse_sitemap(b'<html><body>Not found</body></html>')
    with pytest.raises(SitemapParseError):
        parse_sitemap(b'<urlset><url>')


def test_decompress():
    raw = urlset('https://shop.test/products/a').encode()
    assert decompress('https://shop.test/sitemap.xml.gz', gzip.compress(raw)) == raw
    # payloads carrying gzip magic bytes are unpacked whatever the URL says
    assert decompress('https://shop.test/sitemap.xml', gzip.compress(raw)) == raw
    assert decompress('https://shop.test/sitemap.xml', raw) == raw
    with pytest.raises(DecodeError):
        decompress('https://shop.test/sitemap.xml.gz', b'definitely not gzip')


@pytest.mark.asyncio
async def test_index_resolves_each_child_once_in_order():
    children = [f'https://shop.test/sitemap-{i}.xml' for i in range(5)]
    resolver, _, _ = make_resolver({'https://shop.test/sitemap.xml': sitemap_index(*children)})

    calls = []
    real_resolve = resolver.resolve

    async def spy(url):
        calls.append(url)
        if url == 'https://shop.test/sitemap.xml':
            await real_resolve(url)

    resolver.resolve = spy
    await resolver.resolve('https://shop.test/sitemap.xml')

    assert calls == ['https://shop.test/sitemap.xml'] + children


@pytest.mark.asyncio
async def test_gzip_sitemap_matches_plain_sitemap():
    locations = ['https://shop.test/products/a', 'https://shop.test/help', 'https://shop.test/products/b']
    xml = urlset(*locations)

    plain, _, plain_recorded = make_resolver({'https://shop.test/sitemap.xml': xml})
    await plain.resolve('https://shop.test/sitemap.xml')

    packed, _, packed_recorded = make_resolver({'https://shop.test/sitemap.xml.gz': gzip.compress(xml.encode())})
    await packed.resolve('https://shop.test/sitemap.xml.gz')

    assert plain_recorded == packed_recorded == locations


@pytest.mark.asyncio
async def test_corrupt_child_does_not_stop_siblings():
    routes = {
        'https://shop.test/sitemap.xml': sitemap_index(
            'https://shop.test/broken.xml.gz',
            'https://shop.test/missing.xml',
            'https://shop.test/garbage.xml',
            'https://shop.test/good.xml',
        ),
        'https://shop.test/broken.xml.gz': b'\x00\x01 not gzip',
        'https://shop.test/garbage.xml': '<html>oops',
        'https://shop.test/good.xml': urlset('https://shop.test/products/kept'),
    }
    resolver, fetcher, recorded = make_resolver(routes)

    await resolver.resolve('https://shop.test/sitemap.xml')

    assert recorded == ['https://shop.test/products/kept']
    assert 'https://shop.test/missing.xml' in fetcher.fetched()


@pytest.mark.asyncio
async def test_cyclic_sitemaps_terminate():
    routes = {
        'https://shop.test/a.xml': sitemap_index('https://shop.test/b.xml'),
        'https://shop.test/b.xml': sitemap_index('https://shop.test/a.xml', 'https://shop.test/leaf.xml'),
        'https://shop.test/leaf.xml': urlset('https://shop.test/products/z'),
    }
    resolver, fetcher, recorded = make_resolver(routes)

    await resolver.resolve('https://shop.test/a.xml')

    assert fetcher.fetched() == ['https://shop.test/a.xml', 'https://shop.test/b.xml', 'https://shop.test/leaf.xml']
    assert recorded == ['https://shop.test/products/z']


@pytest.mark.asyncio
async def test_fetch_error_is_logged_not_raised(caplog):
    resolver, _, recorded = make_resolver({'https://shop.test/sitemap.xml': FetchError('https://shop.test/sitemap.xml', 'Timed out')})

    await resolver.resolve('https://shop.test/sitemap.xml')

    assert recorded == []
    assert 'Error parsing sitemap https://shop.test/sitemap.xml' in caplog.text


@pytest.mark.asyncio
async def test_malformed_child_url_is_logged_when_scheduled(caplog):
    routes = {
        'https://shop.test/sitemap.xml': sitemap_index('https://[bad/s.xml', 'https://shop.test/good.xml'),
        'https://shop.test/good.xml': urlset('https://shop.test/products/kept'),
    }
    fetcher = FakeFetcher(routes)
    recorded = []
    domains = []

    async def schedule(domain, fn):
        domains.append(domain)
        return await fn()

    resolver = SitemapResolver(fetcher, on_url=recorded.append, schedule=schedule)

    await resolver.resolve('https://shop.test/sitemap.xml')

    assert recorded == ['https://shop.test/products/kept']
    assert domains == ['shop.test', 'shop.test']
    assert 'Invalid sitemap URL https://[bad/s.xml' in caplog.text
