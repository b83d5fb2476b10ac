import asyncio
import json
import random
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional, Sequence

import aiohttp

from ecom_crawler.config.crawl_config import USER_AGENTS


class CrawlError(Exception):
    """Base class for recoverable crawl failures"""


class FetchError(CrawlError):
    """Transport failure, timeout or an unacceptable status"""

    def __init__(self, url: str, message: str, status: Optional[int] = None):
        super().__init__(f"{message} ({url})")
        self.url = url
        self.status = status


class DecodeError(CrawlError):
    """Body could not be decompressed or decoded"""


@dataclass
class FetchResponse:
    url: str
    status: int
    body: Any
    content_type: str = ''

    def text(self) -> str:
        """Body as text, whatever form the transport handed back"""
        if isinstance(self.body, str):
            return self.body
        if isinstance(self.body, (bytes, bytearray)):
            try:
                return bytes(self.body).decode(self._charset(), errors='replace')
            except LookupError:
                return bytes(self.body).decode('utf-8', errors='replace')
        if self.body is None:
            return ''
        return json.dumps(self.body)

    def _charset(self) -> str:
        for part in self.content_type.split(';'):
            key, _, value = part.strip().partition('=')
            if key.lower() == 'charset' and value:
                return value.strip('"\'')
        return 'utf-8'


class Fetcher:
    """Interface every transport implements"""

    async def fetch(self, url: str, headers: Optional[Dict[str, str]] = None,
                    timeout: Optional[float] = None, binary: bool = False,
                    accept_statuses: Iterable[int] = ()) -> FetchResponse:
        raise NotImplementedError

    async def close(self) -> None:
        pass


def build_headers(user_agents: Sequence[str] = USER_AGENTS) -> Dict[str, str]:
    return {
        'User-Agent': random.choice(user_agents),
        'Accept': 'text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,*/*;q=0.8',
        'Accept-Language': 'en-US,en;q=0.9',
        'Referer': 'https://www.google.com/',
    }


class AiohttpFetcher(Fetcher):
    """Fetcher backed by one pooled aiohttp session"""

    def __init__(self, verify_ssl: bool = False, limit: int = 50):
        self.verify_ssl = verify_ssl
        self.limit = limit
        self._session: Optional[aiohttp.ClientSession] = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(ssl=self.verify_ssl, limit=self.limit)
            self._session = aiohttp.ClientSession(connector=connector)
        return self._session

    async def fetch(self, url: str, headers: Optional[Dict[str, str]] = None,
                    timeout: Optional[float] = None, binary: bool = False,
                    accept_statuses: Iterable[int] = ()) -> FetchResponse:
        session = self._get_session()
        accepted = set(accept_statuses)
        try:
            async with session.get(
                url,
                headers=headers or build_headers(),
                timeout=aiohttp.ClientTimeout(total=timeout),
                allow_redirects=True,
            ) as response:
                if not (200 <= response.status < 300) and response.status not in accepted:
                    raise FetchError(url, f"HTTP {response.status}", status=response.status)

                result = FetchResponse(
                    url=str(response.url),
                    status=response.status,
                    body=await response.read(),
                    content_type=response.headers.get('Content-Type', ''),
                )
                if not binary:
                    result.body = result.text()
                return result
        except asyncio.TimeoutError as e:
            raise FetchError(url, "Timed out") from e
        except aiohttp.ClientError as e:
            raise FetchError(url, f"Network error: {str(e)}") from e

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
