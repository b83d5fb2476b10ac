import asyncio
import logging
import math
import multiprocessing
import queue
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Set

from ecom_crawler.config.crawl_config import CrawlSettings
from ecom_crawler.crawler.ecommerce_crawler import EcommerceCrawler
from ecom_crawler.storage.result_writer import ResultWriter
from ecom_crawler.utils.logger import setup_shard_logger


@dataclass
class ShardSpec:
    shard_id: int
    settings: CrawlSettings


@dataclass
class CrawlReport:
    products: Dict[str, Set[str]] = field(default_factory=dict)
    pages_crawled: Dict[str, int] = field(default_factory=dict)
    failed_shards: List[int] = field(default_factory=list)

    def get_statistics(self) -> Dict:
        domains = set(self.products) | set(self.pages_crawled)
        return {
            'domains': {
                domain: {
                    'product_urls': len(self.products.get(domain, ())),
                    'total_pages_crawled': self.pages_crawled.get(domain, 0),
                }
                for domain in sorted(domains)
            },
            'total_product_urls': sum(len(urls) for urls in self.products.values()),
            'failed_shards': list(self.failed_shards),
        }


def partition_domains(domains: List[str], workers: int) -> List[List[str]]:
    """Split domains into at most ``workers`` contiguous, non-empty shards"""
    if not domains:
        return []
    workers = max(1, workers)
    per_shard = math.ceil(len(domains) / workers)
    return [domains[i:i + per_shard] for i in range(0, len(domains), per_shard)]


def merge_snapshots(snapshots: Iterable[Dict[str, List[str]]],
                    domains: Iterable[str] = ()) -> Dict[str, Set[str]]:
    """Set union of shard snapshots; every domain in ``domains`` gets an entry"""
    merged: Dict[str, Set[str]] = {domain: set() for domain in domains}
    for snapshot in snapshots:
        for domain, urls in snapshot.items():
            merged.setdefault(domain, set()).update(urls)
    return merged


def output_filename(domain: str) -> str:
    return f"{domain.replace('.', '_')}_products.json"


def build_output_files(products: Dict[str, Set[str]]) -> Dict[str, list]:
    """Per-domain result files plus the aggregate all_products.json"""
    files = {}
    all_products = []
    for domain in sorted(products):
        urls = sorted(products[domain])
        files[output_filename(domain)] = [{'product_url': url} for url in urls]
        all_products.extend({'domain': domain, 'product_url': url} for url in urls)
    files['all_products.json'] = all_products
    return files


def run_shard(spec: ShardSpec, channel) -> None:
    """Process entry point: crawl one shard and post its snapshot"""
    logger = setup_shard_logger(channel, spec.shard_id)
    crawler = EcommerceCrawler(spec.settings, logger=logger)
    snapshot = asyncio.run(crawler.crawl())
    channel.put({
        'type': 'result',
        'shard_id': spec.shard_id,
        'data': snapshot,
        'pages_crawled': dict(crawler.pages_per_domain),
    })


class WorkerCoordinator:
    """
    Runs one crawl engine per domain shard in its own process and merges
    the snapshots they post back.
    """

    def __init__(self, settings: CrawlSettings,
                 shard_target: Callable[[ShardSpec, object], None] = run_shard,
                 context=None, logger: Optional[logging.Logger] = None,
                 poll_interval: float = 0.5):
        settings.validate()
        self.settings = settings
        self.shard_target = shard_target
        self.context = context or multiprocessing.get_context('spawn')
        self.logger = logger or logging.getLogger('crawler.coordinator')
        self.poll_interval = poll_interval

    def build_shards(self) -> List[ShardSpec]:
        return [
            ShardSpec(shard_id=i, settings=self.settings.restricted_to(domains))
            for i, domains in enumerate(partition_domains(self.settings.domains, self.settings.workers))
        ]

    def _handle_message(self, message: dict, results: Dict[int, dict]) -> None:
        if message.get('type') == 'result':
            results[message['shard_id']] = message
            self.logger.info(f"Received final results from worker {message['shard_id']}")
        elif message.get('type') == 'log':
            self.logger.log(message.get('level', logging.INFO),
                            f"[Worker {message['shard_id']}] {message['message']}")

    def run(self) -> CrawlReport:
        start_time = time.time()
        shards = self.build_shards()
        self.logger.info(f"Starting crawler with {len(shards)} worker processes...")

        channel = self.context.Queue()
        processes = {}
        for spec in shards:
            process = self.context.Process(
                target=self.shard_target,
                args=(spec, channel),
                name=f"crawl-shard-{spec.shard_id}",
            )
            process.start()
            processes[spec.shard_id] = process

        # Drain while shards run so large snapshots never block their exit
        results: Dict[int, dict] = {}
        while any(p.is_alive() for p in processes.values()):
            try:
                self._handle_message(channel.get(timeout=self.poll_interval), results)
            except queue.Empty:
                continue
        for process in processes.values():
            process.join()
        while True:
            try:
                self._handle_message(channel.get(timeout=self.poll_interval), results)
            except queue.Empty:
                break

        report = CrawlReport()
        for shard_id, process in processes.items():
            self.logger.info(f"Worker {shard_id} exited with code {process.exitcode}")
            if shard_id not in results:
                self.logger.error(f"Worker {shard_id} exited without results; continuing with remaining shards")
                report.failed_shards.append(shard_id)

        self.logger.info("All workers completed, merging results...")
        report.products = merge_snapshots(
            (results[shard_id]['data'] for shard_id in sorted(results)),
            self.settings.domains,
        )
        for message in results.values():
            for domain, count in message.get('pages_crawled', {}).items():
                report.pages_crawled[domain] = report.pages_crawled.get(domain, 0) + count

        duration = time.time() - start_time
        self.logger.info(f"Crawling completed in {duration:.2f} seconds.")
        return report

    def save_results(self, report: CrawlReport, writer: Optional[ResultWriter] = None) -> List[dict]:
        """Hand every output file to the writer process; returns its acknowledgments"""
        files = build_output_files(report.products)
        owns_writer = writer is None
        writer = writer or ResultWriter(self.settings.output_dir, context=self.context).start()
        try:
            for key, payload in files.items():
                writer.persist(key, payload)
        finally:
            acks = writer.close() if owns_writer else writer.acks
        total = len(files['all_products.json'])
        self.logger.info(f"Results saved to {self.settings.output_dir}: {total} product URLs in all_products.json")
        return acks
