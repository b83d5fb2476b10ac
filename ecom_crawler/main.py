from flask import Flask, jsonify, request
import argparse
import logging
import os

from ecom_crawler.config.crawl_config import ConfigurationError, CrawlSettings
from ecom_crawler.crawler.coordinator import WorkerCoordinator
from ecom_crawler.utils.logger import setup_logger

app = Flask(__name__)


def run_crawl(settings: CrawlSettings) -> dict:
    coordinator = WorkerCoordinator(settings)
    report = coordinator.run()
    coordinator.save_results(report)
    statistics = report.get_statistics()
    logging.getLogger('crawler').info(f"Crawling statistics: {statistics}")
    return statistics


def settings_from_request(data: dict) -> CrawlSettings:
    overrides = {}
    if 'max_depth' in data:
        overrides['max_depth'] = int(data['max_depth'])
    if 'max_pages' in data:
        overrides['max_pages_per_domain'] = int(data['max_pages'])
    if 'workers' in data:
        overrides['workers'] = max(1, int(data['workers']))
    return CrawlSettings.for_domains(data['domains'], **overrides)


@app.route('/health', methods=['GET'])
def health():
    return jsonify({'status': 'ok'})


@app.route('/crawl', methods=['POST'])
def crawl():
    data = request.get_json(silent=True)
    if not data or not data.get('domains'):
        return jsonify({'error': 'No domains provided'}), 400

    try:
        settings = settings_from_request(data)
        settings.validate()
    except (ConfigurationError, TypeError, ValueError) as e:
        return jsonify({'error': str(e)}), 400

    statistics = run_crawl(settings)
    return jsonify({
        'status': 'success',
        'statistics': statistics
    })


def main(argv=None):
    parser = argparse.ArgumentParser(description='Discover product URLs across e-commerce domains')
    parser.add_argument('--domains', nargs='+', help='Domains to crawl (default: built-in list or CRAWL_DOMAINS)')
    parser.add_argument('--max-depth', type=int, help='Maximum link depth to follow')
    parser.add_argument('--workers', type=int, help='Number of worker processes')
    parser.add_argument('--output-dir', help='Directory for result files')
    parser.add_argument('--serve', action='store_true', help='Run the HTTP API instead of a single crawl')
    parser.add_argument('--debug', action='store_true', help='Enable debug logging')
    args = parser.parse_args(argv)

    setup_logger(logging.DEBUG if args.debug else logging.INFO)

    if args.serve:
        port = int(os.getenv('PORT', 5000))
        app.run(host='0.0.0.0', port=port)
        return 0

    settings = CrawlSettings.from_env(domains=args.domains)
    if args.max_depth is not None:
        settings.max_depth = args.max_depth
    if args.workers is not None:
        settings.workers = max(1, args.workers)
    if args.output_dir:
        settings.output_dir = args.output_dir

    try:
        settings.validate()
    except ConfigurationError as e:
        parser.error(str(e))

    run_crawl(settings)
    return 0


if __name__ == '__main__':
    raise SystemExit(main())
