import logging

BLUE = '\033[94m'
GREEN = '\033[92m'
RED = '\033[91m'
DARK_GREEN = '\033[32m'
YELLOW = '\033[93m'
RESET = '\033[0m'


class ColoredFormatter(logging.Formatter):
    def format(self, record):
        message = record.getMessage()

        if "Found product URL:" in message:
            prefix, url = message.split("Found product URL:", 1)
            colored = f"{prefix}{BLUE}Found product URL:{GREEN}{url}{RESET}"
        elif "Results saved to" in message or "Saved " in message:
            colored = f"{DARK_GREEN}{message}{RESET}"
        elif "Crawling statistics:" in message:
            colored = f"{YELLOW}{message}{RESET}"
        elif record.levelno >= logging.ERROR:
            colored = f"{RED}{message}{RESET}"
        else:
            colored = f"{GREEN}{message}{RESET}"

        record = logging.makeLogRecord(record.__dict__)
        record.msg, record.args = colored, None
        return super().format(record)


def setup_logger(level: int = logging.INFO, name: str = 'crawler') -> logging.Logger:
    """Configure console logging for the crawler"""
    logger = logging.getLogger(name)
    logger.setLevel(level)

    if not any(getattr(h, '_crawler_console', False) for h in logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(ColoredFormatter('%(message)s'))
        handler._crawler_console = True
        logger.addHandler(handler)

    return logger


class ShardLogHandler(logging.Handler):
    """Forwards a shard's log records to the coordinator as ``log`` messages"""

    def __init__(self, queue, shard_id: int, level: int = logging.NOTSET):
        super().__init__(level)
        self.queue = queue
        self.shard_id = shard_id

    def emit(self, record):
        try:
            self.queue.put({
                'type': 'log',
                'shard_id': self.shard_id,
                'level': record.levelno,
                'message': record.getMessage(),
            })
        except Exception:
            self.handleError(record)


def setup_shard_logger(queue, shard_id: int, level: int = logging.INFO,
                       name: str = 'crawler') -> logging.Logger:
    """Route a shard process's crawler logs through the coordinator channel"""
    logger = logging.getLogger(name)
    logger.setLevel(level)
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
    logger.addHandler(ShardLogHandler(queue, shard_id))
    logger.propagate = False
    return logger
