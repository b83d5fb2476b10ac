import json
import logging
import multiprocessing
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger('crawler.writer')


def handle_request(request: Dict[str, Any], output_dir: Path) -> Dict[str, Any]:
    """Execute one writer request and build its acknowledgment"""
    key = request.get('key')
    try:
        if request.get('operation') != 'persist':
            raise ValueError(f"Unsupported operation: {request.get('operation')!r}")
        payload = request['payload']
        filepath = Path(output_dir) / key
        filepath.parent.mkdir(parents=True, exist_ok=True)
        with open(filepath, 'w') as f:
            json.dump(payload, f, indent=2)
        return {'status': 'ok', 'key': key, 'size': len(payload)}
    except Exception as e:
        return {'status': 'error', 'key': key, 'message': str(e)}


def writer_main(conn, output_dir: str) -> None:
    """Entry point of the writer process"""
    conn.send({'status': 'ready'})
    while True:
        try:
            request = conn.recv()
        except EOFError:
            break
        if request.get('operation') == 'shutdown':
            break
        conn.send(handle_request(request, Path(output_dir)))
    conn.close()


class ResultWriter:
    """
    Client for the writer process. Requests are sent without waiting;
    acknowledgments are collected and logged, never raised.
    """

    def __init__(self, output_dir: str, context=None, startup_timeout: float = 30.0):
        self.output_dir = output_dir
        self.context = context or multiprocessing.get_context('spawn')
        self.startup_timeout = startup_timeout
        self.acks: List[Dict[str, Any]] = []
        self._conn = None
        self._process: Optional[multiprocessing.Process] = None
        self._pending = 0

    def start(self) -> 'ResultWriter':
        parent_conn, child_conn = self.context.Pipe()
        self._process = self.context.Process(
            target=writer_main,
            args=(child_conn, self.output_dir),
            name='result-writer',
            daemon=True,
        )
        self._process.start()
        child_conn.close()
        self._conn = parent_conn
        if not parent_conn.poll(self.startup_timeout):
            logger.error("Result writer did not signal ready")
        else:
            parent_conn.recv()
        return self

    def persist(self, key: str, payload: Any) -> None:
        try:
            self._conn.send({'operation': 'persist', 'key': key, 'payload': payload})
            self._pending += 1
        except (OSError, ValueError, AttributeError) as e:
            logger.error(f"Could not send {key} to result writer: {str(e)}")
        self._drain(block=False)

    def _drain(self, block: bool, timeout: float = 30.0) -> None:
        while self._pending:
            try:
                if not self._conn.poll(timeout if block else 0):
                    if block:
                        logger.error(f"Result writer timed out with {self._pending} pending writes")
                    return
                ack = self._conn.recv()
            except (EOFError, OSError) as e:
                logger.error(f"Result writer channel closed: {str(e)}")
                self._pending = 0
                return
            self._pending -= 1
            self.acks.append(ack)
            if ack.get('status') == 'ok':
                logger.info(f"Saved {ack['size']} records to {ack['key']}")
            else:
                logger.error(f"Error saving {ack.get('key')}: {ack.get('message')}")

    def close(self) -> List[Dict[str, Any]]:
        """Wait for outstanding acknowledgments and stop the writer process"""
        if self._conn is None:
            return self.acks
        self._drain(block=True)
        try:
            self._conn.send({'operation': 'shutdown'})
        except (OSError, ValueError) as e:
            logger.debug(f"Result writer already gone: {str(e)}")
        self._conn.close()
        self._conn = None
        if self._process is not None:
            self._process.join(timeout=10)
            if self._process.is_alive():
                self._process.terminate()
        return self.acks

    def __enter__(self) -> 'ResultWriter':
        return self.start()

    def __exit__(self, *exc) -> None:
        self.close()
