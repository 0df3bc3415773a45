import sys
import socket
import logging
import requests
import threading
from typing import Any, Dict, List, Optional
from unicornctl import settings


class LokiHandler(logging.Handler):
    """
    A logging handler that buffers records and pushes them to a Grafana Loki
    instance in batches.

    The controller is short-lived, so there is no background flusher: the
    buffer is pushed when it reaches the batch size and when the handler is
    flushed or closed (logging.shutdown does both at interpreter exit).
    """
    def __init__(self, url: str, org_id: Optional[str] = None, labels: Optional[Dict[str, str]] = None,
                 batch_size: int = settings.LOKI_BATCH_SIZE):
        """
        Initializes the Loki handler.

        :param url: The base URL of the Loki instance.
        :param org_id: The tenant ID for Loki (sent as 'X-Scope-OrgID').
        :param labels: Extra stream labels added to every record.
        :param batch_size: Push as soon as this many records are buffered.
        """
        super().__init__()
        self.url = f"{url.rstrip('/')}/loki/api/v1/push"
        self.org_id = org_id
        self.batch_size = batch_size
        self.labels = {"job": "unicornctl", "hostname": socket.gethostname()}
        self.labels.update(labels or {})
        self.log_buffer: List[Dict[str, Any]] = []
        self.buffer_lock = threading.Lock()

    def emit(self, record: logging.LogRecord) -> None:
        """
        Formats a log record and adds it to the buffer.

        :param record: The log record to be processed.
        """
        try:
            if record.name.startswith('proc.'):
                msg = record.getMessage()
            else:
                msg = self.format(record)

            log_entry = {
                "stream": {**self.labels, "level": record.levelname.lower(), "logger": record.name},
                "values": [[str(int(record.created * 1e9)), msg]],
            }
            with self.buffer_lock:
                self.log_buffer.append(log_entry)
                full = len(self.log_buffer) >= self.batch_size
            if full:
                self.flush()
        except Exception:
            self.handleError(record)

    def flush(self) -> None:
        """Pushes all buffered records to Loki."""
        with self.buffer_lock:
            logs_to_send, self.log_buffer = self.log_buffer, []
        if not logs_to_send:
            return

        headers = {'Content-Type': 'application/json'}
        if self.org_id:
            headers['X-Scope-OrgID'] = self.org_id
        try:
            response = requests.post(self.url, json={"streams": logs_to_send}, headers=headers, timeout=5)
            # 204 No Content is the success status for Loki push
            if response.status_code != 204:
                print(f"WARNING: Loki returned non-204 status: {response.status_code} - {response.text}", file=sys.stderr)
        except requests.RequestException as e:
            print(f"WARNING: Failed to send {len(logs_to_send)} logs to Loki: {e}", file=sys.stderr)

    def close(self) -> None:
        """Flushes the remaining records and closes the handler."""
        try:
            self.flush()
        finally:
            super().close()
