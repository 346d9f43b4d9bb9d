"""Logging setup for the servicetrack namespace (plain text or JSON lines)."""
from __future__ import annotations
import json
import logging
import sys
from datetime import datetime, timezone

LOGGER_NAME = 'servicetrack'


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
        }
        if record.exc_info and record.exc_info[1]:
            entry['exception'] = self.formatException(record.exc_info)
        return json.dumps(entry)


def configure_logging(level: str = 'INFO', json_lines: bool = False) -> logging.Logger:
    root = logging.getLogger(LOGGER_NAME)
    root.setLevel(getattr(logging, str(level).upper(), logging.INFO))
    # create_app may run many times in one process (tests); keep a single handler
    for h in list(root.handlers):
        if getattr(h, '_servicetrack', False):
            root.removeHandler(h)
    handler = logging.StreamHandler(sys.stdout)
    handler._servicetrack = True  # type: ignore[attr-defined]
    if json_lines:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter('%(asctime)s %(levelname)s %(name)s: %(message)s'))
    root.addHandler(handler)
    return root


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f'{LOGGER_NAME}.{name}')
