"""
Observability Layer

RESPONSIBILITY: Structured logging setup for every other layer.

WHAT THIS LAYER MUST NOT DO:
============================
- Modify system behavior
- Make decisions based on logged data

Components log through `logging.getLogger(__name__)` or an injected
logger; this module only decides how records are rendered.
"""

from __future__ import annotations
from datetime import datetime, timezone
from typing import Optional
import json
import logging


# Extra fields surfaced in JSON output when present on a record.
EXTRA_FIELDS = (
    'project', 'root_tx_id', 'tx_id', 'error_code', 'batch',
    'note_count', 'generation',
)


class JSONFormatter(logging.Formatter):
    """Format log records as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        log = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
        }
        for key in EXTRA_FIELDS:
            val = record.__dict__.get(key)
            if val is not None:
                log[key] = val
        if record.exc_info:
            log['exception'] = self.formatException(record.exc_info)
        return json.dumps(log, ensure_ascii=False)


def setup_logging(level: str = 'INFO', fmt: str = 'json', logger_name: Optional[str] = None):
    """Configure a handler on the root logger (or on `logger_name`)."""
    handler = logging.StreamHandler()
    if fmt == 'json':
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            '%(asctime)s %(levelname)s %(name)s: %(message)s',
        ))
    target = logging.getLogger(logger_name) if logger_name else logging.root
    target.addHandler(handler)
    target.setLevel(getattr(logging, level.upper(), logging.INFO))
    return handler
