"""
Per-run deployment log.

Collects structured entries for one deploy or restore and writes them as a
text log plus a JSON document under the profile's logging path:

    <path>/<filename>-<session>.log
    <path>/<filename>-<session>.json

Each entry is also forwarded to the stdlib logger, so the console and the
rotating application log show the same events as they happen.
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from stagedeploy.models import LoggingConfig, timestamp_slug


logger = logging.getLogger(__name__)

LEVELS = {
    'info': logging.INFO,
    'success': logging.INFO,
    'warn': logging.WARNING,
    'error': logging.ERROR,
}


def _now_iso() -> str:
    moment = datetime.now(timezone.utc)
    return moment.strftime('%Y-%m-%dT%H:%M:%S') + f".{moment.microsecond // 1000:03d}Z"


class DeployLogger:
    """In-memory entry list for one run, saved to disk at the end."""

    def __init__(self, config: Optional[LoggingConfig] = None, session_id: Optional[str] = None):
        self.config = config
        self.session_id = session_id or timestamp_slug()
        self.entries: List[Dict[str, Any]] = []

    def set_config(self, config: LoggingConfig):
        self.config = config

    def info(self, message: str, details: Optional[Dict[str, Any]] = None):
        self._log('info', message, details)

    def success(self, message: str, details: Optional[Dict[str, Any]] = None):
        self._log('success', message, details)

    def warn(self, message: str, details: Optional[Dict[str, Any]] = None):
        self._log('warn', message, details)

    def error(self, message: str, details: Optional[Dict[str, Any]] = None):
        self._log('error', message, details)

    def _log(self, level: str, message: str, details: Optional[Dict[str, Any]]):
        entry = {
            'timestamp': _now_iso(),
            'level': level,
            'message': message,
        }
        if details:
            entry['details'] = details
        self.entries.append(entry)

        suffix = f" | {json.dumps(details, default=str)}" if details else ''
        logger.log(LEVELS[level], f"{message}{suffix}")

    def has_errors(self) -> bool:
        return any(entry['level'] == 'error' for entry in self.entries)

    def format_text(self) -> str:
        lines = []
        for entry in self.entries:
            level_tag = f"[{entry['level'].upper()}]".ljust(9)
            details = entry.get('details')
            details_str = f" | {json.dumps(details, default=str)}" if details else ''
            lines.append(f"{entry['timestamp']} {level_tag} {entry['message']}{details_str}")
        return '\n'.join(lines) + '\n'

    def to_dict(self) -> Dict[str, Any]:
        now = _now_iso()
        return {
            'sessionId': self.session_id,
            'startTime': self.entries[0]['timestamp'] if self.entries else now,
            'endTime': self.entries[-1]['timestamp'] if self.entries else now,
            'totalEntries': len(self.entries),
            'entries': self.entries,
        }

    def save(self) -> Path:
        """
        Write the text and JSON logs.

        Returns:
            Path of the text log

        Raises:
            ValueError: If no logging configuration was set
            OSError: If the files cannot be written
        """
        if self.config is None:
            raise ValueError("Logging configuration not set. Call set_config() first.")

        log_dir = Path(self.config.path)
        log_dir.mkdir(parents=True, exist_ok=True)

        base_name = f"{self.config.filename}-{self.session_id}"
        text_path = log_dir / f"{base_name}.log"
        json_path = log_dir / f"{base_name}.json"

        text_path.write_text(self.format_text(), encoding='utf-8')
        json_path.write_text(json.dumps(self.to_dict(), indent=2, default=str), encoding='utf-8')

        logger.info(f"Logs saved to: {text_path}")
        return text_path
