"""
VeriFace - Structured Audit Logger
==================================
Records every liveness and face-matching decision in JSONL format so a
KYC reviewer can reconstruct what the engine saw and decided.

Key Features:
  - JSONL (Newline Delimited JSON) format
  - Thread-safe writes (one file handle, one lock)
  - Levels: AUDIT, WARN, ERROR, SYSTEM
  - NumPy values (descriptors, landmark arrays) serialize cleanly
"""

import json
import logging
import os
import sys
import threading
import time
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

import numpy as np

from veriface_utils import CONFIG

_log = logging.getLogger("VeriFaceAudit")


class AuditJSONEncoder(json.JSONEncoder):
    """Handles NumPy, Enum and datetime values for JSON serialization."""
    def default(self, obj):
        if isinstance(obj, np.ndarray):
            return obj.tolist()
        if isinstance(obj, np.floating):
            return float(obj)
        if isinstance(obj, np.integer):
            return int(obj)
        if isinstance(obj, np.bool_):
            return bool(obj)
        if isinstance(obj, Enum):
            return obj.value
        if isinstance(obj, datetime):
            return obj.isoformat()
        return super().default(obj)


class AuditLogger:
    """
    Append-only decision log for VeriFace.

    One instance may be shared by concurrent sessions; each entry is
    written and flushed under a lock.
    """

    FILENAME = "veriface_audit.jsonl"

    def __init__(self, log_dir: str = "logs"):
        self.log_dir = log_dir
        os.makedirs(self.log_dir, exist_ok=True)

        self.log_path = os.path.join(self.log_dir, self.FILENAME)
        self._file = open(self.log_path, "a", encoding="utf-8")
        self._lock = threading.Lock()

        self.log({
            "event": "system_startup",
            "python_version": sys.version,
            "platform": sys.platform,
        }, level="SYSTEM")

    def log(self, data: Dict[str, Any], level: str = "AUDIT", event: Optional[str] = None):
        """Append one log entry."""
        entry = {
            "timestamp": time.time(),
            "level": level,
            "event": event or data.get("event", "unknown"),
            "data": data,
        }
        line = json.dumps(entry, cls=AuditJSONEncoder) + "\n"

        with self._lock:
            if self._file.closed:
                return
            self._file.write(line)
            self._file.flush()

    def log_liveness(self, result_data: Dict[str, Any]):
        self.log(result_data, level="AUDIT", event="liveness_result")

    def log_comparison(self, result_data: Dict[str, Any]):
        self.log(result_data, level="AUDIT", event="face_comparison")

    def warn(self, message: str, context: Optional[Dict] = None):
        """Log structured warning."""
        _log.warning(message)
        self.log({"message": message, "context": context}, level="WARN", event="system_warning")

    def error(self, message: str, exception: Optional[Exception] = None):
        """Log structured error with exception details."""
        _log.error(message)
        err_details = str(exception) if exception else None
        self.log({"message": message, "exception": err_details}, level="ERROR", event="system_error")

    def close(self):
        """Clean shutdown."""
        with self._lock:
            if self._file.closed:
                return
        self.log({"message": "Audit logger shutting down"}, level="SYSTEM", event="system_shutdown")
        with self._lock:
            self._file.close()


_audit_logger = None
_audit_logger_lock = threading.Lock()


def get_audit_logger(log_dir: Optional[str] = None) -> Optional[AuditLogger]:
    """Process-wide AuditLogger, created on first use.

    Returns None when `audit.enabled` is false in config.yaml.
    """
    global _audit_logger
    if not CONFIG["audit"]["enabled"]:
        return None
    with _audit_logger_lock:
        if _audit_logger is None:
            _audit_logger = AuditLogger(log_dir or CONFIG["audit"]["log_dir"])
        return _audit_logger
