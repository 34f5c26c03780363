"""
storage.py — Append-only report log.

Every extraction run becomes one new record. Nothing is ever updated or
deleted, so the log doubles as a history of how the parser read each
bulletin (raw_text is kept on every record for exactly that reason).

Records are stored as one JSON document per line. Reading "the latest"
is a scan of the file, which is fine at one bulletin a day.
"""

from __future__ import annotations

import datetime as dt
import json
import logging
import threading
import uuid
from pathlib import Path
from typing import Iterator, Optional

from pydantic import ValidationError

from price_extraction.config import config
from price_extraction.schemas import PriceReport, StoredReport

logger = logging.getLogger(__name__)


class ReportStore:
    """
    JSON-lines store for PriceReports.

    Usage:
        store = ReportStore("data/price_reports.jsonl")
        stored = store.insert(report)
        latest = store.latest()
    """

    def __init__(self, path: Optional[str] = None):
        self.path = Path(path or config.storage.path)
        self._lock = threading.Lock()

    def insert(self, report: PriceReport) -> StoredReport:
        """Append a new record. Returns it with its id and timestamp."""
        stored = StoredReport(
            id=uuid.uuid4().hex,
            stored_at=dt.datetime.now(dt.timezone.utc),
            report=report,
        )
        line = stored.model_dump_json()

        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(line + "\n")

        logger.info(
            "Stored report %s (%s, %d tables)",
            stored.id, report.date.isoformat(), len(report.tables),
        )
        return stored

    def all(self) -> Iterator[StoredReport]:
        """Every readable record, oldest first. Corrupt lines are skipped."""
        if not self.path.exists():
            return

        with open(self.path, "r", encoding="utf-8") as f:
            for lineno, line in enumerate(f, start=1):
                if not line.strip():
                    continue
                try:
                    yield StoredReport.model_validate(json.loads(line))
                except (json.JSONDecodeError, ValidationError) as exc:
                    logger.warning(
                        "Skipping unreadable record at %s:%d: %s",
                        self.path.name, lineno, exc,
                    )

    def latest(self) -> Optional[StoredReport]:
        """The most recently stored record, or None for an empty log."""
        latest: Optional[StoredReport] = None
        for record in self.all():
            if latest is None or record.stored_at >= latest.stored_at:
                latest = record
        return latest
