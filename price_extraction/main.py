"""
main.py — Pipeline orchestration and CLI.

One run of the pipeline is five stages:

  1. discover: find the newest bulletin URL
  2. download: fetch the PDF
  3. extract:  PDF → text (pdfplumber)
  4. parse:    text → PriceReport (parser.build_report)
  5. store:    append to the report log

Stages 1-2 are the only network I/O and run on an httpx.AsyncClient;
the caller owns retries. Stage 4 never fails on odd input, it just finds
fewer tables. A run that finds none is still stored by default because
the raw text is what you need to fix the parser afterwards.

The CLI covers the three things we do by hand: pull today's bulletin
(`update`, also what cron runs), re-parse a local PDF or dumped text file
(`parse`), and look at what's stored (`latest`).
"""

from __future__ import annotations

import argparse
import asyncio
import datetime as dt
import logging
import sys
import time
from pathlib import Path
from typing import Optional

import httpx

from price_extraction.config import config
from price_extraction.ingestion import extract_pdf_file, extract_pdf_text
from price_extraction.parser import build_report
from price_extraction.schemas import PriceReport, StoredReport
from price_extraction.sources import (
    BulletinNotFoundError,
    discover_latest_bulletin,
    fetch_pdf,
    is_bulletin_url,
    make_client,
    parse_date_from_filename,
)
from price_extraction.storage import ReportStore

logger = logging.getLogger("price_extraction")


class PriceReportPipeline:
    """
    End-to-end bulletin pipeline.

    Usage:
        pipeline = PriceReportPipeline(ReportStore("data/reports.jsonl"))
        stored = asyncio.run(pipeline.update_latest())
    """

    def __init__(
        self,
        store: Optional[ReportStore] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.store = store or ReportStore()
        self._transport = transport

    async def update_latest(self, today: Optional[dt.date] = None) -> StoredReport:
        """
        Find, download, parse and store the newest bulletin.

        Raises:
            BulletinNotFoundError: Nothing published in the search window.
            httpx.HTTPError: The PDF download failed.
            ValueError: The PDF is unreadable, or it parsed to zero tables
                and empty reports are not being stored.
        """
        overall_start = time.time()

        async with make_client(self._transport) as client:
            t0 = time.time()
            logger.info("[1/5] Discovering latest bulletin ...")
            link = await discover_latest_bulletin(client, today)
            logger.info("  ✓ %s (%s) in %.1fs", link.url, link.date, time.time() - t0)

            t0 = time.time()
            logger.info("[2/5] Downloading ...")
            pdf_bytes = await fetch_pdf(client, link.url)
            logger.info("  ✓ %d bytes in %.1fs", len(pdf_bytes), time.time() - t0)

        # pdfplumber and the log write are blocking; keep them off the event loop.
        stored = await asyncio.to_thread(
            self.ingest_pdf, pdf_bytes, link.url, link.date, first_stage=3
        )
        logger.info("DONE in %.1fs", time.time() - overall_start)
        return stored

    async def download(self, url: str) -> bytes:
        """
        Fetch one bulletin PDF from the configured publisher.

        Raises:
            ValueError: `url` is not on the publisher's host.
            httpx.HTTPError: The download failed.
        """
        if not is_bulletin_url(url):
            raise ValueError(f"Not a bulletin URL: {url}")
        async with make_client(self._transport) as client:
            return await fetch_pdf(client, url)

    def ingest_pdf(
        self,
        pdf_bytes: bytes,
        source_url: str,
        date: dt.date,
        first_stage: int = 1,
    ) -> StoredReport:
        """Extract, parse and store an already-downloaded bulletin."""
        total = first_stage + 2
        t0 = time.time()
        logger.info("[%d/%d] Extracting text ...", first_stage, total)
        text = extract_pdf_text(pdf_bytes)
        logger.info("  ✓ %d chars in %.1fs", len(text), time.time() - t0)

        return self.ingest_text(text, source_url, date, first_stage=first_stage + 1)

    def ingest_text(
        self,
        text: str,
        source_url: str,
        date: dt.date,
        first_stage: int = 1,
    ) -> StoredReport:
        """Parse and store bulletin text."""
        total = first_stage + 1
        t0 = time.time()
        logger.info("[%d/%d] Parsing tables ...", first_stage, total)
        report = build_report(text, source_url, date)
        logger.info("  ✓ %d tables in %.1fs", len(report.tables), time.time() - t0)

        logger.info("[%d/%d] Storing ...", total, total)
        return self.store_report(report)

    def store_report(self, report: PriceReport) -> StoredReport:
        """
        Append a report to the log, applying the empty-report policy.

        Raises:
            ValueError: Zero tables and `store_empty_reports` is off.
        """
        if not report.tables:
            logger.warning(
                "No tables found in %s; template change or bad extraction?",
                report.source_url,
            )
            if not config.storage.store_empty_reports:
                raise ValueError(f"No tables extracted from {report.source_url}")
        return self.store.insert(report)


def _parse_date(value: str) -> dt.date:
    try:
        return dt.date.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Expected YYYY-MM-DD, got {value!r}")


def _cmd_update(pipeline: PriceReportPipeline, args: argparse.Namespace) -> None:
    stored = asyncio.run(pipeline.update_latest(args.today))
    print(stored.model_dump_json(indent=2, exclude={"report": {"raw_text"}}))


def _cmd_parse(pipeline: PriceReportPipeline, args: argparse.Namespace) -> None:
    path = Path(args.file)
    if path.suffix.lower() == ".pdf":
        text = extract_pdf_file(str(path))
    elif path.exists():
        text = path.read_text(encoding="utf-8")
    else:
        raise FileNotFoundError(f"File not found: {path}")

    date = args.date or parse_date_from_filename(path.name) or dt.date.today()
    source_url = args.url or path.resolve().as_uri()

    if args.no_store:
        report = build_report(text, source_url, date)
        print(report.model_dump_json(indent=2, exclude={"raw_text"}))
    else:
        stored = pipeline.ingest_text(text, source_url, date)
        print(stored.model_dump_json(indent=2, exclude={"report": {"raw_text"}}))


def _cmd_latest(pipeline: PriceReportPipeline, args: argparse.Namespace) -> None:
    stored = pipeline.store.latest()
    if stored is None:
        raise LookupError(f"No reports stored in {pipeline.store.path}")
    exclude = None if args.raw else {"report": {"raw_text"}}
    print(stored.model_dump_json(indent=2, exclude=exclude))


def main(argv=None):
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="price-extraction",
        description="Extract market and commodity price tables from daily price bulletins",
    )
    parser.add_argument("--store", default=None, help="Report log path (JSONL)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose logging")
    sub = parser.add_subparsers(dest="command", required=True)

    p_update = sub.add_parser("update", help="Fetch, parse and store the newest bulletin")
    p_update.add_argument("--today", type=_parse_date, default=None,
                          help="Start the search from this date (YYYY-MM-DD)")

    p_parse = sub.add_parser("parse", help="Parse a local PDF or text dump")
    p_parse.add_argument("file", help="Path to a bulletin PDF or extracted .txt")
    p_parse.add_argument("--date", type=_parse_date, default=None,
                         help="Bulletin date (default: from file name, else today)")
    p_parse.add_argument("--url", default=None, help="Source URL to record")
    p_parse.add_argument("--no-store", action="store_true",
                         help="Print the report without storing it")

    p_latest = sub.add_parser("latest", help="Print the most recently stored report")
    p_latest.add_argument("--raw", action="store_true", help="Include raw_text")

    args = parser.parse_args(argv)

    level = logging.DEBUG if args.verbose else getattr(logging, config.log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-7s | %(name)s | %(message)s",
        datefmt="%H:%M:%S",
    )

    pipeline = PriceReportPipeline(ReportStore(args.store))
    commands = {"update": _cmd_update, "parse": _cmd_parse, "latest": _cmd_latest}

    try:
        commands[args.command](pipeline, args)
    except FileNotFoundError as exc:
        logger.error("File not found: %s", exc)
        sys.exit(1)
    except BulletinNotFoundError as exc:
        logger.error("No bulletin found: %s", exc)
        sys.exit(1)
    except LookupError as exc:
        logger.error("%s", exc)
        sys.exit(1)
    except httpx.HTTPError as exc:
        logger.error("Download failed: %s", exc)
        sys.exit(1)
    except ValueError as exc:
        logger.error("Invalid input: %s", exc)
        sys.exit(1)


if __name__ == "__main__":
    main()
