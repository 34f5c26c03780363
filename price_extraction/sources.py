"""
sources.py — Finding and downloading the latest price bulletin.

The publisher has no feed or index API. Bulletins land under a dated
upload path with the date spelled out in the file name:

  .../wp-content/uploads/2025/07/Price-Monitoring-July-26-2025.pdf

so the cheap way to find the newest one is to guess today's URL, HEAD it,
and walk back a day at a time. Weekends and holidays have no bulletin,
hence the 7-day window.

If no guess hits (the name prefix has changed before), we fall back to
scraping the price-monitoring listing page for PDF links and taking the
one with the latest date in its file name.
"""

from __future__ import annotations

import datetime as dt
import logging
import re
from dataclasses import dataclass
from typing import List, Optional
from urllib.parse import urljoin, urlsplit

import httpx
from bs4 import BeautifulSoup

from price_extraction.config import config

logger = logging.getLogger(__name__)

_MONTHS = (
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
)

# "July-26-2025", "Jul-6-2025"
_FILENAME_DATE_RE = re.compile(r"([A-Za-z]+)-(\d{1,2})-(\d{4})")
_BULLETIN_LINK_RE = re.compile(
    r"(Price-Monitoring|Daily-Price-Index|DPI).*?\.pdf$", re.IGNORECASE
)


class BulletinNotFoundError(RuntimeError):
    """No bulletin could be located in the search window."""


@dataclass(frozen=True)
class BulletinLink:
    url: str
    date: dt.date


def format_date_for_url(date: dt.date) -> str:
    """date(2025, 7, 6) → "July-06-2025"."""
    return f"{_MONTHS[date.month - 1]}-{date.day:02d}-{date.year}"


def candidate_urls(date: dt.date) -> List[str]:
    """Every URL the bulletin for `date` could plausibly live at."""
    base = config.source.uploads_url.rstrip("/")
    stamp = format_date_for_url(date)
    return [
        f"{base}/{date.year}/{date.month:02d}/{prefix}-{stamp}.pdf"
        for prefix in config.source.filename_prefixes
    ]


async def find_latest_pdf_url(
    client: httpx.AsyncClient,
    today: Optional[dt.date] = None,
    max_days_back: Optional[int] = None,
) -> Optional[BulletinLink]:
    """
    HEAD-probe guessed URLs from `today` backwards.

    Returns the first URL that answers 2xx, or None. Network errors on a
    single probe are logged and treated as a miss.
    """
    day = today or dt.date.today()
    days = max_days_back or config.source.max_days_back

    for _ in range(days):
        for url in candidate_urls(day):
            try:
                resp = await client.head(url, follow_redirects=True)
            except httpx.HTTPError as exc:
                logger.warning("HEAD %s failed: %s", url, exc)
                continue
            if resp.is_success:
                logger.info("Found bulletin for %s: %s", day.isoformat(), url)
                return BulletinLink(url=url, date=day)
            logger.debug("HEAD %s → %d", url, resp.status_code)
        day -= dt.timedelta(days=1)

    return None


def is_bulletin_url(url: str) -> bool:
    """
    True when `url` points at the publisher: same scheme and host as the
    configured uploads or listing URL. Anything else (internal hosts,
    file://, other sites) is refused before a request is made.
    """
    try:
        parts = urlsplit(url)
    except ValueError:
        return False
    if not parts.netloc:
        return False

    allowed = set()
    for base in (config.source.uploads_url, config.source.listing_url):
        base_parts = urlsplit(base)
        allowed.add((base_parts.scheme.lower(), base_parts.netloc.lower()))
    return (parts.scheme.lower(), parts.netloc.lower()) in allowed


def parse_date_from_filename(filename: str) -> Optional[dt.date]:
    """Pull the date out of names like "Daily-Price-Index-July-27-2025.pdf"."""
    for match in _FILENAME_DATE_RE.finditer(filename):
        month_name, day, year = match.groups()
        for fmt in ("%B-%d-%Y", "%b-%d-%Y"):
            try:
                return dt.datetime.strptime(f"{month_name}-{day}-{year}", fmt).date()
            except ValueError:
                continue
    return None


def find_pdf_links(html: str, base_url: str) -> List[BulletinLink]:
    """
    Dated bulletin links on a listing page, newest first.

    Links whose file name has no parsable date are skipped. Duplicate
    URLs (the page links the same PDF from a card and a list) are
    collapsed.
    """
    soup = BeautifulSoup(html, "lxml")
    links = {}
    for anchor in soup.find_all("a", href=_BULLETIN_LINK_RE):
        href = urljoin(base_url, anchor.get("href"))
        date = parse_date_from_filename(href.rsplit("/", 1)[-1])
        if date is None:
            continue
        links[href] = BulletinLink(url=href, date=date)

    return sorted(links.values(), key=lambda link: link.date, reverse=True)


async def discover_latest_bulletin(
    client: httpx.AsyncClient,
    today: Optional[dt.date] = None,
) -> BulletinLink:
    """
    Locate the newest bulletin: URL guessing first, listing page second.

    Raises:
        BulletinNotFoundError: Neither strategy produced a link.
    """
    link = await find_latest_pdf_url(client, today)
    if link is not None:
        return link

    listing_url = config.source.listing_url
    logger.info("No guessed URL answered; scanning listing page %s", listing_url)
    try:
        resp = await client.get(listing_url, follow_redirects=True)
        resp.raise_for_status()
    except httpx.HTTPError as exc:
        raise BulletinNotFoundError(f"Listing page fetch failed: {exc}") from exc

    links = find_pdf_links(resp.text, listing_url)
    if not links:
        raise BulletinNotFoundError(
            f"No dated bulletin PDF found within {config.source.max_days_back} "
            f"days or on {listing_url}"
        )
    return links[0]


async def fetch_pdf(client: httpx.AsyncClient, url: str) -> bytes:
    """
    Download a PDF.

    Raises:
        httpx.HTTPStatusError: Non-2xx response.
    """
    resp = await client.get(url, follow_redirects=True)
    resp.raise_for_status()
    logger.info("Downloaded %s (%.1f KB)", url, len(resp.content) / 1024)
    return resp.content


def make_client(transport: Optional[httpx.AsyncBaseTransport] = None) -> httpx.AsyncClient:
    """AsyncClient with the configured timeout and User-Agent."""
    return httpx.AsyncClient(
        timeout=config.source.timeout,
        headers={"User-Agent": config.source.user_agent},
        transport=transport,
    )
