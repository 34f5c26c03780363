"""
parser.py — Rebuild bulletin tables from extracted PDF text.

pdfplumber gives us the bulletin as plain lines. The table grid, column
boundaries and cell borders are all gone; what survives is runs of spaces
of varying width. Everything in this module is about recovering rows and
columns from that.

The bulletin has two table shapes:

  MARKET        Tomato        Onion        Cabbage
  Paco Market   40.00-48.00   not available  60.00

  COMMODITIES   LOW     HIGH    PREVAILING   AVERAGE
  Rice          45.00   50.00   48.00        47.50

A table starts at a line beginning with MARKET or COMMODITIES and ends at
a "Source:" or "Note:" line, a footnote starting with "*", the next header,
or the end of the text. Cells are split on runs of two or more spaces.
When a line has no such runs (extraction collapsed the spacing), we split
on any whitespace and, for market tables, fall back to anchoring on the
known-market list.

Nothing here raises on bad input. A cell that won't parse becomes None,
a row that won't split is skipped, a table with no rows is dropped.
"""

from __future__ import annotations

import datetime as dt
import logging
import re
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from price_extraction.config import ParserConfig, config
from price_extraction.markets import default_known_markets
from price_extraction.schemas import (
    CommodityEntry,
    CommodityTable,
    MarketRow,
    MarketTable,
    PriceRange,
    PriceReport,
    Table,
    TableType,
)

logger = logging.getLogger(__name__)

_COLUMN_GAP_RE = re.compile(r"\s{2,}")
_BOUNDARY_RE = re.compile(r"^(source:|note:|\*)", re.IGNORECASE)
_NOT_AVAILABLE_RE = re.compile(r"not available", re.IGNORECASE)
_MARKET_LABEL_RE = re.compile(r"market", re.IGNORECASE)

# A stray repeated header inside a commodity table ("LOW  HIGH  PREVAILING")
# lands its first label in the name column. Whole-cell match only, so
# "High Value Crops" or "Low-fat Milk" stay commodities.
_HEADER_KEYWORD_RE = re.compile(
    r"^(low|high|prevailing|average)(\s+price)?$", re.IGNORECASE
)

# Price cells as they appear after a known market name in collapsed text.
# "not available" and "n/a" hold a column's place as an empty cell.
_PRICE_TOKEN_RE = re.compile(
    r"\s*(\d+\.\d+(?:-\d+\.\d+)?|not available|n/a)(?!\S)",
    re.IGNORECASE,
)

_COMMODITY_FIELDS = (
    ("name", re.compile(r"commodit(?:y|ies)", re.IGNORECASE)),
    ("low", re.compile(r"low", re.IGNORECASE)),
    ("high", re.compile(r"high", re.IGNORECASE)),
    ("prevailing", re.compile(r"prevailing", re.IGNORECASE)),
    ("average", re.compile(r"average", re.IGNORECASE)),
)


@dataclass(frozen=True)
class TableHeader:
    """A classified header line. `labels[0]` is the row-type column."""
    index: int
    table_type: TableType
    labels: Tuple[str, ...]

    @property
    def columns(self) -> Tuple[str, ...]:
        return self.labels[1:]


class _State(Enum):
    SCANNING = "scanning"
    IN_MARKET_TABLE = "in_market_table"
    IN_COMMODITY_TABLE = "in_commodity_table"


# ── Line normalizer ───────────────────────────────────────────────────────


def normalize_lines(text: Optional[str]) -> List[str]:
    """Split on newlines, trim, drop blanks. Order is preserved."""
    if not text:
        return []
    return [line.strip() for line in text.split("\n") if line.strip()]


# ── Predicates ────────────────────────────────────────────────────────────


def is_market_header_line(line: str) -> bool:
    return line.upper().startswith("MARKET")


def is_commodity_header_line(line: str) -> bool:
    return line.upper().startswith("COMMODITIES")


def is_boundary_line(line: str) -> bool:
    """True for any line that closes the table currently being read."""
    return (
        bool(_BOUNDARY_RE.match(line))
        or is_market_header_line(line)
        or is_commodity_header_line(line)
    )


def is_category_line(line: str, settings: Optional[ParserConfig] = None) -> bool:
    settings = settings or config.parser
    if len(line) >= settings.category_max_length:
        return False
    lowered = line.lower()
    return any(keyword in lowered for keyword in settings.category_keywords)


# ── Category locator ──────────────────────────────────────────────────────


def locate_category(
    lines: Sequence[str],
    header_index: int,
    settings: Optional[ParserConfig] = None,
) -> str:
    """
    Find the section title above the header at `header_index`.

    Looks at up to `category_lookback` lines directly above the header,
    nearest first, and returns the first short line containing a category
    keyword with trailing colons/asterisks removed. Returns "" when nothing
    in the window qualifies.
    """
    settings = settings or config.parser
    first = max(0, header_index - settings.category_lookback)
    for idx in range(header_index - 1, first - 1, -1):
        candidate = lines[idx]
        if is_category_line(candidate, settings):
            return candidate.rstrip(":* \t").strip()
    return ""


# ── Header classifier ─────────────────────────────────────────────────────


def split_columns(line: str) -> List[str]:
    """Split a line into cells. See `_split_columns`."""
    return _split_columns(line)[0]


def classify_header(line: str, index: int = 0) -> Optional[TableHeader]:
    """
    Decide whether `line` opens a table, and of which type.

    Returns None for ordinary lines, for headers with fewer than two
    labels, and for MARKET headers whose own columns mention "market"
    (a mis-split header such as "MARKET  MARKET NAME  Tomato").
    """
    if is_market_header_line(line):
        table_type = TableType.MARKET
    elif is_commodity_header_line(line):
        table_type = TableType.COMMODITY
    else:
        return None

    labels = split_columns(line)
    if len(labels) < 2:
        logger.debug("Header at line %d has no columns: %r", index, line)
        return None

    if table_type is TableType.MARKET and any(
        _MARKET_LABEL_RE.search(label) for label in labels[1:]
    ):
        logger.debug("Rejecting malformed market header at line %d: %r", index, line)
        return None

    return TableHeader(index=index, table_type=table_type, labels=tuple(labels))


def find_next_header(lines: Sequence[str], start: int = 0) -> Optional[TableHeader]:
    """First valid header at or after `start`, or None."""
    for index, line in enumerate(lines[start:], start=start):
        header = classify_header(line, index)
        if header is not None:
            return header
    return None


# ── Price value parser ────────────────────────────────────────────────────


def parse_number(text: Optional[str]) -> Optional[float]:
    """
    Parse a numeric cell, keeping only digits, dots and minus signs.

    "1,250.00" → 1250.0, "P 45.00" → 45.0, "—" → None.
    """
    if text is None:
        return None
    cleaned = re.sub(r"[^\d.\-]", "", text)
    if not cleaned:
        return None
    try:
        return float(cleaned)
    except ValueError:
        return None


def parse_price_range(cell: Optional[str]) -> Tuple[Optional[float], Optional[float]]:
    """
    Turn a price cell into (low, high).

    "40.00-48.00" → (40.0, 48.0), "45.00" → (45.0, 45.0),
    "not available" / "" → (None, None). A reversed range is swapped
    so that low never exceeds high.
    """
    if cell is None or not cell.strip() or _NOT_AVAILABLE_RE.search(cell):
        return None, None

    if "-" in cell:
        left, _, right = cell.partition("-")
        low, high = _parse_side(left), _parse_side(right)
        if low is not None and high is not None and low > high:
            low, high = high, low
        return low, high

    value = _parse_side(cell)
    return value, value


# ── Market-row extractor ──────────────────────────────────────────────────


def split_market_label(label: str) -> Tuple[str, str]:
    """Split "Pritil Market/Manila" into ("Pritil Market", "Manila")."""
    market, _, city = label.partition("/")
    return market.strip(), city.strip()


def parse_market_row(line: str, commodities: Sequence[str]) -> Optional[MarketRow]:
    """Row-aligned parse of one market line, or None if it won't split."""
    cols = split_columns(line)
    if len(cols) < 2:
        return None
    return _build_market_row(cols[0], cols[1:], commodities)


def match_known_markets(
    text: str,
    commodities: Sequence[str],
    known_markets: Iterable[str],
) -> List[MarketRow]:
    """
    Pull market rows out of collapsed text by anchoring on known names.

    Each name is tried in list order. An occurrence counts only if it is
    followed by at least one price token and does not overlap text that
    an earlier name already matched. Up to len(commodities) tokens are
    taken, short rows are padded with empty prices. Rows come back in
    document order.
    """
    width = len(commodities)
    claimed: List[Tuple[int, int]] = []
    found: List[Tuple[int, MarketRow]] = []

    for name in known_markets:
        for match in re.finditer(re.escape(name), text):
            start, end = match.span()
            if _overlaps(claimed, start, end):
                continue

            cells: List[str] = []
            pos = end
            while len(cells) < width:
                token = _PRICE_TOKEN_RE.match(text, pos)
                if token is None:
                    break
                cells.append(token.group(1))
                pos = token.end()

            if not cells:
                continue

            claimed.append((start, pos))
            found.append((start, _build_market_row(name, cells, commodities)))
            break

    found.sort(key=lambda item: item[0])
    return [row for _, row in found]


def extract_market_rows(
    lines: Sequence[str],
    commodities: Sequence[str],
    known_markets: Iterable[str] = (),
) -> List[MarketRow]:
    """
    Rows for one market table, in document order.

    A line that splits cleanly on wide gaps into exactly one cell per
    commodity is taken row-aligned. Consecutive lines that don't are
    grouped, and the known-market matcher runs over each group's text.
    A group with no known-market match falls back to its row-aligned
    parse. Recovered rows never repeat a market already read row-aligned.
    """
    known = list(known_markets)
    parts: List[Tuple[bool, List[MarketRow]]] = []
    pending: List[str] = []

    for line in lines:
        cols, clean_split = _split_columns(line)
        if clean_split and len(cols) - 1 == len(commodities):
            if pending:
                parts.append((True, _recover_rows(pending, commodities, known)))
                pending = []
            parts.append((False, [_build_market_row(cols[0], cols[1:], commodities)]))
        else:
            pending.append(line)

    if pending:
        parts.append((True, _recover_rows(pending, commodities, known)))

    aligned_keys = {
        (row.market, row.city)
        for recovered, part in parts if not recovered
        for row in part
    }
    rows: List[MarketRow] = []
    for recovered, part in parts:
        for row in part:
            if recovered and (row.market, row.city) in aligned_keys:
                continue
            rows.append(row)
    return rows


def _recover_rows(
    lines: Sequence[str],
    commodities: Sequence[str],
    known: Sequence[str],
) -> List[MarketRow]:
    """Rows for a run of misaligned lines: known-market match, else row-aligned."""
    if known:
        blob = " ".join(" ".join(lines).split())
        matched = match_known_markets(blob, commodities, known)
        if matched:
            logger.debug(
                "Recovered %d rows from %d misaligned lines by known-market match",
                len(matched), len(lines),
            )
            return matched

    rows = []
    for line in lines:
        row = parse_market_row(line, commodities)
        if row is not None:
            rows.append(row)
    return rows


# ── Commodity-row extractor ───────────────────────────────────────────────


def map_commodity_columns(labels: Sequence[str]) -> Dict[str, int]:
    """
    Map field name → column index from the full header labels.

    {"name": 0, "low": 1, "high": 2, "prevailing": 3, "average": 4}
    Fields whose label is missing map to -1. First matching label wins.
    """
    mapping: Dict[str, int] = {}
    for field_name, pattern in _COMMODITY_FIELDS:
        mapping[field_name] = next(
            (idx for idx, label in enumerate(labels) if pattern.search(label)),
            -1,
        )
    return mapping


def parse_commodity_row(line: str, column_map: Dict[str, int]) -> Optional[CommodityEntry]:
    cols = split_columns(line)
    if len(cols) < 2:
        return None

    name = _cell(cols, column_map.get("name", -1))
    if not name or _HEADER_KEYWORD_RE.match(name):
        return None

    return CommodityEntry(
        name=name,
        low=parse_number(_cell(cols, column_map.get("low", -1))),
        high=parse_number(_cell(cols, column_map.get("high", -1))),
        prevailing=parse_number(_cell(cols, column_map.get("prevailing", -1))),
        average=parse_number(_cell(cols, column_map.get("average", -1))),
    )


def extract_commodity_entries(
    lines: Sequence[str],
    labels: Sequence[str],
) -> List[CommodityEntry]:
    column_map = map_commodity_columns(labels)
    entries = []
    for line in lines:
        entry = parse_commodity_row(line, column_map)
        if entry is not None:
            entries.append(entry)
    return entries


# ── Table assembler ───────────────────────────────────────────────────────


def iter_tables(
    lines: Iterable[str],
    known_markets: Optional[Sequence[str]] = None,
    settings: Optional[ParserConfig] = None,
) -> Iterator[Table]:
    """
    Lazily yield tables from normalized lines.

    SCANNING looks for a header. A header moves us into IN_MARKET_TABLE or
    IN_COMMODITY_TABLE, where lines are collected until a boundary. At the
    boundary the collected section is turned into a table (dropped if it
    has no rows) and we go back to SCANNING, which re-examines the boundary
    line in case it is the next header.
    """
    settings = settings or config.parser
    if known_markets is None:
        known_markets = default_known_markets().names

    history: deque = deque(maxlen=settings.category_lookback)
    state = _State.SCANNING
    header: Optional[TableHeader] = None
    category = ""
    body: List[str] = []

    for index, line in enumerate(lines):
        if state is not _State.SCANNING:
            if not is_boundary_line(line):
                body.append(line)
                history.append(line)
                continue

            table = _close_table(header, category, body, known_markets)
            if table is not None:
                yield table
            state = _State.SCANNING

        header = classify_header(line, index)
        if header is not None:
            window = list(history)
            category = locate_category(window + [line], len(window), settings)
            body = []
            state = (
                _State.IN_MARKET_TABLE
                if header.table_type is TableType.MARKET
                else _State.IN_COMMODITY_TABLE
            )
        history.append(line)

    if state is not _State.SCANNING:
        table = _close_table(header, category, body, known_markets)
        if table is not None:
            yield table


def parse_tables(
    text: Optional[str],
    known_markets: Optional[Sequence[str]] = None,
    settings: Optional[ParserConfig] = None,
) -> List[Table]:
    return list(iter_tables(normalize_lines(text), known_markets, settings))


def build_report(
    text: str,
    source_url: str,
    date: dt.date,
    known_markets: Optional[Sequence[str]] = None,
    settings: Optional[ParserConfig] = None,
) -> PriceReport:
    """
    Parse bulletin text into a PriceReport.

    Deterministic: the same text and metadata always give the same report.
    Zero tables is a valid result; callers decide what to do with it.
    """
    tables = parse_tables(text, known_markets, settings)
    n_market = sum(1 for t in tables if t.type == TableType.MARKET)
    logger.info(
        "Parsed %d tables (%d market, %d commodity) from %s",
        len(tables), n_market, len(tables) - n_market, source_url,
    )
    return PriceReport(
        date=date,
        source_url=source_url,
        tables=tables,
        raw_text=text or "",
    )


# ── Internal helpers ──────────────────────────────────────────────────────


def _split_columns(line: str) -> Tuple[List[str], bool]:
    """
    Split on runs of 2+ spaces; fall back to any whitespace if that gives
    fewer than two cells. The flag is False when the fallback was used.
    """
    cols = [c.strip() for c in _COLUMN_GAP_RE.split(line) if c.strip()]
    if len(cols) >= 2:
        return cols, True
    return line.split(), False


def _parse_side(text: str) -> Optional[float]:
    cleaned = re.sub(r"[^\d.]", "", text)
    if not cleaned:
        return None
    try:
        return float(cleaned)
    except ValueError:
        return None


def _cell(cols: Sequence[str], idx: int) -> Optional[str]:
    if idx < 0 or idx >= len(cols):
        return None
    return cols[idx].strip()


def _build_market_row(
    label: str,
    cells: Sequence[Optional[str]],
    commodities: Sequence[str],
) -> MarketRow:
    market, city = split_market_label(label)
    cells = list(cells[: len(commodities)])
    cells.extend([None] * (len(commodities) - len(cells)))

    prices = []
    for commodity, cell in zip(commodities, cells):
        low, high = parse_price_range(cell)
        prices.append(PriceRange(commodity=commodity, low=low, high=high))
    return MarketRow(market=market, city=city, prices=prices)


def _overlaps(spans: Sequence[Tuple[int, int]], start: int, end: int) -> bool:
    return any(start < s_end and s_start < end for s_start, s_end in spans)


def _close_table(
    header: Optional[TableHeader],
    category: str,
    body: Sequence[str],
    known_markets: Sequence[str],
) -> Optional[Table]:
    if header is None:
        return None

    if header.table_type is TableType.MARKET:
        commodities = list(header.columns)
        rows = extract_market_rows(body, commodities, known_markets)
        if not rows:
            logger.debug("Dropping empty market table at line %d", header.index)
            return None
        return MarketTable(category=category, commodities=commodities, markets=rows)

    entries = extract_commodity_entries(body, header.labels)
    if not entries:
        logger.debug("Dropping empty commodity table at line %d", header.index)
        return None
    return CommodityTable(category=category, entries=entries)
