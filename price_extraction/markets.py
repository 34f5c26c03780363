"""
markets.py — The known-market reference list.

When a bulletin's market rows come out of text extraction with single
spaces between the market label and the prices, splitting on whitespace
chops "Commonwealth Market/Quezon City" into four columns and every price
shifts right. The only reliable anchor at that point is the market name
itself, so we keep the list of markets the bulletin covers as data.

The list ships with the package (data/known_markets.json) and carries a
version string. Point KNOWN_MARKETS_PATH at another file to retarget the
parser to a different region without touching code.

Order matters: names are matched in list order and a name cannot match
inside text an earlier name already claimed. Put the longer of two names
sharing a suffix first ("New Las Piñas…" before "Las Piñas…").
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Optional, Tuple

from price_extraction.config import config

logger = logging.getLogger(__name__)

BUNDLED_MARKETS_PATH = Path(__file__).resolve().parent / "data" / "known_markets.json"


@dataclass(frozen=True)
class KnownMarkets:
    """A versioned, ordered catalogue of market names."""
    version: str
    names: Tuple[str, ...]
    region: str = ""


def load_known_markets(path: Optional[str] = None) -> KnownMarkets:
    """
    Read a known-market file.

    Expected shape: {"version": "...", "region": "...", "markets": [...]}.
    Blank and duplicate names are dropped, first occurrence wins.

    Raises:
        FileNotFoundError: The file does not exist.
        ValueError: The file is not valid JSON or has no "markets" list.
    """
    file_path = Path(path) if path else BUNDLED_MARKETS_PATH
    if not file_path.exists():
        raise FileNotFoundError(f"Known-market file not found: {file_path}")

    try:
        data = json.loads(file_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValueError(f"Known-market file {file_path} is not valid JSON: {exc}") from exc

    markets = data.get("markets") if isinstance(data, dict) else None
    if not isinstance(markets, list):
        raise ValueError(f"Known-market file {file_path} has no 'markets' list")

    names = tuple(dict.fromkeys(str(m).strip() for m in markets if str(m).strip()))
    known = KnownMarkets(
        version=str(data.get("version", "unversioned")),
        names=names,
        region=str(data.get("region", "")),
    )
    logger.info(
        "Loaded %d known markets (version %s) from %s",
        len(known.names), known.version, file_path.name,
    )
    return known


@lru_cache(maxsize=1)
def default_known_markets() -> KnownMarkets:
    """The configured list, loaded once per process."""
    return load_known_markets(config.parser.known_markets_path or None)
