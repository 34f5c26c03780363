"""
config.py — Central configuration for the price bulletin extractor.

Every tunable lives here: the parser heuristics, where bulletins are
published, and where extracted reports get stored. Most values can be
overridden with environment variables so the same build runs against a
local JSONL file in dev and a mounted volume in the container.

The parser constants (category lookback window, title length cap) were
tuned against a few months of NCR daily price bulletins. They are knobs,
not invariants: a bulletin with a taller title block may need a bigger
lookback.
"""

from dataclasses import dataclass, field
import os
import logging

logger = logging.getLogger(__name__)


@dataclass
class ParserConfig:
    """
    Heuristics for the text-to-table engine.

    Section titles in the bulletin sit one to three lines above each table
    header (title, optional subtitle, optional unit line). Four lines of
    lookback covers every layout we have seen. Titles are short; the
    60-character cap keeps footnote paragraphs from being read as titles.
    """
    category_lookback: int = 4
    category_max_length: int = 60
    category_keywords: tuple = (
        "rice", "vegetable", "fruit", "fish", "meat", "egg", "spice",
        "sugar", "poultry", "livestock", "commodity", "summary", "other",
    )
    # Empty string means "use the list bundled with the package".
    known_markets_path: str = os.getenv("KNOWN_MARKETS_PATH", "")


@dataclass
class SourceConfig:
    """
    Where bulletins live and how we go looking for them.

    The publisher uploads one PDF per business day under a dated
    wp-content path. The file name prefix changed at least once
    (Price-Monitoring-… vs Daily-Price-Index-…), so we probe both.
    """
    listing_url: str = os.getenv(
        "PRICE_LISTING_URL", "https://www.da.gov.ph/price-monitoring/"
    )
    uploads_url: str = os.getenv(
        "PRICE_UPLOADS_URL", "https://www.da.gov.ph/wp-content/uploads"
    )
    filename_prefixes: tuple = ("Price-Monitoring", "Daily-Price-Index")
    max_days_back: int = 7
    timeout: float = 30.0
    user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"
    )


@dataclass
class StorageConfig:
    """Append-only report log. One JSON document per line."""
    path: str = os.getenv("PRICE_STORE_PATH", "data/price_reports.jsonl")
    # A bulletin that parses to zero tables still carries its raw text,
    # which is the only way to debug a template change after the fact.
    store_empty_reports: bool = True


@dataclass
class Config:
    """Master config — instantiated once, used everywhere."""
    parser: ParserConfig = field(default_factory=ParserConfig)
    source: SourceConfig = field(default_factory=SourceConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)

    max_pdf_size_mb: int = 50
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    def __post_init__(self):
        """Fail fast on nonsense values instead of mid-run."""
        if self.parser.category_lookback < 1:
            raise ValueError(
                f"category_lookback must be >= 1, got {self.parser.category_lookback}"
            )
        if self.parser.category_max_length < 1:
            raise ValueError(
                f"category_max_length must be >= 1, got {self.parser.category_max_length}"
            )
        if self.source.max_days_back < 1:
            raise ValueError(
                f"max_days_back must be >= 1, got {self.source.max_days_back}"
            )
        if self.source.timeout <= 0:
            raise ValueError(f"timeout must be > 0, got {self.source.timeout}")

        if not self.source.filename_prefixes:
            logger.warning(
                "No bulletin filename prefixes configured; date-guess "
                "discovery will never find a PDF."
            )


# Singleton: every module imports this same instance
config = Config()
