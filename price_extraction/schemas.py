"""
schemas.py — Pydantic v2 models for extracted price reports.

A bulletin holds two kinds of tables and they have nothing in common past
the category label, so Table is a tagged union on `type` rather than one
model with a pile of optional fields. Pydantic picks the right variant
from the discriminator when a stored report is read back.

Invariants that the parser guarantees are also checked here, because
reports can arrive from outside the parser too (POST /updatePrices):
  - a price range never has low > high
  - a market row has exactly one price per commodity column
"""

from __future__ import annotations

import datetime as dt
from enum import Enum
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field, model_validator


class TableType(str, Enum):
    """Which column keys the rows of a table."""
    MARKET = "market"
    COMMODITY = "commodity"


class PriceRange(BaseModel):
    """One market's price for one commodity column."""
    commodity: str
    low: Optional[float] = None
    high: Optional[float] = None

    @model_validator(mode="after")
    def low_must_not_exceed_high(self) -> "PriceRange":
        if self.low is not None and self.high is not None and self.low > self.high:
            raise ValueError(
                f"low ({self.low}) exceeds high ({self.high}) for {self.commodity!r}"
            )
        return self


class MarketRow(BaseModel):
    market: str
    city: str = Field(default="")
    prices: List[PriceRange] = Field(default_factory=list)


class CommodityEntry(BaseModel):
    """A commodity-keyed row. Any field the header lacks stays None."""
    name: str
    low: Optional[float] = None
    high: Optional[float] = None
    prevailing: Optional[float] = None
    average: Optional[float] = None


class MarketTable(BaseModel):
    """Rows keyed by market, columns keyed by commodity."""
    type: Literal["market"] = "market"
    category: str = Field(default="")
    commodities: List[str]
    markets: List[MarketRow] = Field(default_factory=list)

    @model_validator(mode="after")
    def prices_align_with_commodities(self) -> "MarketTable":
        width = len(self.commodities)
        for row in self.markets:
            if len(row.prices) != width:
                raise ValueError(
                    f"market {row.market!r} has {len(row.prices)} prices "
                    f"for {width} commodities"
                )
        return self


class CommodityTable(BaseModel):
    """Rows keyed by commodity, columns are low/high/prevailing/average."""
    type: Literal["commodity"] = "commodity"
    category: str = Field(default="")
    entries: List[CommodityEntry] = Field(default_factory=list)


Table = Annotated[Union[MarketTable, CommodityTable], Field(discriminator="type")]


class PriceReport(BaseModel):
    """Top-level output of one extraction run."""
    date: dt.date
    source_url: str
    tables: List[Table] = Field(default_factory=list)
    raw_text: str = Field(default="")


class StoredReport(BaseModel):
    """A report as it sits in the append-only log."""
    id: str
    stored_at: dt.datetime
    report: PriceReport
