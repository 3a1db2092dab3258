"""Fundamentals and sentiment snapshots."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class FundamentalsSnapshot(BaseModel):
    symbol: str
    week52_high: float | None = None
    week52_low: float | None = None
    beta: float | None = None
    market_cap: float | None = None
    pe: float | None = None
    peg: float | None = None
    roe: float | None = None  # percent
    eps_growth: float | None = None  # percent, TTM year over year
    debt_to_equity: float | None = None
    free_cash_flow: float | None = None
    source: str = ""
    as_of: datetime | None = None
    stale: bool = False


class QualityScore(BaseModel):
    score: int = 0
    max_score: int = 6
    passed: list[str] = Field(default_factory=list)
    failed: list[str] = Field(default_factory=list)


class SentimentSnapshot(BaseModel):
    symbol: str
    bullish_percent: float | None = None
    bearish_percent: float | None = None
    company_news_score: float | None = None
    sector_news_score: float | None = None
    buzz: float | None = None
    articles_last_week: int | None = None
    source: str = ""
    as_of: datetime | None = None
    stale: bool = False
