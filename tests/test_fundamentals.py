"""Tests for fundamental quality checks and sentiment confirmations."""

from market_pulse.features.fundamentals import fundamental_signals, quality_score, social_signals
from market_pulse.models.fundamentals import FundamentalsSnapshot, SentimentSnapshot
from market_pulse.models.options import Direction


def _strong() -> FundamentalsSnapshot:
    return FundamentalsSnapshot(
        symbol="AAPL", eps_growth=18.0, roe=30.0, peg=0.9,
        debt_to_equity=0.4, free_cash_flow=1e9, pe=20.0,
    )


def _weak() -> FundamentalsSnapshot:
    return FundamentalsSnapshot(
        symbol="ZZZ", eps_growth=-5.0, roe=4.0, peg=3.0,
        debt_to_equity=2.5, free_cash_flow=-1e8, pe=80.0,
    )


class TestQualityScore:
    def test_all_passing(self):
        q = quality_score(_strong())
        assert q.score == 6
        assert q.failed == []

    def test_all_failing(self):
        q = quality_score(_weak())
        assert q.score == 0
        assert len(q.failed) == 6

    def test_unknown_metrics_excluded(self):
        q = quality_score(FundamentalsSnapshot(symbol="AAPL", roe=25.0))
        assert q.score == 1
        assert q.failed == []

    def test_negative_pe_fails(self):
        q = quality_score(FundamentalsSnapshot(symbol="AAPL", pe=-12.0))
        assert q.score == 0
        assert q.failed == ["Stretched P/E -12.0"]


class TestFundamentalSignals:
    def test_call_uses_passes(self):
        signals = fundamental_signals(_strong(), Direction.CALL)
        assert len(signals) == 3
        assert signals[0].startswith("EPS growth")

    def test_put_uses_failures(self):
        signals = fundamental_signals(_weak(), Direction.PUT, limit=2)
        assert signals == ["Weak EPS growth -5.0%", "Low ROE 4.0%"]

    def test_call_on_weak_company_confirms_nothing(self):
        assert fundamental_signals(_weak(), Direction.CALL) == []

    def test_wait_or_missing(self):
        assert fundamental_signals(_strong(), Direction.WAIT) == []
        assert fundamental_signals(None, Direction.CALL) == []


class TestSocialSignals:
    def test_bullish_news_with_buzz(self):
        s = SentimentSnapshot(symbol="AAPL", bullish_percent=0.72, bearish_percent=0.28, buzz=1.5)
        signals = social_signals(s, Direction.CALL)
        assert signals == ["News sentiment 72% bullish", "High news buzz (1.50x weekly average)"]

    def test_bearish_news_for_put(self):
        s = SentimentSnapshot(symbol="AAPL", bullish_percent=0.3, bearish_percent=0.7, buzz=0.5)
        assert social_signals(s, Direction.PUT) == ["News sentiment 70% bearish"]

    def test_misaligned_news_ignored(self):
        s = SentimentSnapshot(symbol="AAPL", bullish_percent=0.8, bearish_percent=0.2, buzz=2.0)
        assert social_signals(s, Direction.PUT) == []

    def test_capped(self):
        s = SentimentSnapshot(symbol="AAPL", bullish_percent=0.9, buzz=3.0)
        assert len(social_signals(s, Direction.CALL, limit=1)) == 1
