"""Fundamental quality checks and sentiment confirmations."""

from __future__ import annotations

from market_pulse.config import FundamentalsSettings, get_settings
from market_pulse.models.fundamentals import FundamentalsSnapshot, QualityScore, SentimentSnapshot
from market_pulse.models.options import Direction


def _checks(
    snap: FundamentalsSnapshot, cfg: FundamentalsSettings
) -> list[tuple[str, str, bool]]:
    """(pass label, fail label, passed) for every metric the snapshot knows."""
    out: list[tuple[str, str, bool]] = []
    if snap.eps_growth is not None:
        g = snap.eps_growth
        out.append((
            f"EPS growth {g:.1f}% (> {cfg.eps_growth_min:.0f}%)",
            f"Weak EPS growth {g:.1f}%",
            g > cfg.eps_growth_min,
        ))
    if snap.roe is not None:
        out.append((
            f"ROE {snap.roe:.1f}% (> {cfg.roe_min:.0f}%)",
            f"Low ROE {snap.roe:.1f}%",
            snap.roe > cfg.roe_min,
        ))
    if snap.peg is not None:
        out.append((
            f"PEG {snap.peg:.2f} (< {cfg.peg_max})",
            f"Rich PEG {snap.peg:.2f}",
            0 < snap.peg < cfg.peg_max,
        ))
    if snap.debt_to_equity is not None:
        out.append((
            f"Debt/Equity {snap.debt_to_equity:.2f} (< {cfg.debt_to_equity_max})",
            f"High Debt/Equity {snap.debt_to_equity:.2f}",
            snap.debt_to_equity < cfg.debt_to_equity_max,
        ))
    if snap.free_cash_flow is not None:
        out.append((
            "Positive free cash flow",
            "Negative free cash flow",
            snap.free_cash_flow > 0,
        ))
    if snap.pe is not None:
        out.append((
            f"P/E {snap.pe:.1f} (< {cfg.pe_max:.0f})",
            f"Stretched P/E {snap.pe:.1f}",
            0 < snap.pe < cfg.pe_max,
        ))
    return out


def quality_score(
    snap: FundamentalsSnapshot, settings: FundamentalsSettings | None = None
) -> QualityScore:
    """One point per passing check, 0-6. Unknown metrics score nothing."""
    cfg = settings or get_settings().fundamentals
    checks = _checks(snap, cfg)
    passed = [ok_label for ok_label, _, ok in checks if ok]
    failed = [bad_label for _, bad_label, ok in checks if not ok]
    return QualityScore(score=len(passed), passed=passed, failed=failed)


def fundamental_signals(
    snap: FundamentalsSnapshot | None,
    direction: Direction,
    limit: int | None = None,
    settings: FundamentalsSettings | None = None,
) -> list[str]:
    """Checks that confirm ``direction``: passes for CALL, failures for PUT."""
    if snap is None or direction == Direction.WAIT:
        return []
    cap = limit if limit is not None else get_settings().options.max_fundamental_signals
    quality = quality_score(snap, settings)
    signals = quality.passed if direction == Direction.CALL else quality.failed
    return signals[:cap]


def social_signals(
    sentiment: SentimentSnapshot | None,
    direction: Direction,
    limit: int | None = None,
    settings: FundamentalsSettings | None = None,
) -> list[str]:
    """News-bias and buzz confirmations for ``direction``."""
    if sentiment is None or direction == Direction.WAIT:
        return []
    cfg = settings or get_settings().fundamentals
    cap = limit if limit is not None else get_settings().options.max_social_signals

    bullish = sentiment.bullish_percent
    bearish = sentiment.bearish_percent
    signals: list[str] = []
    aligned = False
    if direction == Direction.CALL and bullish is not None and bullish >= cfg.bullish_news_pct:
        signals.append(f"News sentiment {bullish:.0%} bullish")
        aligned = True
    elif direction == Direction.PUT and bearish is not None and bearish >= cfg.bullish_news_pct:
        signals.append(f"News sentiment {bearish:.0%} bearish")
        aligned = True

    if aligned and sentiment.buzz is not None and sentiment.buzz >= cfg.high_buzz:
        signals.append(f"High news buzz ({sentiment.buzz:.2f}x weekly average)")
    return signals[:cap]
