"""Option trade recommendation from technical confluence and the live chain."""

from __future__ import annotations

import math
from collections.abc import Sequence
from datetime import date, timedelta

from market_pulse.config import OptionsSettings, get_settings
from market_pulse.features.fundamentals import fundamental_signals, social_signals
from market_pulse.features.technicals import confluence_score
from market_pulse.models.fundamentals import FundamentalsSnapshot, SentimentSnapshot
from market_pulse.models.market import MarketSession
from market_pulse.models.options import (
    Direction,
    OptionChain,
    OptionContract,
    OptionType,
    Recommendation,
)
from market_pulse.models.technicals import (
    ConfluenceScore,
    IndicatorSnapshot,
    ScoredSignal,
    TrendDirection,
)

_FRIDAY = 4


def round_to_strike(price: float) -> float:
    """Round to the listed strike grid: $1 below $50, $5 to $200, $10 above.

    Half-up, and idempotent: a rounded strike rounds to itself.
    """
    if price < 50:
        step = 1
    elif price < 200:
        step = 5
    else:
        step = 10
    return float(math.floor(price / step + 0.5) * step)


def target_expiry(today: date | None = None, days_out: int = 30) -> date:
    """First Friday on or after ``today + days_out``."""
    d = (today or date.today()) + timedelta(days=days_out)
    return d + timedelta(days=(_FRIDAY - d.weekday()) % 7)


def nearest_expiry(chain: OptionChain, target: date) -> date | None:
    if not chain.expirations:
        return None
    return min(chain.expirations, key=lambda e: (abs((e - target).days), e))


def nearest_contract(
    chain: OptionChain, expiry: date, strike: float, option_type: OptionType
) -> OptionContract | None:
    """Listed contract of ``option_type`` at ``expiry`` whose strike is closest to ``strike``."""
    candidates = [
        entry.side(option_type)
        for entry in chain.options.get(expiry, {}).values()
        if entry.side(option_type) is not None
    ]
    if not candidates:
        return None
    return min(candidates, key=lambda c: (abs(c.strike - strike), c.strike))


def probability_itm(
    contract: OptionContract, price: float, today: date | None = None
) -> float | None:
    """|delta| when greeks are known, else a lognormal N(d2) estimate from IV (r = 0)."""
    greeks = contract.greeks
    if greeks is not None and greeks.delta is not None:
        return min(1.0, abs(greeks.delta))
    iv = contract.implied_volatility
    years = ((contract.expiration - (today or date.today())).days) / 365.0
    if not iv or iv <= 0 or years <= 0 or price <= 0 or contract.strike <= 0:
        return None
    d2 = (math.log(price / contract.strike) - 0.5 * iv * iv * years) / (iv * math.sqrt(years))
    if contract.option_type == OptionType.PUT:
        d2 = -d2
    return 0.5 * (1.0 + math.erf(d2 / math.sqrt(2.0)))


def _score_without_snapshot(trend: TrendDirection, rsi: float | None) -> ConfluenceScore:
    """Trend stands in for price-vs-EMA50, ``rsi`` for the oscillator zone."""
    signals: list[ScoredSignal] = []
    bull, bear = TrendDirection.BULLISH, TrendDirection.BEARISH
    if trend == bull:
        signals.append(ScoredSignal(name="Bullish Trend", direction=bull, points=15,
                                    description="Price above medium EMA"))
    elif trend == bear:
        signals.append(ScoredSignal(name="Bearish Trend", direction=bear, points=15,
                                    description="Price below medium EMA"))
    if rsi is not None:
        if 60 < rsi <= 70:
            signals.append(ScoredSignal(name="Strong Bullish Momentum", direction=bull,
                                        points=5, description=f"RSI {rsi:.1f}"))
        elif 30 <= rsi < 40:
            signals.append(ScoredSignal(name="Developing Bearish Momentum", direction=bear,
                                        points=5, description=f"RSI {rsi:.1f}"))
        elif rsi < 30:
            signals.append(ScoredSignal(name="RSI Oversold", direction=bull,
                                        points=10, description=f"RSI {rsi:.1f}"))
        elif rsi > 80:
            signals.append(ScoredSignal(name="RSI Overbought", direction=bear,
                                        points=10, description=f"RSI {rsi:.1f}"))
    return ConfluenceScore(
        bull_score=sum(s.points for s in signals if s.direction == bull),
        bear_score=sum(s.points for s in signals if s.direction == bear),
        signals=signals,
    )


def recommend(
    price: float,
    atr: float | None,
    trend: TrendDirection,
    rsi: float | None,
    chain: OptionChain | None,
    snapshot: IndicatorSnapshot | None = None,
    fundamentals: FundamentalsSnapshot | None = None,
    sentiment: SentimentSnapshot | None = None,
    session: MarketSession = MarketSession.REGULAR,
    today: date | None = None,
    extra_fundamental_signals: Sequence[str] = (),
    extra_social_signals: Sequence[str] = (),
    settings: OptionsSettings | None = None,
) -> Recommendation:
    """Single directional option idea for the underlying.

    Direction comes from the bull/bear confluence score. The contract is
    the listed strike nearest ``price ± strike_atr_offset·ATR`` in the
    expiry nearest to ~30 days out. Confidence grows by one step per
    supporting technical, fundamental and social signal, capped at 95.

    Args:
        price: Current underlying price.
        atr: Daily ATR; None or 0 puts the strike at the money.
        trend: Trend used when ``snapshot`` is None.
        rsi: RSI used when ``snapshot`` is None.
        chain: Live chain, or None when options data is unavailable.
        snapshot: Daily indicator snapshot; scored with its close set to ``price``.
        fundamentals: Adds fundamental confirmations for the chosen direction.
        sentiment: Adds news confirmations for the chosen direction.
        session: Liquidity rule is stricter during the regular session.
        today: Reference date for the expiry target.

    Returns:
        Recommendation. WAIT carries confidence 0 and the reason.
    """
    cfg = settings or get_settings().options
    atr = atr or 0.0

    if snapshot is not None:
        score = confluence_score(snapshot.model_copy(update={"close": price}))
    else:
        score = _score_without_snapshot(trend, rsi)
    bull, bear = score.bull_score, score.bear_score

    if bull > bear and bull >= cfg.min_score:
        direction = Direction.CALL
        supporting = score.bullish_signals
    elif bear > bull and bear >= cfg.min_score:
        direction = Direction.PUT
        supporting = score.bearish_signals
    else:
        return Recommendation(
            direction=Direction.WAIT,
            reason=f"No clear edge (bull {bull} vs bear {bear})",
            bull_score=bull,
            bear_score=bear,
        )

    technical = [s.name for s in supporting]
    fundamental = (
        list(extra_fundamental_signals)
        + fundamental_signals(fundamentals, direction, limit=cfg.max_fundamental_signals)
    )[:cfg.max_fundamental_signals]
    social = (
        list(extra_social_signals)
        + social_signals(sentiment, direction, limit=cfg.max_social_signals)
    )[:cfg.max_social_signals]

    sign = 1.0 if direction == Direction.CALL else -1.0
    option_type = OptionType.CALL if direction == Direction.CALL else OptionType.PUT
    intended_strike = round_to_strike(price + sign * cfg.strike_atr_offset * atr)
    target = target_expiry(today, cfg.target_dte)

    def wait(reason: str) -> Recommendation:
        return Recommendation(
            direction=Direction.WAIT,
            strike=intended_strike,
            expiry=target,
            reason=reason,
            bull_score=bull,
            bear_score=bear,
            technical_signals=technical,
            fundamental_signals=fundamental,
            social_signals=social,
        )

    if chain is None or chain.is_empty:
        return wait(f"{direction} setup but no option chain available")
    expiry = nearest_expiry(chain, target)
    contract = nearest_contract(chain, expiry, intended_strike, option_type) if expiry else None
    if contract is None:
        return wait(f"{direction} setup but no {option_type} listed near {intended_strike:g}")

    if session == MarketSession.REGULAR:
        liquid = contract.volume >= cfg.min_volume
    else:
        liquid = contract.volume >= cfg.min_volume or contract.open_interest >= cfg.min_open_interest
    if not liquid:
        return wait(
            f"{direction} setup but {contract.symbol or contract.strike} is illiquid "
            f"(vol {contract.volume}, OI {contract.open_interest})"
        )

    confidence = min(
        cfg.max_confidence,
        cfg.base_confidence + cfg.confidence_step * (len(technical) + len(fundamental) + len(social)),
    )
    has_market = contract.bid > 0 and contract.ask > 0
    return Recommendation(
        direction=direction,
        strike=contract.strike,
        expiry=contract.expiration,
        confidence=confidence,
        reason=f"{'Bullish' if direction == Direction.CALL else 'Bearish'} confluence "
               f"{max(bull, bear)} vs {min(bull, bear)}: {', '.join(technical[:3])}",
        bull_score=bull,
        bear_score=bear,
        entry_price=price,
        stop_loss=price - sign * cfg.stop_atr_multiple * atr,
        take_profit_1=price + sign * cfg.target1_atr_multiple * atr,
        take_profit_2=price + sign * cfg.target2_atr_multiple * atr,
        technical_signals=technical,
        fundamental_signals=fundamental,
        social_signals=social,
        contract=contract,
        contract_price=contract.mid if has_market else contract.last,
        probability_itm=probability_itm(contract, price, today),
    )
