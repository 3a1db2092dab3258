"""Options flow metrics: put/call ratio, gamma-squeeze score, unusual activity."""

from __future__ import annotations

from market_pulse.config import FlowSettings, GammaSettings, OptionsSettings, get_settings
from market_pulse.models.options import (
    GammaSqueezeScore,
    OptionChain,
    OptionContract,
    OptionType,
    PutCallRatio,
    UnusualOption,
)
from market_pulse.models.technicals import TrendDirection

NO_OPTIONS_REASON = "options data unavailable"


def put_call_ratio(chain: OptionChain, settings: OptionsSettings | None = None) -> PutCallRatio:
    """Volume and open-interest put/call ratios over every contract in the chain."""
    cfg = settings or get_settings().options
    calls = chain.calls()
    puts = chain.puts()
    total_calls = sum(c.volume for c in calls)
    total_puts = sum(p.volume for p in puts)
    call_oi = sum(c.open_interest for c in calls)
    put_oi = sum(p.open_interest for p in puts)

    volume_ratio = total_puts / total_calls if total_calls > 0 else 0.0
    oi_ratio = put_oi / call_oi if call_oi > 0 else 0.0

    if total_calls == 0:
        bias = TrendDirection.NEUTRAL
    elif volume_ratio < cfg.pcr_bullish_below:
        bias = TrendDirection.BULLISH
    elif volume_ratio > cfg.pcr_bearish_above:
        bias = TrendDirection.BEARISH
    else:
        bias = TrendDirection.NEUTRAL

    return PutCallRatio(
        volume_ratio=volume_ratio,
        oi_ratio=oi_ratio,
        total_calls=total_calls,
        total_puts=total_puts,
        total_call_oi=call_oi,
        total_put_oi=put_oi,
        bias=bias,
    )


def _tier(value: float, tiers: list[list[float]], below: bool) -> int:
    """Points for the first tier ``value`` clears. Tiers are ordered best-first."""
    for threshold, points in tiers:
        if (value < threshold) if below else (value >= threshold):
            return int(points)
    return 0


def near_the_money_calls(
    chain: OptionChain, price: float, pct: float
) -> list[OptionContract]:
    return [c for c in chain.calls() if price > 0 and abs(c.strike - price) / price <= pct]


def gamma_squeeze_score(
    chain: OptionChain | None,
    price: float,
    atr: float | None = None,
    week52_high: float | None = None,
    week52_low: float | None = None,
    historical_vol: float | None = None,
    settings: GammaSettings | None = None,
) -> GammaSqueezeScore:
    """Additive 0-100 squeeze likelihood.

    Components: put/call volume ratio, near-the-money call volume against
    open interest, NTM implied volatility against realized volatility (or
    absolute IV), and proximity to the 52-week high.
    """
    cfg = settings or get_settings().gamma
    symbol = chain.symbol if chain is not None else ""
    details: dict[str, float | None] = {
        "price": price,
        "atr": atr,
        "week52_high": week52_high,
        "week52_low": week52_low,
        "historical_vol": historical_vol,
    }
    if chain is None or chain.is_empty:
        return GammaSqueezeScore(
            symbol=symbol, score=0, reasons=[NO_OPTIONS_REASON], details=details,
        )

    score = 0
    reasons: list[str] = []

    # Put/call ratio
    pcr = put_call_ratio(chain)
    details["put_call_ratio"] = pcr.volume_ratio
    if pcr.total_calls > 0:
        points = _tier(pcr.volume_ratio, cfg.pcr_tiers, below=True)
        if points:
            score += points
            reasons.append(f"Call-heavy flow: put/call {pcr.volume_ratio:.2f} (+{points})")

    # Near-the-money call activity
    ntm = near_the_money_calls(chain, price, cfg.ntm_pct)
    ntm_volume = sum(c.volume for c in ntm)
    ntm_oi = sum(c.open_interest for c in ntm)
    details["ntm_call_volume"] = float(ntm_volume)
    details["ntm_call_oi"] = float(ntm_oi)
    if not ntm:
        reasons.append(f"No strikes within {cfg.ntm_pct:.0%} of price")
    elif ntm_oi == 0 and ntm_volume > 0:
        points = int(cfg.vol_oi_tiers[0][1])
        score += points
        details["vol_oi_ratio"] = None
        reasons.append(f"NTM call volume {ntm_volume} against zero open interest (+{points})")
    elif ntm_oi > 0:
        ratio = ntm_volume / ntm_oi
        details["vol_oi_ratio"] = ratio
        points = _tier(ratio, cfg.vol_oi_tiers, below=False)
        if points:
            score += points
            reasons.append(f"NTM call volume {ratio:.2f}x open interest (+{points})")

    # Implied vs realized volatility
    ivs = [c.implied_volatility for c in ntm if c.implied_volatility and c.implied_volatility > 0]
    if ivs:
        iv = sum(ivs) / len(ivs)
        details["ntm_iv"] = iv
        if historical_vol and historical_vol > 0:
            ratio = iv / historical_vol
            details["iv_hv_ratio"] = ratio
            points = _tier(ratio, cfg.iv_hv_tiers, below=False)
            if points:
                score += points
                reasons.append(f"NTM IV {ratio:.2f}x realized volatility (+{points})")
        else:
            points = _tier(iv, cfg.iv_absolute_tiers, below=False)
            if points:
                score += points
                reasons.append(f"Elevated NTM IV {iv:.0%} (+{points})")

    # 52-week high proximity
    if week52_high and price >= week52_high * (1 - cfg.week52_proximity_pct):
        score += cfg.week52_points
        reasons.append(f"Price at 52-week high {week52_high:.2f} (+{cfg.week52_points})")

    if not reasons:
        reasons.append("No squeeze conditions present")
    return GammaSqueezeScore(
        symbol=symbol, score=max(0, min(100, score)), reasons=reasons, details=details,
    )


def scan_unusual_activity(
    chain: OptionChain | None,
    top: int | None = None,
    settings: FlowSettings | None = None,
) -> list[UnusualOption]:
    """Contracts trading more volume than open interest, largest notional first."""
    if chain is None:
        return []
    cfg = settings or get_settings().flow
    limit = top if top is not None else cfg.top_n

    found: list[UnusualOption] = []
    for contract in chain.contracts():
        vol, oi = contract.volume, contract.open_interest
        if vol < cfg.min_volume or oi <= 0 or vol <= oi:
            continue
        notional = vol * contract.mid * 100
        vol_oi = vol / oi
        is_alert = notional > cfg.alert_notional or (
            vol > cfg.alert_volume and vol_oi > cfg.alert_vol_oi
        )
        found.append(UnusualOption(
            contract=contract,
            vol_oi_ratio=vol_oi,
            notional=notional,
            is_alert=is_alert,
            sentiment=(
                TrendDirection.BULLISH
                if contract.option_type == OptionType.CALL
                else TrendDirection.BEARISH
            ),
        ))
    found.sort(key=lambda u: u.notional, reverse=True)
    return found[:limit]
