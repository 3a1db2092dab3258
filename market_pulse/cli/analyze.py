"""Multi-timeframe analysis for one or more symbols.

Usage (after pip install):
    market-pulse AAPL
    market-pulse AAPL MSFT --timeframes 1d 1h
    market-pulse NVDA --json
"""

import argparse
import asyncio
import logging

from tabulate import tabulate

from market_pulse.data.service import DataService
from market_pulse.models.analysis import SymbolAnalysis
from market_pulse.models.data import Timeframe
from market_pulse.service.analyzer import MarketAnalyzer


def _fmt(value: float | None, spec: str = ".2f", suffix: str = "") -> str:
    return "-" if value is None else f"{value:{spec}}{suffix}"


def print_section(title: str) -> None:
    print(f"\n{'=' * 72}")
    print(f"  {title}")
    print(f"{'=' * 72}")


def print_analysis(a: SymbolAnalysis) -> None:
    m = a.metrics
    stale = " (stale)" if a.price_stale else ""
    print_section(f"{a.symbol}  {m.header_price:.2f}{stale}  [{a.session}, via {a.data_source}]")

    rows = []
    for tf, tfa in a.timeframes.items():
        s = tfa.snapshot
        rows.append({
            "TF": tf.value,
            "Trend": tfa.trend.value.upper(),
            "RSI": _fmt(s.rsi, ".1f"),
            "MACD": _fmt(s.macd_histogram, "+.3f"),
            "%B": _fmt(s.bb_percent_b, ".2f"),
            "ADX": _fmt(s.adx, ".1f"),
            "Bull": tfa.confluence.bull_score,
            "Bear": tfa.confluence.bear_score,
            "Near EMAs": " ".join(str(d.period) for d in tfa.ema_distances if d.is_near) or "-",
            "Source": tfa.source,
        })
    if rows:
        print("\n--- Timeframes ---")
        print(tabulate(rows, headers="keys", tablefmt="simple", stralign="right"))

    print("\n--- Metrics ---")
    print(f"  ATR(14)        {_fmt(m.atr)}  ({_fmt(m.volatility_pct, '.2f', '%')})")
    print(f"  Hist. vol      {_fmt(m.historical_vol, '.1%')}")
    print(f"  Day range      {_fmt(m.day_low)} - {_fmt(m.day_high)}")
    print(f"  52w range      {_fmt(m.week52_low)} - {_fmt(m.week52_high)}")
    print(f"  Avg volume 1y  {_fmt(m.avg_volume_1y, ',.0f')}  ({_fmt(m.volume_diff_pct, '+.1f', '%')} today)")

    rec = a.recommendation
    if rec is not None:
        print("\n--- Options Signal ---")
        print(f"  {rec.direction}  confidence {rec.confidence}  (bull {rec.bull_score} / bear {rec.bear_score})")
        print(f"  {rec.reason}")
        if rec.contract is not None:
            print(f"  Contract       {rec.contract.symbol or rec.contract.strike} "
                  f"{rec.expiry}  @ {_fmt(rec.contract_price)}  P(ITM) {_fmt(rec.probability_itm, '.0%')}")
            print(f"  Entry {_fmt(rec.entry_price)}  Stop {_fmt(rec.stop_loss)}  "
                  f"T1 {_fmt(rec.take_profit_1)}  T2 {_fmt(rec.take_profit_2)}")
        for label, signals in (
            ("Technical", rec.technical_signals),
            ("Fundamental", rec.fundamental_signals),
            ("Social", rec.social_signals),
        ):
            for sig in signals:
                print(f"    + [{label}] {sig}")

    if a.put_call_ratio is not None:
        pcr = a.put_call_ratio
        print(f"\n  Put/Call       {pcr.volume_ratio:.2f} vol, {pcr.oi_ratio:.2f} OI -> {pcr.bias.value.upper()}"
              f"{' (stale)' if pcr.stale else ''}")
    if a.gamma_squeeze is not None:
        print(f"  Gamma squeeze  {a.gamma_squeeze.score}/100")
        for reason in a.gamma_squeeze.reasons:
            print(f"    - {reason}")
    if a.quality is not None:
        print(f"  Quality        {a.quality.score}/{a.quality.max_score}")

    if a.unusual_activity:
        print("\n--- Unusual Activity ---")
        print(tabulate(
            [
                {
                    "Contract": u.contract.symbol or f"{u.contract.strike:g}{u.contract.option_type.value[0].upper()}",
                    "Expiry": u.contract.expiration.isoformat(),
                    "Volume": u.contract.volume,
                    "OI": u.contract.open_interest,
                    "Notional": f"{u.notional:,.0f}",
                    "Alert": "!" if u.is_alert else "",
                }
                for u in a.unusual_activity
            ],
            headers="keys", tablefmt="simple", stralign="right",
        ))


async def _run(symbols: list[str], timeframes: list[Timeframe] | None) -> dict[str, SymbolAnalysis | None]:
    async with DataService() as data:
        ma = MarketAnalyzer(data_service=data)
        return await ma.analyze_many(symbols, timeframes)


def main() -> None:
    parser = argparse.ArgumentParser(description="Multi-timeframe market analysis")
    parser.add_argument("symbols", nargs="+", help="Ticker symbols to analyze")
    parser.add_argument(
        "--timeframes",
        nargs="+",
        choices=[t.value for t in Timeframe],
        default=None,
        help="Timeframes to include (default: from config)",
    )
    parser.add_argument("--json", action="store_true", help="Print JSON instead of tables")
    parser.add_argument("-v", "--verbose", action="count", default=0, help="-v info, -vv debug")
    args = parser.parse_args()

    level = logging.WARNING if args.verbose == 0 else logging.INFO if args.verbose == 1 else logging.DEBUG
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    timeframes = [Timeframe(t) for t in args.timeframes] if args.timeframes else None
    results = asyncio.run(_run([s.upper() for s in args.symbols], timeframes))

    for symbol, analysis in results.items():
        if analysis is None:
            print(f"{symbol}: insufficient data")
            continue
        if args.json:
            print(analysis.model_dump_json(indent=2))
        else:
            print_analysis(analysis)


if __name__ == "__main__":
    main()
