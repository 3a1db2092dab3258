"""Configuration loaded from packaged YAML defaults, overridable per field."""

from __future__ import annotations

import math
import os
import re
from pathlib import Path

import yaml
from pydantic import BaseModel, Field

from market_pulse.models.data import ProviderType, Timeframe
from market_pulse.models.technicals import VWAPAnchor


# --- Settings models ---


class ProviderSettings(BaseModel):
    """Connection, credential and rate-limit settings for one upstream vendor."""

    enabled: bool = True
    base_url: str = ""
    auth_url: str = ""
    documented_limit: int = 60      # vendor's published requests per window
    headroom: float = 0.10          # stay this fraction below the published limit
    window_seconds: float = 60.0
    cooldown_seconds: float = 60.0  # hard pause after a 429
    timeout_seconds: float = 10.0
    token_refresh_margin_seconds: float = 60.0
    credentials: dict[str, str] = Field(default_factory=dict)

    @property
    def max_requests(self) -> int:
        return max(1, math.floor(self.documented_limit * (1.0 - self.headroom)))

    def credential(self, name: str) -> str:
        """Resolved credential value, or "" when absent."""
        return _resolve_env(self.credentials.get(name, ""))


class ProvidersSettings(BaseModel):
    public: ProviderSettings = Field(default_factory=lambda: ProviderSettings(
        base_url="https://api.public.com",
        auth_url="https://api.public.com/userapiauthservice/personal/access-tokens",
        documented_limit=60,
        cooldown_seconds=60.0,
        credentials={"api_key": "${PUBLIC_API_KEY}", "secret": "${PUBLIC_API_SECRET}"},
    ))
    schwab: ProviderSettings = Field(default_factory=lambda: ProviderSettings(
        base_url="https://api.schwabapi.com/marketdata/v1",
        auth_url="https://api.schwabapi.com/v1/oauth/token",
        documented_limit=120,
        cooldown_seconds=30.0,
        credentials={
            "client_id": "${SCHWAB_CLIENT_ID}",
            "client_secret": "${SCHWAB_CLIENT_SECRET}",
            "refresh_token": "${SCHWAB_REFRESH_TOKEN}",
        },
    ))
    alpaca: ProviderSettings = Field(default_factory=lambda: ProviderSettings(
        base_url="https://data.alpaca.markets/v2",
        documented_limit=200,
        cooldown_seconds=30.0,
        credentials={"api_key": "${ALPACA_API_KEY}", "api_secret": "${ALPACA_API_SECRET}"},
    ))
    finnhub: ProviderSettings = Field(default_factory=lambda: ProviderSettings(
        base_url="https://finnhub.io/api/v1",
        documented_limit=60,
        cooldown_seconds=60.0,
        credentials={"api_key": "${FINNHUB_API_KEY}"},
    ))
    yfinance: ProviderSettings = Field(default_factory=lambda: ProviderSettings(
        documented_limit=100,
        cooldown_seconds=60.0,
        timeout_seconds=15.0,
    ))

    def for_provider(self, provider: ProviderType) -> ProviderSettings:
        return getattr(self, provider.value)


class CacheSettings(BaseModel):
    quote_ttl_seconds: float = 10.0
    intraday_bars_ttl_seconds: float = 60.0
    daily_bars_ttl_seconds: float = 300.0
    option_chain_ttl_seconds: float = 300.0
    fundamentals_ttl_seconds: float = 86_400.0
    sentiment_ttl_seconds: float = 1_800.0
    put_call_ttl_seconds: float = 300.0


class WaterfallSettings(BaseModel):
    """Provider priority per resource. Order is data, not control flow."""

    timeout_seconds: float = 10.0
    live_price: list[ProviderType] = Field(default_factory=lambda: [
        ProviderType.PUBLIC, ProviderType.SCHWAB, ProviderType.ALPACA, ProviderType.YFINANCE,
    ])
    historical: list[ProviderType] = Field(default_factory=lambda: [
        ProviderType.SCHWAB, ProviderType.ALPACA, ProviderType.YFINANCE,
    ])
    options_chain: list[ProviderType] = Field(default_factory=lambda: [
        ProviderType.PUBLIC, ProviderType.SCHWAB, ProviderType.YFINANCE,
    ])
    fundamentals: list[ProviderType] = Field(default_factory=lambda: [
        ProviderType.FINNHUB, ProviderType.YFINANCE,
    ])
    sentiment: list[ProviderType] = Field(default_factory=lambda: [ProviderType.FINNHUB])
    greeks: list[ProviderType] = Field(default_factory=lambda: [ProviderType.PUBLIC])


class StitcherSettings(BaseModel):
    staleness_days: float = 5.0     # tolerate long weekends and holidays
    scale_threshold: float = 0.05


class TechnicalsSettings(BaseModel):
    ema_periods: list[int] = Field(default_factory=lambda: [9, 10, 21, 50, 200])
    ema_fast: int = 10
    ema_mid: int = 21
    ema_medium: int = 50            # trend classification reference
    ema_long: int = 200
    rsi_period: int = 14
    macd_fast: int = 12
    macd_slow: int = 26
    macd_signal: int = 9
    bollinger_window: int = 20
    bollinger_std: float = 2.0
    atr_period: int = 14
    adx_period: int = 14
    vwap_anchor: VWAPAnchor = VWAPAnchor.DAY
    near_ema_pct: float = 0.5
    realized_vol_window: int = 20
    annualization_factor: int = 252


class OptionsSettings(BaseModel):
    min_score: int = 20
    strike_atr_offset: float = 0.5
    target_dte: int = 30
    stop_atr_multiple: float = 1.0
    target1_atr_multiple: float = 2.0
    target2_atr_multiple: float = 3.0
    base_confidence: int = 60
    confidence_step: int = 5
    max_confidence: int = 95
    min_volume: int = 10
    min_open_interest: int = 100
    pcr_bullish_below: float = 0.6
    pcr_bearish_above: float = 1.0
    max_fundamental_signals: int = 3
    max_social_signals: int = 2
    chain_expirations: int = 3      # expiries fetched per chain request


class GammaSettings(BaseModel):
    ntm_pct: float = 0.05
    week52_proximity_pct: float = 0.01
    pcr_tiers: list[list[float]] = Field(default_factory=lambda: [
        [0.4, 40], [0.6, 30], [0.8, 15],
    ])
    vol_oi_tiers: list[list[float]] = Field(default_factory=lambda: [[2.0, 30], [1.0, 20]])
    iv_hv_tiers: list[list[float]] = Field(default_factory=lambda: [[1.5, 20], [1.2, 10]])
    iv_absolute_tiers: list[list[float]] = Field(default_factory=lambda: [[0.8, 20], [0.5, 10]])
    week52_points: int = 10


class FlowSettings(BaseModel):
    min_volume: int = 200
    alert_notional: float = 100_000.0
    alert_volume: int = 500
    alert_vol_oi: float = 1.5
    top_n: int = 10


class FundamentalsSettings(BaseModel):
    eps_growth_min: float = 10.0
    roe_min: float = 15.0
    peg_max: float = 1.2
    debt_to_equity_max: float = 1.0
    pe_max: float = 25.0
    bullish_news_pct: float = 0.6
    high_buzz: float = 1.0


class TimeframeDef(BaseModel):
    """How each provider spells a timeframe, and how much history to pull."""

    alpaca: str
    yfinance_interval: str
    yfinance_period: str
    schwab_period_type: str
    schwab_period: int
    schwab_frequency_type: str
    schwab_frequency: int
    lookback_days: int = 30
    limit: int = 500
    vwap_anchor: VWAPAnchor = VWAPAnchor.DAY
    aggregate_from: Timeframe | None = None  # build from another timeframe's bars
    resample_rule: str | None = None         # pandas offset alias applied after fetch
    staleness_days: float | None = None   # None = stitcher default


class OrchestratorSettings(BaseModel):
    timeframes: list[Timeframe] = Field(default_factory=lambda: [
        Timeframe.MIN_10, Timeframe.HOUR_1, Timeframe.DAY_1, Timeframe.WEEK_1,
    ])
    min_daily_bars: int = 50
    max_concurrent_symbols: int = 5
    avg_volume_window: int = 252


def _default_timeframes() -> dict[Timeframe, TimeframeDef]:
    return {
        Timeframe.MIN_10: TimeframeDef(
            alpaca="10Min", yfinance_interval="5m", yfinance_period="5d",
            schwab_period_type="day", schwab_period=5,
            schwab_frequency_type="minute", schwab_frequency=10,
            lookback_days=5, limit=500, vwap_anchor=VWAPAnchor.DAY,
            resample_rule="10min",
        ),
        Timeframe.HOUR_1: TimeframeDef(
            alpaca="1Hour", yfinance_interval="1h", yfinance_period="60d",
            schwab_period_type="day", schwab_period=10,
            schwab_frequency_type="minute", schwab_frequency=30,
            lookback_days=30, limit=500, vwap_anchor=VWAPAnchor.WEEK,
            resample_rule="1h",
        ),
        Timeframe.HOUR_4: TimeframeDef(
            alpaca="1Hour", yfinance_interval="1h", yfinance_period="60d",
            schwab_period_type="day", schwab_period=10,
            schwab_frequency_type="minute", schwab_frequency=30,
            lookback_days=60, limit=1000, vwap_anchor=VWAPAnchor.MONTH,
            aggregate_from=Timeframe.HOUR_1, resample_rule="4h",
        ),
        Timeframe.DAY_1: TimeframeDef(
            alpaca="1Day", yfinance_interval="1d", yfinance_period="2y",
            schwab_period_type="year", schwab_period=2,
            schwab_frequency_type="daily", schwab_frequency=1,
            lookback_days=730, limit=500, vwap_anchor=VWAPAnchor.YEAR,
        ),
        Timeframe.WEEK_1: TimeframeDef(
            alpaca="1Week", yfinance_interval="1wk", yfinance_period="5y",
            schwab_period_type="year", schwab_period=5,
            schwab_frequency_type="weekly", schwab_frequency=1,
            lookback_days=1825, limit=260, vwap_anchor=VWAPAnchor.NONE,
            staleness_days=14.0,
        ),
    }


class Settings(BaseModel):
    """Root settings object. Built from defaults.yaml and the user config file."""

    providers: ProvidersSettings = Field(default_factory=ProvidersSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    waterfall: WaterfallSettings = Field(default_factory=WaterfallSettings)
    stitcher: StitcherSettings = Field(default_factory=StitcherSettings)
    technicals: TechnicalsSettings = Field(default_factory=TechnicalsSettings)
    options: OptionsSettings = Field(default_factory=OptionsSettings)
    gamma: GammaSettings = Field(default_factory=GammaSettings)
    flow: FlowSettings = Field(default_factory=FlowSettings)
    fundamentals: FundamentalsSettings = Field(default_factory=FundamentalsSettings)
    timeframes: dict[Timeframe, TimeframeDef] = Field(default_factory=_default_timeframes)
    orchestrator: OrchestratorSettings = Field(default_factory=OrchestratorSettings)


# --- Loading ---

_DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"
_USER_CONFIG_PATH = Path.home() / ".market_pulse" / "config.yaml"

_ENV_PATTERN = re.compile(r"^\$\{?([A-Z_][A-Z0-9_]*)\}?$")

_cached_settings: Settings | None = None


def _resolve_env(value: str) -> str:
    """Resolve ``${ENV_VAR}`` or ``$ENV_VAR`` in a credential value.

    An unset variable resolves to "" so the owning provider reports itself
    unconfigured and is skipped.
    """
    if not value:
        return ""
    match = _ENV_PATTERN.match(value)
    if match:
        return os.getenv(match.group(1), "")
    return value


def _deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge override into base. Returns new dict."""
    merged = base.copy()
    for key, value in override.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_settings(
    user_config_path: Path | None = None,
    _force_reload: bool = False,
) -> Settings:
    """Load defaults.yaml, merge ~/.market_pulse/config.yaml if present.

    Args:
        user_config_path: Override path for user config file.
        _force_reload: Bypass cache (for testing).

    Returns:
        Merged Settings instance.
    """
    global _cached_settings
    if _cached_settings is not None and not _force_reload:
        return _cached_settings

    # Layer 1: package defaults
    with open(_DEFAULTS_PATH) as f:
        defaults = yaml.safe_load(f) or {}

    # Layer 2: user overrides
    user_path = user_config_path or _USER_CONFIG_PATH
    if user_path.exists():
        with open(user_path) as f:
            user = yaml.safe_load(f) or {}
        merged = _deep_merge(defaults, user)
    else:
        merged = defaults

    _cached_settings = Settings(**merged)
    return _cached_settings


def get_settings() -> Settings:
    """Get cached settings (singleton). Loads on first call."""
    return load_settings()


def reset_settings() -> None:
    """Clear cached settings. Next get_settings() will reload from YAML."""
    global _cached_settings
    _cached_settings = None
