"""Option chain, signal and flow models."""

from __future__ import annotations

from collections.abc import Iterator
from datetime import date
from enum import StrEnum

from pydantic import BaseModel, Field, model_validator

from market_pulse.models.technicals import TrendDirection


class OptionType(StrEnum):
    CALL = "call"
    PUT = "put"


class Direction(StrEnum):
    CALL = "CALL"
    PUT = "PUT"
    WAIT = "WAIT"


class Greeks(BaseModel):
    delta: float | None = None
    gamma: float | None = None
    theta: float | None = None
    vega: float | None = None
    rho: float | None = None
    implied_volatility: float | None = None


class OptionContract(BaseModel):
    """Market data for a single option contract."""

    symbol: str = ""  # OSI symbol when the provider supplies one
    root: str
    strike: float
    expiration: date
    option_type: OptionType
    bid: float = 0.0
    ask: float = 0.0
    last: float = 0.0
    volume: int = 0
    open_interest: int = 0
    greeks: Greeks | None = None

    @property
    def mid(self) -> float:
        if self.bid > 0 and self.ask > 0:
            return (self.bid + self.ask) / 2
        return self.last

    @property
    def implied_volatility(self) -> float | None:
        return self.greeks.implied_volatility if self.greeks else None


class StrikeEntry(BaseModel):
    call: OptionContract | None = None
    put: OptionContract | None = None

    def side(self, option_type: OptionType) -> OptionContract | None:
        return self.call if option_type == OptionType.CALL else self.put


class OptionChain(BaseModel):
    """Chain for one underlying: expiry -> strike -> call/put."""

    symbol: str
    expirations: list[date] = Field(default_factory=list)
    strikes: list[float] = Field(default_factory=list)
    options: dict[date, dict[float, StrikeEntry]] = Field(default_factory=dict)
    source: str = ""
    stale: bool = False

    @model_validator(mode="after")
    def _check_entries(self) -> OptionChain:
        for expiry, by_strike in self.options.items():
            for strike, entry in by_strike.items():
                if entry.call is None and entry.put is None:
                    raise ValueError(f"empty strike entry {expiry} {strike}")
        return self

    @classmethod
    def from_contracts(
        cls, symbol: str, contracts: list[OptionContract], source: str = ""
    ) -> OptionChain:
        """Assemble a chain from a flat contract list."""
        options: dict[date, dict[float, StrikeEntry]] = {}
        for c in contracts:
            entry = options.setdefault(c.expiration, {}).setdefault(c.strike, StrikeEntry())
            if c.option_type == OptionType.CALL:
                entry.call = c
            else:
                entry.put = c
        return cls(
            symbol=symbol,
            expirations=sorted(options),
            strikes=sorted({c.strike for c in contracts}),
            options={exp: dict(sorted(options[exp].items())) for exp in sorted(options)},
            source=source,
        )

    def contracts(self) -> Iterator[OptionContract]:
        for by_strike in self.options.values():
            for entry in by_strike.values():
                if entry.call is not None:
                    yield entry.call
                if entry.put is not None:
                    yield entry.put

    def calls(self) -> list[OptionContract]:
        return [c for c in self.contracts() if c.option_type == OptionType.CALL]

    def puts(self) -> list[OptionContract]:
        return [c for c in self.contracts() if c.option_type == OptionType.PUT]

    @property
    def is_empty(self) -> bool:
        return not any(self.options.values())


class PutCallRatio(BaseModel):
    volume_ratio: float
    oi_ratio: float
    total_calls: int
    total_puts: int
    total_call_oi: int
    total_put_oi: int
    bias: TrendDirection
    stale: bool = False


class GammaSqueezeScore(BaseModel):
    """Composite 0-100 squeeze likelihood with the reasons that fired."""

    symbol: str = ""
    score: int = 0
    reasons: list[str] = Field(default_factory=list)
    details: dict[str, float | None] = Field(default_factory=dict)


class Recommendation(BaseModel):
    """Single ranked option trade idea. Recomputed per request."""

    direction: Direction
    strike: float | None = None
    expiry: date | None = None
    confidence: int = 0
    reason: str = ""
    bull_score: int = 0
    bear_score: int = 0
    entry_price: float | None = None
    stop_loss: float | None = None
    take_profit_1: float | None = None
    take_profit_2: float | None = None
    technical_signals: list[str] = Field(default_factory=list)
    fundamental_signals: list[str] = Field(default_factory=list)
    social_signals: list[str] = Field(default_factory=list)
    contract: OptionContract | None = None
    contract_price: float | None = None
    probability_itm: float | None = None


class UnusualOption(BaseModel):
    contract: OptionContract
    vol_oi_ratio: float | None
    notional: float
    is_alert: bool
    sentiment: TrendDirection
