"""SchwabClient: price history, quotes and option chains from Schwab Market Data."""

from __future__ import annotations

import time
from collections.abc import Callable
from datetime import date

import httpx
import pandas as pd

from market_pulse.config import ProviderSettings, TimeframeDef, get_settings
from market_pulse.data.auth import TokenManager
from market_pulse.data.cache import ResourceCache
from market_pulse.data.exceptions import AuthError, NotFound, UpstreamError
from market_pulse.data.providers._helpers import (
    frame_from_records,
    parse_timestamp,
    safe_float,
    safe_int,
)
from market_pulse.data.providers.base import HttpProviderClient
from market_pulse.data.rate_limit import RateLimiter
from market_pulse.macro.session import market_session
from market_pulse.models.data import DataType, ProviderType, Timeframe
from market_pulse.models.market import Quote
from market_pulse.models.options import Greeks, OptionChain, OptionContract, OptionType


class SchwabClient(HttpProviderClient):
    """Professional feed. OAuth access tokens are minted from a long-lived refresh token."""

    def __init__(
        self,
        settings: ProviderSettings | None = None,
        http: httpx.AsyncClient | None = None,
        limiter: RateLimiter | None = None,
        cache: ResourceCache | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        settings = settings or get_settings().providers.schwab
        super().__init__(settings, http=http, limiter=limiter, cache=cache, clock=clock)
        self._tokens = TokenManager(
            self.name,
            self._refresh_token,
            margin_seconds=settings.token_refresh_margin_seconds,
            clock=clock,
        )

    @property
    def provider_type(self) -> ProviderType:
        return ProviderType.SCHWAB

    @property
    def supported_data_types(self) -> list[DataType]:
        return [DataType.QUOTE, DataType.OHLCV, DataType.OPTIONS_CHAIN]

    def _has_credentials(self) -> bool:
        return all(
            self.settings.credential(k) for k in ("client_id", "client_secret", "refresh_token")
        )

    async def _refresh_token(self) -> tuple[str, float]:
        try:
            response = await self._http.post(
                self.settings.auth_url,
                data={
                    "grant_type": "refresh_token",
                    "refresh_token": self.settings.credential("refresh_token"),
                },
                auth=(
                    self.settings.credential("client_id"),
                    self.settings.credential("client_secret"),
                ),
            )
        except httpx.HTTPError as e:
            raise AuthError(self.name, "", f"token request failed: {e}") from e
        if not response.is_success:
            raise AuthError(self.name, "", f"token request returned HTTP {response.status_code}")
        try:
            payload = response.json()
            return payload.get("access_token", ""), float(payload.get("expires_in", 1800))
        except (ValueError, TypeError, AttributeError) as e:
            raise AuthError(self.name, "", "malformed token response") from e

    async def _auth_headers(self, symbol: str) -> dict[str, str]:
        token = await self._tokens.get_token()
        return {"Authorization": f"Bearer {token}"}

    def _on_unauthorized(self) -> None:
        self._tokens.invalidate()

    async def fetch_quote(self, symbol: str) -> Quote:
        data = await self._request("GET", f"/{symbol}/quotes", symbol)
        with self._parsing(symbol):
            body = (data or {}).get(symbol)
            if not body:
                raise NotFound(self.name, symbol, "symbol missing from quote response")
            q = body.get("quote") or {}
            price = safe_float(q.get("lastPrice")) or safe_float(q.get("mark"))
            if not price or price <= 0:
                raise UpstreamError(self.name, symbol, "quote has no last price")
            return Quote(
                symbol=symbol,
                price=price,
                change=safe_float(q.get("netChange")),
                change_pct=safe_float(q.get("netPercentChange")),
                volume=safe_int(q.get("totalVolume")),
                timestamp=parse_timestamp(q.get("tradeTime") or q.get("quoteTime")),
                session=market_session(),
                source=self.name,
            )

    async def fetch_bars(
        self, symbol: str, timeframe: Timeframe, tf_def: TimeframeDef
    ) -> pd.DataFrame:
        data = await self._request(
            "GET",
            "/pricehistory",
            symbol,
            params={
                "symbol": symbol,
                "periodType": tf_def.schwab_period_type,
                "period": tf_def.schwab_period,
                "frequencyType": tf_def.schwab_frequency_type,
                "frequency": tf_def.schwab_frequency,
                "needExtendedHoursData": "true",
            },
        )
        with self._parsing(symbol):
            df = frame_from_records(
                (data or {}).get("candles") or [],
                "datetime",
                ("open", "high", "low", "close", "volume"),
            )
        if df.empty:
            raise NotFound(self.name, symbol, f"no {timeframe} candles")
        return df

    async def fetch_option_chain(self, symbol: str, expiry: date | None = None) -> OptionChain:
        params: dict[str, str] = {"symbol": symbol}
        if expiry is not None:
            params["fromDate"] = params["toDate"] = expiry.isoformat()
        data = await self._request("GET", "/chains", symbol, params=params)
        with self._parsing(symbol):
            if not data or data.get("status") == "FAILED":
                raise NotFound(self.name, symbol, "option chain unavailable")

            contracts: list[OptionContract] = []
            for key, opt_type in (("callExpDateMap", OptionType.CALL), ("putExpDateMap", OptionType.PUT)):
                for exp_key, by_strike in (data.get(key) or {}).items():
                    # "2025-01-17:30" -> expiry date : days to expiry
                    exp = date.fromisoformat(exp_key.split(":")[0])
                    for strike_key, rows in by_strike.items():
                        for raw in rows:
                            contracts.append(self._parse_contract(symbol, exp, opt_type, strike_key, raw))

        if not contracts:
            raise NotFound(self.name, symbol, "option chain empty")
        return OptionChain.from_contracts(symbol, contracts, source=self.name)

    @staticmethod
    def _parse_contract(
        root: str, expiry: date, opt_type: OptionType, strike_key: str, raw: dict
    ) -> OptionContract:
        def greek(name: str) -> float | None:
            value = safe_float(raw.get(name))
            # Schwab reports unavailable greeks as -999
            return None if value is None or value <= -999 else value

        iv = greek("volatility")
        return OptionContract(
            symbol=raw.get("symbol", ""),
            root=root,
            strike=safe_float(raw.get("strikePrice")) or float(strike_key),
            expiration=expiry,
            option_type=opt_type,
            bid=safe_float(raw.get("bid")) or 0.0,
            ask=safe_float(raw.get("ask")) or 0.0,
            last=safe_float(raw.get("last")) or 0.0,
            volume=safe_int(raw.get("totalVolume")),
            open_interest=safe_int(raw.get("openInterest")),
            greeks=Greeks(
                delta=greek("delta"),
                gamma=greek("gamma"),
                theta=greek("theta"),
                vega=greek("vega"),
                rho=greek("rho"),
                implied_volatility=iv / 100 if iv is not None else None,  # percent on the wire
            ),
        )
