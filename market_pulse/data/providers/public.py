"""PublicClient: quotes, option chains and greeks from Public.com's trading API."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from datetime import date

import httpx

from market_pulse.config import ProviderSettings, get_settings
from market_pulse.data.auth import TokenManager
from market_pulse.data.cache import ResourceCache
from market_pulse.data.exceptions import AuthError, NotFound, UpstreamError
from market_pulse.data.providers._helpers import (
    parse_timestamp,
    safe_float,
    safe_int,
    select_expirations,
    strike_from_osi,
)
from market_pulse.data.providers.base import HttpProviderClient
from market_pulse.data.rate_limit import RateLimiter
from market_pulse.macro.session import market_session
from market_pulse.models.data import DataType, ProviderType
from market_pulse.models.market import Quote
from market_pulse.models.options import Greeks, OptionChain, OptionContract, OptionType

logger = logging.getLogger(__name__)

_TOKEN_VALIDITY_MINUTES = 60

_ACCOUNT_PATH = "/userapigateway/trading/account"
_MARKETDATA_PATH = "/userapigateway/marketdata/{account}"
_OPTION_DETAILS_PATH = "/userapigateway/option-details/{account}"


class PublicClient(HttpProviderClient):
    """Primary quote and option-chain vendor.

    Authenticates with a personal access token minted from the API secret,
    then discovers the brokerage account id that every market-data path is
    scoped to.
    """

    def __init__(
        self,
        settings: ProviderSettings | None = None,
        http: httpx.AsyncClient | None = None,
        limiter: RateLimiter | None = None,
        cache: ResourceCache | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        settings = settings or get_settings().providers.public
        super().__init__(settings, http=http, limiter=limiter, cache=cache, clock=clock)
        self._tokens = TokenManager(
            self.name,
            self._refresh_token,
            margin_seconds=settings.token_refresh_margin_seconds,
            clock=clock,
        )
        self._account_id: str | None = None

    @property
    def provider_type(self) -> ProviderType:
        return ProviderType.PUBLIC

    @property
    def supported_data_types(self) -> list[DataType]:
        return [DataType.QUOTE, DataType.OPTIONS_CHAIN, DataType.GREEKS]

    def _has_credentials(self) -> bool:
        return bool(self.settings.credential("secret"))

    # -- auth --

    async def _refresh_token(self) -> tuple[str, float]:
        try:
            response = await self._http.post(
                self.settings.auth_url,
                json={
                    "secret": self.settings.credential("secret"),
                    "validityInMinutes": _TOKEN_VALIDITY_MINUTES,
                },
            )
        except httpx.HTTPError as e:
            raise AuthError(self.name, "", f"token request failed: {e}") from e
        if not response.is_success:
            raise AuthError(self.name, "", f"token request returned HTTP {response.status_code}")
        try:
            token = response.json().get("accessToken", "")
        except (ValueError, AttributeError) as e:
            raise AuthError(self.name, "", "malformed token response") from e
        return token, _TOKEN_VALIDITY_MINUTES * 60.0

    async def _auth_headers(self, symbol: str) -> dict[str, str]:
        token = await self._tokens.get_token()
        return {"Authorization": f"Bearer {token}"}

    def _on_unauthorized(self) -> None:
        self._tokens.invalidate()

    async def _account(self, symbol: str) -> str:
        if self._account_id:
            return self._account_id
        data = await self._request("GET", _ACCOUNT_PATH, symbol)
        with self._parsing(symbol):
            accounts = (data or {}).get("accounts") or []
            if not accounts:
                raise UpstreamError(self.name, symbol, "no accounts on this API key")
            account = next(
                (a for a in accounts if a.get("accountType") == "BROKERAGE"), accounts[0]
            )
            self._account_id = str(account["accountId"])
        logger.info("public account resolved: %s", self._account_id)
        return self._account_id

    # -- resources --

    async def fetch_quote(self, symbol: str) -> Quote:
        account = await self._account(symbol)
        data = await self._request(
            "POST",
            f"{_MARKETDATA_PATH.format(account=account)}/quotes",
            symbol,
            json={"instruments": [{"symbol": symbol, "type": "EQUITY"}]},
        )
        with self._parsing(symbol):
            quotes = (data or {}).get("quotes") or []
            q = next(
                (item for item in quotes if item.get("instrument", {}).get("symbol") == symbol),
                None,
            )
            if q is None:
                raise NotFound(self.name, symbol, "symbol missing from quote response")
            price = safe_float(q.get("last"))
            if not price or price <= 0:
                raise UpstreamError(self.name, symbol, "quote has no last price")
            return Quote(
                symbol=symbol,
                price=price,
                change=safe_float(q.get("netChange")),
                change_pct=safe_float(q.get("percentChange")),
                volume=safe_int(q.get("volume")),
                timestamp=parse_timestamp(q.get("lastTimestamp")),
                session=market_session(),
                source=self.name,
            )

    async def fetch_expirations(self, symbol: str) -> list[date]:
        account = await self._account(symbol)
        data = await self._request(
            "POST",
            f"{_MARKETDATA_PATH.format(account=account)}/option-expirations",
            symbol,
            json={"instrument": {"symbol": symbol, "type": "EQUITY"}},
        )
        with self._parsing(symbol):
            return sorted(date.fromisoformat(e) for e in (data or {}).get("expirations") or [])

    async def fetch_option_chain(self, symbol: str, expiry: date | None = None) -> OptionChain:
        opts = get_settings().options
        available = await self.fetch_expirations(symbol)
        targets = select_expirations(
            available, opts.chain_expirations, opts.target_dte, wanted=expiry,
        )
        if not targets:
            raise NotFound(self.name, symbol, "no option expirations")

        account = await self._account(symbol)
        contracts: list[OptionContract] = []
        for exp in targets:
            data = await self._request(
                "POST",
                f"{_MARKETDATA_PATH.format(account=account)}/option-chain",
                symbol,
                json={
                    "instrument": {"symbol": symbol, "type": "EQUITY"},
                    "expirationDate": exp.isoformat(),
                },
            )
            with self._parsing(symbol):
                for key, opt_type in (("calls", OptionType.CALL), ("puts", OptionType.PUT)):
                    for raw in (data or {}).get(key) or []:
                        contract = self._parse_contract(symbol, exp, opt_type, raw)
                        if contract is not None:
                            contracts.append(contract)

        if not contracts:
            raise NotFound(self.name, symbol, "option chain empty")
        return OptionChain.from_contracts(symbol, contracts, source=self.name)

    @staticmethod
    def _parse_contract(
        root: str, expiry: date, opt_type: OptionType, raw: dict
    ) -> OptionContract | None:
        osi = raw.get("instrument", {}).get("symbol", "")
        strike = strike_from_osi(osi)
        if not strike:
            return None
        return OptionContract(
            symbol=osi,
            root=root,
            strike=strike,
            expiration=expiry,
            option_type=opt_type,
            bid=safe_float(raw.get("bid")) or 0.0,
            ask=safe_float(raw.get("ask")) or 0.0,
            last=safe_float(raw.get("last")) or 0.0,
            volume=safe_int(raw.get("volume")),
            open_interest=safe_int(raw.get("openInterest")),
        )

    async def fetch_greeks(self, osi_symbols: list[str]) -> dict[str, Greeks]:
        """Greeks keyed by OSI symbol. Chains arrive without them."""
        if not osi_symbols:
            return {}
        symbol = osi_symbols[0]
        account = await self._account(symbol)
        data = await self._request(
            "GET",
            f"{_OPTION_DETAILS_PATH.format(account=account)}/greeks",
            symbol,
            params={"osiSymbols": ",".join(osi_symbols)},
        )
        result: dict[str, Greeks] = {}
        with self._parsing(symbol):
            for item in (data or {}).get("greeks") or []:
                g = item.get("greeks") or {}
                result[item.get("symbol", symbol)] = Greeks(
                    delta=safe_float(g.get("delta")),
                    gamma=safe_float(g.get("gamma")),
                    theta=safe_float(g.get("theta")),
                    vega=safe_float(g.get("vega")),
                    rho=safe_float(g.get("rho")),
                    implied_volatility=safe_float(g.get("impliedVolatility")),
                )
        return result
