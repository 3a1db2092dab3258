"""Tests for the vendor clients, using httpx.MockTransport and patched yfinance."""

from datetime import date, datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import httpx
import numpy as np
import pandas as pd
import pytest
from yfinance.exceptions import YFRateLimitError

from market_pulse.config import ProviderSettings, get_settings
from market_pulse.data.exceptions import AuthError, NotFound, Throttled, UpstreamError
from market_pulse.data.providers import (
    AlpacaClient,
    FinnhubClient,
    PublicClient,
    SchwabClient,
    YFinanceProvider,
)
from market_pulse.data.providers._helpers import (
    safe_float,
    select_expirations,
    strike_from_osi,
)
from market_pulse.models.data import DataType, Timeframe

PUBLIC_URL = "https://api.public.com"
SCHWAB_URL = "https://api.schwabapi.com/marketdata/v1"


class _Handler:
    """Routes requests by path suffix and records every request."""

    def __init__(self, routes: dict[str, httpx.Response]) -> None:
        self.routes = routes
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        for suffix, canned in self.routes.items():
            if request.url.path.endswith(suffix):
                # fresh copy, a Response can only be bound to one request
                return httpx.Response(canned.status_code, headers=canned.headers, content=canned.content)
        return httpx.Response(404, json={"error": "no route"})

    def count(self, suffix: str) -> int:
        return sum(1 for r in self.requests if r.url.path.endswith(suffix))


def _http(handler: _Handler, base_url: str) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url=base_url)


def _public(handler: _Handler, clock, max_requests: int = 60) -> PublicClient:
    settings = ProviderSettings(
        base_url=PUBLIC_URL,
        auth_url=f"{PUBLIC_URL}/userapiauthservice/personal/access-tokens",
        documented_limit=max_requests,
        headroom=0.0,
        cooldown_seconds=60,
        credentials={"secret": "s3cret"},
    )
    return PublicClient(settings, http=_http(handler, PUBLIC_URL), clock=clock)


def _public_routes(quote_response: httpx.Response) -> dict[str, httpx.Response]:
    return {
        "/access-tokens": httpx.Response(200, json={"accessToken": "tok"}),
        "/trading/account": httpx.Response(
            200, json={"accounts": [{"accountId": "ACC1", "accountType": "BROKERAGE"}]},
        ),
        "/quotes": quote_response,
    }


_AAPL_QUOTE = httpx.Response(200, json={
    "quotes": [{
        "instrument": {"symbol": "AAPL", "type": "EQUITY"},
        "last": "187.25",
        "volume": 51234567,
        "lastTimestamp": "2025-01-02T15:30:00Z",
    }],
})


class TestHelpers:
    def test_safe_float(self):
        assert safe_float("1.5") == 1.5
        assert safe_float(None) is None
        assert safe_float("n/a") is None
        assert safe_float(float("nan")) is None

    def test_strike_from_osi(self):
        assert strike_from_osi("AAPL250117C00150000") == 150.0
        assert strike_from_osi("SPY   250117P00412500") == 412.5
        assert strike_from_osi("AAPL") is None

    def test_select_expirations(self):
        today = date(2025, 1, 2)
        available = [date(2024, 12, 27)] + [today + timedelta(days=7 * i) for i in range(1, 10)]
        chosen = select_expirations(available, count=2, target_dte=30, today=today)
        assert date(2024, 12, 27) not in chosen
        assert chosen[:2] == [date(2025, 1, 9), date(2025, 1, 16)]
        assert date(2025, 1, 30) in chosen


class TestPublicClient:
    @pytest.mark.asyncio
    async def test_quote(self, clock):
        handler = _Handler(_public_routes(_AAPL_QUOTE))
        client = _public(handler, clock)
        quote = await client.fetch_quote("AAPL")
        assert quote.price == 187.25
        assert quote.volume == 51234567
        assert quote.source == "public"
        assert handler.requests[-1].headers["Authorization"] == "Bearer tok"

    @pytest.mark.asyncio
    async def test_token_and_account_fetched_once(self, clock):
        handler = _Handler(_public_routes(_AAPL_QUOTE))
        client = _public(handler, clock)
        await client.fetch_quote("AAPL")
        await client.fetch_quote("AAPL")
        assert handler.count("/access-tokens") == 1
        assert handler.count("/trading/account") == 1
        assert handler.count("/quotes") == 2

    @pytest.mark.asyncio
    async def test_unconfigured_without_secret(self):
        client = PublicClient(ProviderSettings(base_url=PUBLIC_URL))
        assert client.is_configured is False
        assert client.supports(DataType.QUOTE)
        assert not client.supports(DataType.OHLCV)

    @pytest.mark.asyncio
    async def test_cooldown_makes_no_network_call(self, clock):
        handler = _Handler(_public_routes(_AAPL_QUOTE))
        client = _public(handler, clock)
        client.limiter.trip()
        with pytest.raises(Throttled):
            await client.fetch_quote("AAPL")
        assert handler.requests == []

    @pytest.mark.asyncio
    async def test_429_trips_cooldown(self, clock):
        handler = _Handler(_public_routes(httpx.Response(429, json={})))
        client = _public(handler, clock)
        with pytest.raises(Throttled):
            await client.fetch_quote("AAPL")
        assert client.limiter.in_cooldown
        sent = len(handler.requests)

        with pytest.raises(Throttled):
            await client.fetch_quote("AAPL")
        assert len(handler.requests) == sent

        clock.advance(61)
        handler.routes["/quotes"] = _AAPL_QUOTE
        assert (await client.fetch_quote("AAPL")).price == 187.25

    @pytest.mark.asyncio
    async def test_window_exhaustion_refuses_locally(self, clock):
        handler = _Handler(_public_routes(_AAPL_QUOTE))
        # account lookup + one quote fill the window
        client = _public(handler, clock, max_requests=2)
        await client.fetch_quote("AAPL")
        with pytest.raises(Throttled):
            await client.fetch_quote("AAPL")
        assert handler.count("/quotes") == 1

    @pytest.mark.asyncio
    async def test_server_error_is_upstream_error(self, clock):
        handler = _Handler(_public_routes(httpx.Response(503, text="unavailable")))
        client = _public(handler, clock)
        with pytest.raises(UpstreamError) as exc:
            await client.fetch_quote("AAPL")
        assert exc.value.status == 503
        assert not client.limiter.in_cooldown

    @pytest.mark.asyncio
    async def test_malformed_json(self, clock):
        handler = _Handler(_public_routes(httpx.Response(200, text="<html>")))
        client = _public(handler, clock)
        with pytest.raises(UpstreamError, match="malformed"):
            await client.fetch_quote("AAPL")

    @pytest.mark.asyncio
    async def test_unknown_symbol_not_found(self, clock):
        handler = _Handler(_public_routes(httpx.Response(200, json={"quotes": []})))
        client = _public(handler, clock)
        with pytest.raises(NotFound):
            await client.fetch_quote("ZZZZ")

    @pytest.mark.asyncio
    async def test_401_drops_token(self, clock):
        handler = _Handler(_public_routes(httpx.Response(401, text="expired")))
        client = _public(handler, clock)
        with pytest.raises(UpstreamError):
            await client.fetch_quote("AAPL")
        handler.routes["/quotes"] = _AAPL_QUOTE
        await client.fetch_quote("AAPL")
        assert handler.count("/access-tokens") == 2

    @pytest.mark.asyncio
    async def test_greeks(self, clock):
        routes = _public_routes(_AAPL_QUOTE)
        routes["/greeks"] = httpx.Response(200, json={"greeks": [{
            "symbol": "AAPL250117C00150000",
            "greeks": {"delta": "0.55", "gamma": "0.03", "impliedVolatility": "0.28"},
        }]})
        client = _public(_Handler(routes), clock)
        greeks = await client.fetch_greeks(["AAPL250117C00150000"])
        g = greeks["AAPL250117C00150000"]
        assert g.delta == 0.55
        assert g.implied_volatility == 0.28
        assert g.theta is None


def _schwab(handler: _Handler, clock) -> SchwabClient:
    settings = ProviderSettings(
        base_url=SCHWAB_URL,
        auth_url="https://api.schwabapi.com/v1/oauth/token",
        credentials={"client_id": "id", "client_secret": "secret", "refresh_token": "refresh"},
    )
    return SchwabClient(settings, http=_http(handler, SCHWAB_URL), clock=clock)


_SCHWAB_TOKEN = httpx.Response(200, json={"access_token": "tok", "expires_in": 1800})


class TestSchwabClient:
    @pytest.mark.asyncio
    async def test_option_chain(self, clock):
        chain_json = {
            "symbol": "AAPL",
            "status": "SUCCESS",
            "callExpDateMap": {
                "2025-01-17:15": {
                    "150.0": [{
                        "symbol": "AAPL  250117C00150000", "strikePrice": 150.0,
                        "bid": 3.1, "ask": 3.3, "last": 3.2, "totalVolume": 1200,
                        "openInterest": 5000, "delta": 0.52, "gamma": 0.04,
                        "theta": -0.08, "vega": 0.15, "rho": -999.0, "volatility": 25.0,
                    }],
                },
            },
            "putExpDateMap": {
                "2025-01-17:15": {
                    "150.0": [{
                        "symbol": "AAPL  250117P00150000", "strikePrice": 150.0,
                        "bid": 2.9, "ask": 3.0, "totalVolume": 800,
                        "openInterest": 4000, "delta": -0.48, "volatility": -999.0,
                    }],
                },
            },
        }
        handler = _Handler({"/oauth/token": _SCHWAB_TOKEN, "/chains": httpx.Response(200, json=chain_json)})
        chain = await _schwab(handler, clock).fetch_option_chain("AAPL")

        assert chain.expirations == [date(2025, 1, 17)]
        assert chain.strikes == [150.0]
        entry = chain.options[date(2025, 1, 17)][150.0]
        assert entry.call.volume == 1200
        assert entry.call.greeks.delta == 0.52
        assert entry.call.greeks.rho is None
        assert entry.call.implied_volatility == pytest.approx(0.25)
        assert entry.put.implied_volatility is None
        assert chain.source == "schwab"

    @pytest.mark.asyncio
    async def test_failed_chain_not_found(self, clock):
        handler = _Handler({
            "/oauth/token": _SCHWAB_TOKEN,
            "/chains": httpx.Response(200, json={"status": "FAILED"}),
        })
        with pytest.raises(NotFound):
            await _schwab(handler, clock).fetch_option_chain("ZZZZ")

    @pytest.mark.asyncio
    async def test_price_history(self, clock):
        start = int(datetime(2025, 1, 2, tzinfo=timezone.utc).timestamp() * 1000)
        candles = [
            {"datetime": start + i * 86_400_000, "open": 100 + i, "high": 101 + i,
             "low": 99 + i, "close": 100.5 + i, "volume": 1000}
            for i in range(3)
        ]
        handler = _Handler({
            "/oauth/token": _SCHWAB_TOKEN,
            "/pricehistory": httpx.Response(200, json={"candles": candles}),
        })
        tf_def = get_settings().timeframes[Timeframe.DAY_1]
        df = await _schwab(handler, clock).fetch_bars("AAPL", Timeframe.DAY_1, tf_def)

        assert list(df.columns) == ["Open", "High", "Low", "Close", "Volume"]
        assert len(df) == 3
        assert df.index.tz is None
        assert df["Close"].iloc[-1] == 102.5
        params = handler.requests[-1].url.params
        assert params["periodType"] == "year"
        assert params["frequencyType"] == "daily"


def _alpaca(handler: _Handler, clock) -> AlpacaClient:
    settings = ProviderSettings(
        base_url="https://data.alpaca.markets/v2",
        credentials={"api_key": "key", "api_secret": "secret"},
    )
    return AlpacaClient(settings, http=_http(handler, settings.base_url), clock=clock)


def _alpaca_bars(end: datetime, count: int, step: timedelta) -> list[dict]:
    # newest first, as requested with sort=desc
    return [
        {"t": (end - i * step).strftime("%Y-%m-%dT%H:%M:%SZ"),
         "o": 100.0, "h": 101.0, "l": 99.0, "c": 100.0 + i, "v": 5000}
        for i in range(count)
    ]


class TestAlpacaClient:
    @pytest.mark.asyncio
    async def test_bars_sorted_ascending(self, clock):
        end = datetime.now(timezone.utc).replace(microsecond=0)
        handler = _Handler({"/bars": httpx.Response(200, json={"bars": _alpaca_bars(end, 5, timedelta(days=1))})})
        tf_def = get_settings().timeframes[Timeframe.DAY_1]
        df = await _alpaca(handler, clock).fetch_bars("AAPL", Timeframe.DAY_1, tf_def)

        assert df.index.is_monotonic_increasing
        assert df["Close"].iloc[-1] == 100.0
        req = handler.requests[-1]
        assert req.headers["APCA-API-KEY-ID"] == "key"
        assert req.url.params["feed"] == "iex"

    @pytest.mark.asyncio
    async def test_stale_intraday_rejected(self, clock):
        end = datetime.now(timezone.utc) - timedelta(days=3)
        handler = _Handler({"/bars": httpx.Response(200, json={"bars": _alpaca_bars(end, 5, timedelta(minutes=10))})})
        tf_def = get_settings().timeframes[Timeframe.MIN_10]
        with pytest.raises(UpstreamError, match="stale intraday"):
            await _alpaca(handler, clock).fetch_bars("AAPL", Timeframe.MIN_10, tf_def)

    @pytest.mark.asyncio
    async def test_old_daily_bars_accepted(self, clock):
        end = datetime.now(timezone.utc) - timedelta(days=3)
        handler = _Handler({"/bars": httpx.Response(200, json={"bars": _alpaca_bars(end, 5, timedelta(days=1))})})
        tf_def = get_settings().timeframes[Timeframe.DAY_1]
        df = await _alpaca(handler, clock).fetch_bars("AAPL", Timeframe.DAY_1, tf_def)
        assert len(df) == 5

    @pytest.mark.asyncio
    async def test_no_bars_not_found(self, clock):
        handler = _Handler({"/bars": httpx.Response(200, json={"bars": None})})
        tf_def = get_settings().timeframes[Timeframe.DAY_1]
        with pytest.raises(NotFound):
            await _alpaca(handler, clock).fetch_bars("ZZZZ", Timeframe.DAY_1, tf_def)

    @pytest.mark.asyncio
    async def test_quote_uses_mid(self, clock):
        handler = _Handler({"/quotes/latest": httpx.Response(200, json={
            "quote": {"ap": 101.0, "bp": 99.0, "t": "2025-01-02T15:30:00Z"},
        })})
        quote = await _alpaca(handler, clock).fetch_quote("AAPL")
        assert quote.price == 100.0
        assert quote.source == "alpaca"


def _finnhub(handler: _Handler, clock) -> FinnhubClient:
    settings = ProviderSettings(base_url="https://finnhub.io/api/v1", credentials={"api_key": "fk"})
    return FinnhubClient(settings, http=_http(handler, settings.base_url), clock=clock)


class TestFinnhubClient:
    @pytest.mark.asyncio
    async def test_fundamentals(self, clock):
        handler = _Handler({"/stock/metric": httpx.Response(200, json={"metric": {
            "52WeekHigh": 199.6, "52WeekLow": 164.1, "beta": 1.2,
            "marketCapitalization": 2_500_000, "peTTM": 29.5, "roeTTM": 147.0,
            "epsGrowthTTMYoy": 8.1, "totalDebt/totalEquityQuarterly": 1.8,
        }})})
        snap = await _finnhub(handler, clock).fetch_fundamentals("AAPL")
        assert snap.week52_high == 199.6
        assert snap.market_cap == 2_500_000_000_000
        assert snap.pe == 29.5
        assert snap.peg is None
        assert handler.requests[-1].url.params["token"] == "fk"

    @pytest.mark.asyncio
    async def test_fundamentals_cached(self, clock):
        handler = _Handler({"/stock/metric": httpx.Response(200, json={"metric": {"peTTM": 20}})})
        client = _finnhub(handler, clock)
        await client.fetch_fundamentals("AAPL")
        await client.fetch_fundamentals("AAPL")
        assert handler.count("/stock/metric") == 1

    @pytest.mark.asyncio
    async def test_sentiment(self, clock):
        handler = _Handler({"/news-sentiment": httpx.Response(200, json={
            "buzz": {"articlesInLastWeek": 40, "buzz": 1.3},
            "companyNewsScore": 0.7,
            "sentiment": {"bullishPercent": 0.72, "bearishPercent": 0.28},
        })})
        snap = await _finnhub(handler, clock).fetch_sentiment("AAPL")
        assert snap.bullish_percent == 0.72
        assert snap.buzz == 1.3
        assert snap.articles_last_week == 40

    def test_unconfigured_without_key(self, monkeypatch):
        monkeypatch.delenv("FINNHUB_API_KEY", raising=False)
        assert FinnhubClient().is_configured is False


class TestMalformedPayloads:
    """Valid JSON with the wrong shape or bad values is an UpstreamError."""

    @pytest.mark.asyncio
    async def test_schwab_bad_expiry_key(self, clock):
        handler = _Handler({
            "/oauth/token": _SCHWAB_TOKEN,
            "/chains": httpx.Response(200, json={"callExpDateMap": {"not-a-date:15": {}}}),
        })
        with pytest.raises(UpstreamError, match="malformed payload"):
            await _schwab(handler, clock).fetch_option_chain("AAPL")

    @pytest.mark.asyncio
    async def test_schwab_non_numeric_strike(self, clock):
        handler = _Handler({
            "/oauth/token": _SCHWAB_TOKEN,
            "/chains": httpx.Response(200, json={
                "callExpDateMap": {"2025-01-17:15": {"abc": [{"symbol": "X", "bid": 1.0}]}},
            }),
        })
        with pytest.raises(UpstreamError, match="malformed payload"):
            await _schwab(handler, clock).fetch_option_chain("AAPL")

    @pytest.mark.asyncio
    async def test_schwab_quote_body_not_an_object(self, clock):
        handler = _Handler({
            "/oauth/token": _SCHWAB_TOKEN,
            "/quotes": httpx.Response(200, json=["AAPL"]),
        })
        with pytest.raises(UpstreamError):
            await _schwab(handler, clock).fetch_quote("AAPL")

    @pytest.mark.asyncio
    async def test_schwab_token_body_not_an_object(self, clock):
        handler = _Handler({
            "/oauth/token": httpx.Response(200, json=["tok"]),
            "/quotes": httpx.Response(200, json={}),
        })
        with pytest.raises(AuthError):
            await _schwab(handler, clock).fetch_quote("AAPL")

    @pytest.mark.asyncio
    async def test_alpaca_unparseable_bar_time(self, clock):
        bars = [{"t": "garbage", "o": 1, "h": 1, "l": 1, "c": 1, "v": 1}]
        handler = _Handler({"/bars": httpx.Response(200, json={"bars": bars})})
        tf_def = get_settings().timeframes[Timeframe.DAY_1]
        with pytest.raises(UpstreamError, match="malformed payload"):
            await _alpaca(handler, clock).fetch_bars("AAPL", Timeframe.DAY_1, tf_def)

    @pytest.mark.asyncio
    async def test_alpaca_list_body(self, clock):
        handler = _Handler({"/quotes/latest": httpx.Response(200, json=[1, 2, 3])})
        with pytest.raises(UpstreamError, match="malformed payload"):
            await _alpaca(handler, clock).fetch_quote("AAPL")

    @pytest.mark.asyncio
    async def test_public_account_without_id(self, clock):
        routes = _public_routes(_AAPL_QUOTE)
        routes["/trading/account"] = httpx.Response(200, json={"accounts": [{"accountType": "BROKERAGE"}]})
        with pytest.raises(UpstreamError, match="malformed payload"):
            await _public(_Handler(routes), clock).fetch_quote("AAPL")

    @pytest.mark.asyncio
    async def test_public_bad_expiration_date(self, clock):
        routes = _public_routes(_AAPL_QUOTE)
        routes["/option-expirations"] = httpx.Response(200, json={"expirations": ["2025-13-45"]})
        with pytest.raises(UpstreamError, match="malformed payload"):
            await _public(_Handler(routes), clock).fetch_option_chain("AAPL")

    @pytest.mark.asyncio
    async def test_finnhub_list_body(self, clock):
        handler = _Handler({"/stock/metric": httpx.Response(200, json=[{"peTTM": 20}])})
        with pytest.raises(UpstreamError, match="malformed payload"):
            await _finnhub(handler, clock).fetch_fundamentals("AAPL")


def _yf_frame(periods: int = 5, multiindex: bool = False) -> pd.DataFrame:
    dates = pd.bdate_range("2025-01-02", periods=periods)
    data = {
        "Open": np.linspace(100, 104, periods),
        "High": np.linspace(101, 105, periods),
        "Low": np.linspace(99, 103, periods),
        "Close": np.linspace(100.5, 104.5, periods),
        "Volume": np.full(periods, 1_000_000.0),
    }
    df = pd.DataFrame(data, index=dates)
    if multiindex:
        df.columns = pd.MultiIndex.from_product([df.columns, ["AAPL"]])
    return df


class TestYFinanceProvider:
    @pytest.mark.asyncio
    async def test_bars(self, clock):
        tf_def = get_settings().timeframes[Timeframe.DAY_1]
        with patch("market_pulse.data.providers.yfinance.yf.download", return_value=_yf_frame()):
            df = await YFinanceProvider(clock=clock).fetch_bars("AAPL", Timeframe.DAY_1, tf_def)
        assert len(df) == 5
        assert df["Close"].iloc[-1] == pytest.approx(104.5)

    @pytest.mark.asyncio
    async def test_multiindex_columns_flattened(self, clock):
        tf_def = get_settings().timeframes[Timeframe.DAY_1]
        frame = _yf_frame(multiindex=True)
        with patch("market_pulse.data.providers.yfinance.yf.download", return_value=frame):
            df = await YFinanceProvider(clock=clock).fetch_bars("AAPL", Timeframe.DAY_1, tf_def)
        assert list(df.columns) == ["Open", "High", "Low", "Close", "Volume"]

    @pytest.mark.asyncio
    async def test_empty_download_not_found(self, clock):
        tf_def = get_settings().timeframes[Timeframe.DAY_1]
        with patch("market_pulse.data.providers.yfinance.yf.download", return_value=pd.DataFrame()):
            with pytest.raises(NotFound, match="empty DataFrame"):
                await YFinanceProvider(clock=clock).fetch_bars("ZZZZ", Timeframe.DAY_1, tf_def)

    @pytest.mark.asyncio
    async def test_library_error_is_upstream_error(self, clock):
        tf_def = get_settings().timeframes[Timeframe.DAY_1]
        with patch("market_pulse.data.providers.yfinance.yf.download", side_effect=KeyError("chart")):
            with pytest.raises(UpstreamError):
                await YFinanceProvider(clock=clock).fetch_bars("AAPL", Timeframe.DAY_1, tf_def)

    @pytest.mark.asyncio
    async def test_rate_limit_trips_cooldown(self, clock):
        tf_def = get_settings().timeframes[Timeframe.DAY_1]
        provider = YFinanceProvider(clock=clock)
        with patch(
            "market_pulse.data.providers.yfinance.yf.download", side_effect=YFRateLimitError(),
        ) as download:
            with pytest.raises(Throttled):
                await provider.fetch_bars("AAPL", Timeframe.DAY_1, tf_def)
            with pytest.raises(Throttled):
                await provider.fetch_bars("AAPL", Timeframe.DAY_1, tf_def)
        assert provider.limiter.in_cooldown
        assert download.call_count == 1

    @pytest.mark.asyncio
    async def test_fundamentals_units(self, clock):
        ticker = MagicMock()
        ticker.info = {
            "fiftyTwoWeekHigh": 199.6,
            "fiftyTwoWeekLow": 164.1,
            "trailingPE": 29.5,
            "returnOnEquity": 0.25,
            "earningsGrowth": 0.12,
            "debtToEquity": 45.0,
            "trailingPegRatio": 1.1,
        }
        with patch("market_pulse.data.providers.yfinance.yf.Ticker", return_value=ticker):
            snap = await YFinanceProvider(clock=clock).fetch_fundamentals("AAPL")
        assert snap.roe == pytest.approx(25.0)
        assert snap.eps_growth == pytest.approx(12.0)
        assert snap.debt_to_equity == pytest.approx(0.45)
        assert snap.peg == 1.1
        assert snap.source == "yfinance"

    def test_always_configured(self):
        provider = YFinanceProvider()
        assert provider.is_configured
        assert provider.supports(DataType.OHLCV)
        assert not provider.supports(DataType.SENTIMENT)
