"""
Market data: mid-market rate resolution, dashboard ticker and rate sync.

Live data comes from the Massive FX REST API when MASSIVE_API_KEY is set.
Without it (or when the API fails) a deterministic simulated rate is used so
the audit pipeline keeps working. Simulated rates are not market data.
"""
import asyncio
import random
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

import requests

from core.config import get_settings
from core.db import DocumentStore, get_store
from core.exceptions import ConfigurationError, RateUnavailableError
from core.logger import setup_logger
from core.normalize import clean_amount, normalize_currency_pair, split_pair
from core.schema import LiveRate, RateQuote, now_ms

logger = setup_logger(__name__)

# (ticker id, symbol, reference mid-market rate)
TRACKED_PAIRS: List[Tuple[str, str, float]] = [
    ("eurusd", "EUR/USD", 1.0850),
    ("gbpusd", "GBP/USD", 1.2650),
    ("usdcad", "USD/CAD", 1.4150),
    ("usdjpy", "USD/JPY", 151.20),
    ("audusd", "AUD/USD", 0.6540),
    ("usdzar", "USD/ZAR", 18.950),
    ("usdtry", "USD/TRY", 32.100),
    ("usdmyr", "USD/MYR", 4.750),
]

# Pairs written to the rates collection by the sync job
SYNC_PAIRS: List[str] = [
    "USD-EUR", "USD-GBP", "USD-CAD", "USD-AUD", "USD-JPY",
    "USD-ZAR", "USD-ZWG", "USD-INR", "USD-MXN", "USD-BRL",
    "EUR-GBP", "GBP-EUR", "USD-CNY",
]

TICKER_BANK_SPREAD = 0.022
TICKER_RATEGUARD_SPREAD = 0.003
SYNC_BANK_MARKUP = 1.025
SERPAPI_URL = "https://serpapi.com/search"


def _reference_rate(pair: str) -> Optional[float]:
    """Static reference rate for a pair, inverting the tracked pair if needed."""
    base, quote = split_pair(pair)
    for _, symbol, rate in TRACKED_PAIRS:
        if symbol == f"{base}/{quote}":
            return rate
        if symbol == f"{quote}/{base}":
            return 1 / rate
    return None


def simulated_rate(pair: str, date_str: str) -> float:
    """
    Deterministic stand-in for a mid-market rate.

    The static reference rate is perturbed by up to 0.99% using a hash of the
    date string, so the same pair and date always give the same value.

    Args:
        pair: Currency pair
        date_str: YYYY-MM-DD

    Returns:
        Simulated rate (1.0 based for unknown pairs)
    """
    base_rate = _reference_rate(pair) or 1.0
    date_hash = sum(ord(char) for char in date_str)
    return base_rate * (1 + (date_hash % 100) / 10000)


def market_context(value_date: Optional[str], now: datetime) -> Tuple[str, str, Optional[str]]:
    """
    Decide which date to price and whether the market is open.

    FX closes Friday 22:00 UTC and reopens Sunday 22:00 UTC.

    Args:
        value_date: Transaction value date (YYYY-MM-DD) or None for now
        now: Current time (UTC)

    Returns:
        (market status, date to fetch, caveat note)
    """
    tx_date = now
    if value_date:
        try:
            tx_date = datetime.fromisoformat(value_date[:10]).replace(tzinfo=timezone.utc)
        except ValueError:
            logger.warning(f"Unparseable value date {value_date!r}, pricing at current time")
            value_date = None

    if now - tx_date > timedelta(hours=24):
        return "historical", tx_date.date().isoformat(), None

    js_day = (now.weekday() + 1) % 7  # 0 = Sunday
    is_weekend = js_day == 6 or (js_day == 0 and now.hour < 22) or (js_day == 5 and now.hour >= 22)
    if is_weekend:
        friday = (now - timedelta(days=(js_day + 2) % 7)).date().isoformat()
        note = f"Live markets are closed. Using Friday's Closing Rate ({friday}) for this audit."
        return "closed", friday, note

    return "open", (value_date or now.date().isoformat()), None


def fetch_live_rate(base: str, quote: str, on_date: Optional[str] = None) -> float:
    """
    Fetch a conversion rate from the Massive FX API.

    Raises:
        RateUnavailableError: If the key is missing, the call fails or the payload has no result
    """
    settings = get_settings()
    if not settings.massive_api_key:
        raise RateUnavailableError("MASSIVE_API_KEY is not configured")

    params = {"from": base, "to": quote, "amount": 1}
    if on_date:
        params["date"] = on_date

    try:
        response = requests.get(
            f"{settings.massive_api_base}/conversion/",
            params=params,
            headers={"Authorization": f"Bearer {settings.massive_api_key}"},
            timeout=settings.rate_fetch_timeout,
        )
        response.raise_for_status()
        data = response.json()
    except (requests.exceptions.RequestException, ValueError) as e:
        raise RateUnavailableError(
            f"Massive API error: {e}",
            details={"pair": f"{base}/{quote}", "date": on_date}
        )

    rate = clean_amount(data.get("result")) if isinstance(data, dict) else None
    if not rate:
        raise RateUnavailableError("Massive API returned no result", details={"pair": f"{base}/{quote}"})
    return rate


def resolve_mid_market_rate(
    pair: str,
    value_date: Optional[str] = None,
    now: Optional[datetime] = None
) -> RateQuote:
    """
    Resolve the mid-market reference rate for a pair and date.

    Args:
        pair: Currency pair in any accepted format
        value_date: Transaction value date (YYYY-MM-DD)
        now: Current time, injectable for testing

    Returns:
        RateQuote tagged live, stale or simulated
    """
    now = now or datetime.now(timezone.utc)
    pair = normalize_currency_pair(pair)
    base, quote = split_pair(pair)
    status, date_to_fetch, note = market_context(value_date, now)

    if get_settings().massive_api_key:
        try:
            on_date = date_to_fetch if status in ("historical", "closed") else None
            rate = fetch_live_rate(base, quote, on_date)
            return RateQuote(
                pair=pair,
                rate=rate,
                source="stale" if status == "closed" else "live",
                market_status=status,
                date_used=date_to_fetch,
                note=note,
            )
        except RateUnavailableError as e:
            logger.warning(f"Live rate unavailable for {pair}, reverting to simulation: {e.message}")
            fallback_note = "Market Data API Unreachable. Using internal reference rates."
            note = f"{note} (API Unreachable)" if note else fallback_note
    else:
        simulated_note = "Simulated reference rate; no live market data source is configured."
        note = f"{note} {simulated_note}" if note else simulated_note

    if _reference_rate(pair) is None:
        note += f" No reference rate is known for {pair}."

    return RateQuote(
        pair=pair,
        rate=simulated_rate(pair, date_to_fetch),
        source="simulated",
        market_status=status,
        date_used=date_to_fetch,
        note=note,
    )


def _ticker_row(pair_id: str, symbol: str, mid_market: float, prefix: str) -> LiveRate:
    bank_rate = mid_market * (1 + TICKER_BANK_SPREAD)
    guard_rate = mid_market * (1 + TICKER_RATEGUARD_SPREAD)
    timestamp = now_ms()
    return LiveRate(
        id=f"{prefix}_{pair_id}_{timestamp}",
        pair=symbol,
        timestamp=timestamp,
        mid_market_rate=round(mid_market, 5),
        bank_rate=round(bank_rate, 5),
        rateguard_rate=round(guard_rate, 5),
        savings_pips=abs(round((bank_rate - guard_rate) * 10000)),
        trend="up" if random.random() > 0.5 else "down",
    )


def generate_live_rates(count: Optional[int] = None) -> List[LiveRate]:
    """
    Simulated ticker: a small random walk around the reference rates.

    Args:
        count: Number of rows (defaults to one per tracked pair)

    Returns:
        Ticker rows
    """
    count = len(TRACKED_PAIRS) if count is None else count
    rates = []
    for i in range(count):
        pair_id, symbol, base = TRACKED_PAIRS[i % len(TRACKED_PAIRS)]
        noise = random.random() * 0.005 if i >= len(TRACKED_PAIRS) else 0.0
        volatility = (random.random() - 0.5) * 0.002
        rates.append(_ticker_row(pair_id, symbol, base * (1 + volatility + noise), f"rate_{i}"))
    return rates


def _extract_bulk_rate(data: Any, pair_id: str, symbol: str) -> Optional[float]:
    if isinstance(data, dict):
        if isinstance(data.get("rates"), dict) and data["rates"].get(pair_id) is not None:
            return clean_amount(data["rates"][pair_id])
        if data.get(pair_id) is not None:
            return clean_amount(data[pair_id])
    elif isinstance(data, list):
        for row in data:
            if not isinstance(row, dict):
                continue
            if str(row.get("symbol", "")).lower() == symbol.lower() or str(row.get("id", "")).lower() == pair_id:
                for key in ("price", "rate", "value", "ask"):
                    if row.get(key) is not None:
                        return clean_amount(row[key])
    return None


def fetch_market_rates() -> Tuple[str, List[LiveRate]]:
    """
    Ticker rows for the dashboard.

    Returns:
        ("live" | "simulated", rows)
    """
    settings = get_settings()
    if not settings.massive_api_key:
        return "simulated", generate_live_rates()

    try:
        response = requests.get(
            f"{settings.massive_api_base}/rates",
            params={"pairs": ",".join(pair_id for pair_id, _, _ in TRACKED_PAIRS)},
            headers={
                "Authorization": f"Bearer {settings.massive_api_key}",
                "Content-Type": "application/json",
            },
            timeout=settings.rate_fetch_timeout,
        )
        response.raise_for_status()
        data = response.json()
    except (requests.exceptions.RequestException, ValueError) as e:
        logger.warning(f"Massive FX feed unreachable, running simulation: {e}")
        return "simulated", generate_live_rates()

    rows = []
    for pair_id, symbol, base in TRACKED_PAIRS:
        raw_rate = _extract_bulk_rate(data, pair_id, symbol)
        rows.append(_ticker_row(pair_id, symbol, raw_rate or base, "live"))
    return "live", rows


def _parse_serpapi_price(data: Dict[str, Any], query: str) -> Optional[float]:
    summary = data.get("summary") or {}
    if summary.get("price") is not None:
        return clean_amount(summary["price"])
    markets = data.get("markets")
    if isinstance(markets, dict):
        for key, market in markets.items():
            if key.lower() == query.lower() and isinstance(market, dict):
                return clean_amount(market.get("price"))
    return None


def sync_rates(store: Optional[DocumentStore] = None) -> List[Dict[str, Any]]:
    """
    Refresh the rates collection from Google Finance via SerpApi.

    Pairs that fail are skipped; the rest are merged into rates/<BASE_QUOTE>.

    Args:
        store: Document store (defaults to the global store)

    Returns:
        [{"pair": ..., "rate": ...}] for every pair updated

    Raises:
        ConfigurationError: If SERPAPI_API_KEY is missing
    """
    settings = get_settings()
    if not settings.serpapi_api_key:
        logger.error("Skipping rate sync: SERPAPI_API_KEY is missing")
        raise ConfigurationError(
            "SERPAPI_API_KEY missing",
            details={"required_key": "SERPAPI_API_KEY"}
        )

    store = store or get_store()
    results = []

    for query in SYNC_PAIRS:
        doc_id = query.replace("-", "_")
        try:
            response = requests.get(
                SERPAPI_URL,
                params={"engine": "google_finance", "q": query, "api_key": settings.serpapi_api_key},
                timeout=settings.llm_timeout,
            )
            response.raise_for_status()
            rate = _parse_serpapi_price(response.json(), query)
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.error(f"Error processing {query}: {e}")
            continue

        if not rate:
            logger.warning(f"Could not parse rate for {query} from SerpApi response")
            continue

        bank_spread = rate * SYNC_BANK_MARKUP
        store.set("rates", doc_id, {
            "pair": query.replace("-", "/"),
            "rate": rate,
            "bank_spread": round(bank_spread, 4),
            "leakage": round(bank_spread - rate, 4),
            "date_time": now_ms(),
            "last_updated": datetime.now(timezone.utc).isoformat(),
        }, merge=True)
        results.append({"pair": query, "rate": rate})

    logger.info(f"Rate sync updated {len(results)}/{len(SYNC_PAIRS)} pairs")
    return results


def get_cached_rates(store: Optional[DocumentStore] = None) -> List[Dict[str, Any]]:
    """Rates written by the last sync, ordered by pair."""
    return (store or get_store()).query("rates", order_by="pair")


async def run_rate_sync_loop(interval_minutes: int) -> None:
    """Run sync_rates every interval until cancelled."""
    loop = asyncio.get_running_loop()
    logger.info(f"Scheduled rate sync every {interval_minutes} minutes")
    while True:
        try:
            await loop.run_in_executor(None, sync_rates)
        except ConfigurationError as e:
            logger.error(f"Scheduled rate sync disabled: {e.message}")
            return
        except Exception as e:
            logger.error(f"Scheduled rate sync failed: {e}", exc_info=True)
        await asyncio.sleep(interval_minutes * 60)
