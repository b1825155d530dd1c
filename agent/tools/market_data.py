"""
Market tools — read-only BTC price and USD/VND rate lookups.

Each feed tries its live sources in order and finally falls back to a
hard-coded estimate, so these tools never fail; the `source` and
`is_estimate` fields tell the model (and the user) where a figure came from.

  BTC/USD : CoinGecko → Binance → estimate
  USD/VND : exchangerate-api → estimate
"""

import asyncio
import logging
from datetime import datetime
from typing import Optional

import httpx
from pydantic import BaseModel, ConfigDict

import config
from currency import format_vnd

logger = logging.getLogger(__name__)

COINGECKO_URL = "https://api.coingecko.com/api/v3/simple/price"
BINANCE_URL = "https://api.binance.com/api/v3/ticker/price"
EXCHANGE_RATE_URL = "https://api.exchangerate-api.com/v4/latest/USD"

ESTIMATED_BTC_USD = 42_000.00
ESTIMATED_USD_VND_BUY = 24_100
ESTIMATED_USD_VND_SELL = 24_500
# Banks quote a spread around the mid rate
USD_VND_SPREAD = 100


class NoArgs(BaseModel):
    model_config = ConfigDict(extra="forbid")


async def _fetch_json(url: str, params: Optional[dict] = None) -> Optional[dict]:
    """GETs url and returns the decoded JSON body, or None on any failure."""
    try:
        async with httpx.AsyncClient(timeout=config.market_timeout()) as client:
            resp = await client.get(
                url,
                params=params,
                headers={"User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64)"},
            )
            resp.raise_for_status()
            return resp.json()
    except (httpx.HTTPError, ValueError) as exc:
        logger.warning("market fetch failed url=%s: %s", url, exc)
        return None


def _now() -> str:
    return datetime.utcnow().isoformat()


async def fetch_btc_price() -> dict:
    data = await _fetch_json(COINGECKO_URL, {"ids": "bitcoin", "vs_currencies": "usd"})
    try:
        price = float(data["bitcoin"]["usd"])
        return {"name": "BTC/USD", "price": price, "unit": "USD", "source": "CoinGecko API",
                "is_estimate": False, "timestamp": _now()}
    except (TypeError, KeyError, ValueError):
        pass

    data = await _fetch_json(BINANCE_URL, {"symbol": "BTCUSDT"})
    try:
        price = float(data["price"])
        return {"name": "BTC/USD", "price": price, "unit": "USD", "source": "Binance API",
                "is_estimate": False, "timestamp": _now()}
    except (TypeError, KeyError, ValueError):
        pass

    return {"name": "BTC/USD", "price": ESTIMATED_BTC_USD, "unit": "USD", "source": "Estimated",
            "is_estimate": True, "timestamp": _now()}


async def fetch_usd_rate() -> dict:
    data = await _fetch_json(EXCHANGE_RATE_URL)
    try:
        rate = float(data["rates"]["VND"])
        return {
            "name": "USD/VND",
            "buy": int(rate - USD_VND_SPREAD),
            "sell": int(rate + USD_VND_SPREAD),
            "unit": "VND",
            "source": "Exchange Rate API",
            "is_estimate": False,
            "timestamp": _now(),
        }
    except (TypeError, KeyError, ValueError):
        pass

    return {
        "name": "USD/VND",
        "buy": ESTIMATED_USD_VND_BUY,
        "sell": ESTIMATED_USD_VND_SELL,
        "unit": "VND",
        "source": "Vietcombank (Ước tính)",
        "is_estimate": True,
        "timestamp": _now(),
    }


def _btc_line(btc: dict) -> str:
    return f"${btc['price']:,.2f}"


def _usd_line(usd: dict) -> str:
    return f"Mua: {format_vnd(usd['buy'])} - Bán: {format_vnd(usd['sell'])}"


async def get_btc_price(owner_id: str = None) -> dict:
    """Current BTC/USD price."""
    btc = await fetch_btc_price()
    return {
        "tool_name": "get_btc_price",
        "success": True,
        "tool_result_id": f"btc_{int(datetime.utcnow().timestamp())}",
        "timestamp": _now(),
        "result": {
            "data": btc,
            "message": f"Giá Bitcoin (BTC/USD) hôm nay: {_btc_line(btc)}\nNguồn: {btc['source']}",
        },
    }


async def get_usd_rate(owner_id: str = None) -> dict:
    """Current USD/VND buy and sell rates."""
    usd = await fetch_usd_rate()
    return {
        "tool_name": "get_usd_rate",
        "success": True,
        "tool_result_id": f"usd_{int(datetime.utcnow().timestamp())}",
        "timestamp": _now(),
        "result": {
            "data": usd,
            "message": f"Tỷ giá USD/VND hôm nay: {_usd_line(usd)}\nNguồn: {usd['source']}",
        },
    }


async def get_market_info(owner_id: str = None) -> dict:
    """BTC and USD/VND together; both feeds are fetched concurrently."""
    btc, usd = await asyncio.gather(fetch_btc_price(), fetch_usd_rate())
    return {
        "tool_name": "get_market_info",
        "success": True,
        "tool_result_id": f"market_{int(datetime.utcnow().timestamp())}",
        "timestamp": _now(),
        "result": {
            "data": {"btc": btc, "usd": usd},
            "message": (
                "Tổng quan thị trường:\n"
                f"Bitcoin (BTC/USD): {_btc_line(btc)} (Nguồn: {btc['source']})\n"
                f"USD/VND: {_usd_line(usd)} (Nguồn: {usd['source']})"
            ),
        },
    }
