"""Spot prices: crypto via CoinGecko, forex via Frankfurter."""

from __future__ import annotations

from typing import Any

import httpx

from journalagent.config.settings import settings
from journalagent.core.context import ToolContext
from journalagent.core.transcript import ToolSchema
from journalagent.tools.base import LocalTool, ToolOutput, str_arg, tool_http_client
from journalagent.util.http_client import describe_http_error


GET_CRYPTO_PRICE = ToolSchema(
    name="get_crypto_price",
    description="Real-time cryptocurrency price, 24h change, volume and market cap.",
    parameters={
        "type": "object",
        "properties": {
            "coin_id": {
                "type": "string",
                "description": "Coin ID (lowercase): bitcoin, ethereum, solana, cardano, ripple, dogecoin, etc.",
            }
        },
        "required": ["coin_id"],
    },
)

GET_FOREX_PRICE = ToolSchema(
    name="get_forex_price",
    description="Latest foreign exchange rate for a currency pair such as EUR/USD.",
    parameters={
        "type": "object",
        "properties": {
            "base_currency": {"type": "string", "description": "Base currency code (3-letter), e.g. EUR"},
            "quote_currency": {"type": "string", "description": "Quote currency code (3-letter), e.g. USD"},
        },
        "required": ["base_currency", "quote_currency"],
    },
)


async def get_crypto_price(args: dict[str, Any], context: ToolContext) -> ToolOutput:
    coin_id = str_arg(args, "coin_id").lower()
    if not coin_id:
        return ToolOutput("coin_id is required", succeeded=False)
    client = await tool_http_client.get()
    try:
        response = await client.get(
            f"{settings.coingecko_base_url.rstrip('/')}/simple/price",
            params={
                "ids": coin_id,
                "vs_currencies": "usd",
                "include_24hr_change": "true",
                "include_24hr_vol": "true",
                "include_market_cap": "true",
            },
        )
    except httpx.HTTPError as exc:
        return ToolOutput(f"Crypto price error: {describe_http_error(exc)}", succeeded=False)
    if response.status_code >= 400:
        return ToolOutput(f"Failed to fetch crypto price: {response.status_code}", succeeded=False)

    coin = response.json().get(coin_id)
    if not coin or "usd" not in coin:
        return ToolOutput(
            f"Cryptocurrency '{coin_id}' not found. Try common names like: bitcoin, ethereum, solana, cardano, ripple, dogecoin",
            succeeded=False,
        )
    change = float(coin.get("usd_24h_change") or 0.0)
    volume = float(coin.get("usd_24h_vol") or 0.0)
    market_cap = float(coin.get("usd_market_cap") or 0.0)
    return ToolOutput(
        f"{coin_id.upper()} Market Data:\n\n"
        f"Price: ${float(coin['usd']):,.2f}\n"
        f"24h Change: {change:.2f}%\n"
        f"24h Volume: ${volume / 1e6:.2f}M\n"
        f"Market Cap: ${market_cap / 1e9:.2f}B\n"
    )


async def get_forex_price(args: dict[str, Any], context: ToolContext) -> ToolOutput:
    base = str_arg(args, "base_currency").upper()
    quote = str_arg(args, "quote_currency").upper()
    if len(base) != 3 or len(quote) != 3:
        return ToolOutput("Currency codes must be 3-letter ISO codes, e.g. EUR and USD.", succeeded=False)
    client = await tool_http_client.get()
    try:
        response = await client.get(
            f"{settings.frankfurter_base_url.rstrip('/')}/latest",
            params={"from": base, "to": quote},
        )
    except httpx.HTTPError as exc:
        return ToolOutput(f"Forex rate error: {describe_http_error(exc)}", succeeded=False)
    if response.status_code >= 400:
        return ToolOutput(
            f"Failed to fetch forex rate: {response.status_code}. Make sure currency codes are valid (e.g., EUR, USD, GBP, JPY).",
            succeeded=False,
        )

    data = response.json()
    rate = (data.get("rates") or {}).get(quote)
    if rate is None:
        return ToolOutput(f"Forex pair {base}/{quote} not found.", succeeded=False)
    return ToolOutput(
        f"{base}/{quote} Forex Rate:\n\n"
        f"Exchange Rate: {float(rate):.5f}\n"
        f"Date: {data.get('date', 'unknown')}\n\n"
        f"1 {base} = {float(rate):.5f} {quote}\n"
    )


MARKET_TOOLS = [
    LocalTool(GET_CRYPTO_PRICE, get_crypto_price),
    LocalTool(GET_FOREX_PRICE, get_forex_price),
]
