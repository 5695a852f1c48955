# mcx/sources/option_chain.py

import asyncio
import logging
import math
from typing import Any, Dict, Optional

import aiohttp

from mcx.errors import FetchError
from mcx.models.oi_series import OITotals
from mcx.sources.headers import MCX_OPTION_CHAIN_URL, DEFAULT_USER_AGENT, mcx_headers

logger = logging.getLogger(__name__)


def _open_interest(value: Any) -> int:
    """Open interest as a non-negative whole count; a missing value is 0."""
    if isinstance(value, str):
        value = value.strip()
    if value is None or value == "":
        return 0
    if isinstance(value, bool):
        raise FetchError(f"Non-numeric open interest: {value!r}")

    if isinstance(value, int):
        count = value
    elif isinstance(value, str) and value.lstrip("-").isdecimal():
        count = int(value)
    else:
        # "120.0" and 120.0 are still whole counts
        try:
            number = float(value)
        except (TypeError, ValueError):
            raise FetchError(f"Non-numeric open interest: {value!r}") from None
        if not math.isfinite(number) or not number.is_integer():
            raise FetchError(f"Open interest is not a whole number: {value!r}")
        count = int(number)

    if count < 0:
        raise FetchError(f"Negative open interest: {value!r}")
    return count


def summarize_option_chain(payload: Any) -> OITotals:
    """Sum call-side and put-side open interest over every strike of a chain."""
    d = payload.get("d") if isinstance(payload, dict) else None
    rows = d.get("Data") if isinstance(d, dict) else None
    if not isinstance(rows, list):
        raise FetchError("Invalid response format from MCX endpoint")

    call_oi = 0
    put_oi = 0
    for row in rows:
        if not isinstance(row, dict):
            continue
        call_oi += _open_interest(row.get("CE_OpenInterest"))
        put_oi += _open_interest(row.get("PE_OpenInterest"))

    return OITotals(call_oi=call_oi, put_oi=put_oi)


class OptionChainClient:
    """
    Async client for the MCX option-chain endpoint.

    The aiohttp session is opened lazily on the first request and reused
    until close(). A session passed in by the caller is never closed here.
    """

    def __init__(
        self,
        url: str = MCX_OPTION_CHAIN_URL,
        timeout_seconds: float = 30.0,
        user_agent: str = DEFAULT_USER_AGENT,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.url = url
        self.timeout_seconds = timeout_seconds
        self.headers = mcx_headers(user_agent)
        self.session = session
        self._owns_session = session is None

        self.stats = {
            'requests_total': 0,
            'requests_failed': 0,
        }

    async def _get_session(self) -> aiohttp.ClientSession:
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout_seconds)
            )
            self._owns_session = True
        return self.session

    async def fetch_raw(self, symbol: str, expiry_date: str) -> Dict[str, Any]:
        """
        Fetch the raw option chain for one contract.

        Args:
            symbol: MCX commodity symbol, e.g. "GOLD"
            expiry_date: expiry in MCX form, e.g. "29AUG2025"

        Returns:
            Decoded JSON body as sent by MCX

        Raises:
            FetchError: network failure, HTTP error status, timeout or a body
                that is not JSON
        """
        if not symbol or not expiry_date:
            raise ValueError("symbol and expiry_date are required")

        body = {"Commodity": symbol, "Expiry": expiry_date}
        self.stats['requests_total'] += 1

        try:
            session = await self._get_session()
            async with session.post(self.url, json=body, headers=self.headers) as response:
                response.raise_for_status()
                # MCX does not always label its JSON as application/json
                return await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            self.stats['requests_failed'] += 1
            raise FetchError(
                f"Option chain request failed for {symbol} {expiry_date}: {e!r}",
                symbol=symbol,
                expiry_date=expiry_date,
            ) from e

    async def fetch_totals(self, symbol: str, expiry_date: str) -> OITotals:
        payload = await self.fetch_raw(symbol, expiry_date)
        try:
            return summarize_option_chain(payload)
        except FetchError as e:
            self.stats['requests_failed'] += 1
            raise FetchError(
                f"{e} ({symbol} {expiry_date})",
                symbol=symbol,
                expiry_date=expiry_date,
            ) from e

    async def close(self):
        if self.session is not None and self._owns_session and not self.session.closed:
            await self.session.close()
        logger.debug("OptionChainClient closed")
