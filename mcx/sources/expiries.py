# mcx/sources/expiries.py

import json
import re
from typing import Dict, List, Tuple

import requests

from mcx.errors import DiscoveryError, DiscoveryParseError
from mcx.sources.headers import MCX_DISCOVERY_URL, DEFAULT_USER_AGENT, mcx_headers

# The option-chain page embeds every listed contract as `var vTick = [...];`
VTICK_PATTERN = re.compile(r"var\s+vTick\s*=\s*(\[.*?\]);", re.DOTALL)


def parse_expiry_rows(html: str) -> List[Tuple[str, str]]:
    match = VTICK_PATTERN.search(html or "")
    if not match:
        raise DiscoveryParseError("Could not find expiry data (vTick) in MCX response")

    try:
        raw = json.loads(match.group(1))
    except ValueError as e:
        raise DiscoveryParseError(f"vTick is not valid JSON: {e}") from e

    if not isinstance(raw, list):
        raise DiscoveryParseError("vTick is not a list")

    rows = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        symbol = str(item.get("Symbol") or "").strip()
        expiry = str(item.get("ExpiryDate") or "").strip()
        if symbol and expiry:
            rows.append((symbol, expiry))

    if not rows:
        raise DiscoveryParseError("vTick contained no Symbol/ExpiryDate rows")

    return rows


def group_expiries(rows) -> Dict[str, List[str]]:
    grouped: Dict[str, List[str]] = {}
    for symbol, expiry in rows:
        dates = grouped.setdefault(symbol, [])
        if expiry not in dates:
            dates.append(expiry)
    return grouped


class ExpirySource:
    def __init__(
        self,
        url: str = MCX_DISCOVERY_URL,
        timeout: float = 30.0,
        user_agent: str = DEFAULT_USER_AGENT,
    ):
        self.url = url
        self.timeout = timeout
        self.user_agent = user_agent

    def fetch_html(self) -> str:
        try:
            resp = requests.get(
                self.url,
                headers=mcx_headers(self.user_agent),
                timeout=self.timeout,
            )
            resp.raise_for_status()
        except requests.RequestException as e:
            raise DiscoveryError(f"Expiry page request failed: {e}") from e

        return resp.text

    def fetch_rows(self) -> List[Tuple[str, str]]:
        return parse_expiry_rows(self.fetch_html())
