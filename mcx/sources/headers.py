# mcx/sources/headers.py

MCX_BASE_URL = "https://www.mcxindia.com"
MCX_DISCOVERY_URL = MCX_BASE_URL + "/market-data/option-chain"
MCX_OPTION_CHAIN_URL = MCX_BASE_URL + "/backpage.aspx/GetOptionChain"

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/125.0.0.0 Safari/537.36"
)


def mcx_headers(user_agent: str = DEFAULT_USER_AGENT) -> dict:
    # MCX rejects requests that do not look like its own option-chain page
    return {
        "Accept": "application/json, text/javascript, */*; q=0.01",
        "Content-Type": "application/json",
        "Origin": MCX_BASE_URL,
        "Referer": MCX_DISCOVERY_URL,
        "User-Agent": user_agent,
        "X-Requested-With": "XMLHttpRequest",
    }
