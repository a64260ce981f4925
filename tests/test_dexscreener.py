from __future__ import annotations

import unittest

from monitor.dexscreener import DexScreenerPriceFeed
from utils.http_client import HttpResult

TOKEN = "0xaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaa"
OTHER = "0xbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbb"


def _pair(base: str, price: str, liquidity: float, chain: str = "base", symbol: str = "TKN") -> dict:
    return {
        "chainId": chain,
        "baseToken": {"address": base.upper().replace("0X", "0x"), "symbol": symbol, "name": "Token"},
        "priceUsd": price,
        "liquidity": {"usd": liquidity},
        "url": f"https://dexscreener.com/base/{base}",
    }


class _FakeHttp:
    def __init__(self, result: HttpResult) -> None:
        self.result = result
        self.urls: list[str] = []

    async def get_json(self, url: str, **kwargs) -> HttpResult:
        self.urls.append(url)
        return self.result

    async def close(self) -> None:
        return None


class DexScreenerPriceFeedTests(unittest.IsolatedAsyncioTestCase):
    def test_best_pair_prefers_deepest_liquidity_on_chain(self) -> None:
        pairs = [
            _pair(TOKEN, "1.00", 5_000),
            _pair(TOKEN, "1.02", 90_000),
            _pair(TOKEN, "1.50", 500_000, chain="ethereum"),
            _pair(OTHER, "9.00", 900_000),
            _pair(TOKEN, "0", 1_000_000),
        ]
        best = DexScreenerPriceFeed._best_pair(pairs, TOKEN)
        self.assertEqual(best["priceUsd"], "1.02")

    async def test_get_token_info_from_bare_list_payload(self) -> None:
        http = _FakeHttp(HttpResult(True, 200, [_pair(TOKEN, "0.5", 10_000)]))
        feed = DexScreenerPriceFeed(http=http)
        info = await feed.get_token_info(TOKEN.upper().replace("0X", "0x"))
        self.assertEqual((info.address, info.symbol, info.price), (TOKEN, "TKN", 0.5))
        self.assertTrue(http.urls[0].endswith(f"/tokens/v1/base/{TOKEN}"))

    async def test_wrapped_pairs_payload_is_accepted(self) -> None:
        http = _FakeHttp(HttpResult(True, 200, {"pairs": [_pair(TOKEN, "2.5", 10_000)]}))
        self.assertEqual(await DexScreenerPriceFeed(http=http).get_price(TOKEN), 2.5)

    async def test_failed_request_yields_no_price(self) -> None:
        http = _FakeHttp(HttpResult(False, 429, None, "HTTP 429"))
        self.assertIsNone(await DexScreenerPriceFeed(http=http).get_price(TOKEN))


if __name__ == "__main__":
    unittest.main()
