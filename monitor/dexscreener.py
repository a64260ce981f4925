"""DexScreener price feed for tracked Base tokens."""

import logging
from dataclasses import dataclass
from typing import Any, Iterable

from config import CHAIN_ID, DEX_RETRIES, DEX_TIMEOUT, DEXSCREENER_API
from utils.addressing import normalize_address
from utils.http_client import ResilientHttpClient

logger = logging.getLogger(__name__)


@dataclass
class TokenInfo:
    address: str
    symbol: str
    name: str
    price: float
    liquidity: float
    dex_url: str = ""


class DexScreenerPriceFeed:
    def __init__(self, http: ResilientHttpClient | None = None) -> None:
        self._headers = {
            "User-Agent": "Mozilla/5.0 (compatible; position-keeper/1.0)",
            "Accept": "application/json, text/plain, */*",
        }
        self._http = http or ResilientHttpClient(
            timeout_seconds=float(DEX_TIMEOUT),
            headers=self._headers,
            source_limits={"dexscreener": 4},
        )

    async def close(self) -> None:
        await self._http.close()

    def runtime_stats(self, reset: bool = False) -> dict[str, dict[str, int | float]]:
        return self._http.snapshot_stats(reset=reset)

    async def _fetch_pairs(self, addresses: str) -> list[dict[str, Any]]:
        url = f"{DEXSCREENER_API}/tokens/v1/{CHAIN_ID}/{addresses}"
        result = await self._http.get_json(url, source="dexscreener", max_attempts=DEX_RETRIES)
        if not result.ok:
            if result.status == 429:
                logger.warning("RATE_LIMIT source=dexscreener status=429 url=%s", url)
            else:
                logger.warning("PRICE_FETCH_FAILED url=%s err=%s", url, result.error)
            return []
        data = result.data
        # The v1 endpoint returns a bare list; older responses wrap it in {"pairs": [...]}.
        if isinstance(data, dict):
            data = data.get("pairs") or []
        if not isinstance(data, list):
            return []
        return [row for row in data if isinstance(row, dict)]

    @staticmethod
    def _best_pair(pairs: Iterable[dict[str, Any]], token_address: str) -> dict[str, Any] | None:
        """Highest-liquidity pair on our chain whose base token is `token_address`."""
        best: dict[str, Any] | None = None
        best_liq = -1.0
        for pair in pairs:
            if str(pair.get("chainId", "")).lower() != CHAIN_ID:
                continue
            base = normalize_address(str((pair.get("baseToken") or {}).get("address") or ""))
            if base != token_address:
                continue
            try:
                price = float(pair.get("priceUsd") or 0)
            except (TypeError, ValueError):
                continue
            if price <= 0:
                continue
            liq = float((pair.get("liquidity") or {}).get("usd") or 0)
            if liq > best_liq:
                best_liq = liq
                best = pair
        return best

    @staticmethod
    def _to_info(pair: dict[str, Any], token_address: str) -> TokenInfo:
        base = pair.get("baseToken") or {}
        return TokenInfo(
            address=token_address,
            symbol=str(base.get("symbol") or "N/A"),
            name=str(base.get("name") or ""),
            price=float(pair.get("priceUsd") or 0),
            liquidity=float((pair.get("liquidity") or {}).get("usd") or 0),
            dex_url=str(pair.get("url") or ""),
        )

    async def get_token_info(self, token_address: str) -> TokenInfo | None:
        address = normalize_address(token_address)
        if not address:
            return None
        pair = self._best_pair(await self._fetch_pairs(address), address)
        if pair is None:
            return None
        return self._to_info(pair, address)

    async def get_price(self, token_address: str) -> float | None:
        """Best-effort USD price; None when no usable pair is found."""
        info = await self.get_token_info(token_address)
        return info.price if info is not None else None
