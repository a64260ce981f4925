"""Optional portfolio review by an Anthropic model.

The advisor only ever recommends; the engine decides what to do with the
advice. Any failure (no key, API error, unparseable reply) yields no advice.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import time
from dataclasses import dataclass
from typing import Any

import anthropic

import config
from trading.models import Position
from utils.addressing import normalize_address

logger = logging.getLogger(__name__)

ACTIONS = {"hold", "sell", "tighten-stop"}

SYSTEM_PROMPT = (
    "You review open spot positions of an automated Base-chain trading agent. "
    "Trailing stops already protect every position; recommend 'sell' only when "
    "holding is clearly worse than exiting now. Reply with JSON only, matching "
    "the responseSchema in the request."
)


@dataclass(frozen=True)
class PositionAdvice:
    token_address: str
    symbol: str
    action: str
    reason: str = ""
    suggested_trail_percent: float | None = None


def _decode_reply(raw: str) -> Any:
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        pass
    match = re.search(r"```(?:json)?\s*([\s\S]+?)\s*```", raw)
    if match:
        return json.loads(match.group(1))
    start, end = raw.find("{"), raw.rfind("}")
    if start != -1 and end > start:
        return json.loads(raw[start : end + 1])
    raise ValueError(f"no JSON object in advisor reply: {raw[:200]}")


def _parse_json(raw: str) -> dict[str, Any]:
    data = _decode_reply(raw)
    if not isinstance(data, dict):
        raise ValueError(f"advisor reply is a JSON {type(data).__name__}, not an object")
    return data


class PortfolioAdvisor:
    def __init__(self, client: Any | None = None, model: str | None = None) -> None:
        if client is None and config.ANTHROPIC_API_KEY:
            client = anthropic.Anthropic(api_key=config.ANTHROPIC_API_KEY, timeout=config.AI_TIMEOUT_SECONDS)
        self.client = client
        self.model = model or config.AI_MODEL
        self._call_count = 0

    @property
    def enabled(self) -> bool:
        return self.client is not None

    def _build_request(self, positions: list[Position], now: float) -> str:
        rows = []
        for p in positions:
            entry = p.entry_price or 0.0
            rows.append(
                {
                    "symbol": p.symbol,
                    "address": p.token_address,
                    "entryPrice": p.entry_price,
                    "currentPrice": p.current_price,
                    "highestPrice": p.highest_price,
                    "profitPercent": round(p.profit_percent, 2),
                    "peakProfitPercent": round((p.highest_price - entry) / entry * 100.0, 2) if entry > 0 else 0.0,
                    "drawdownFromPeak": round((p.highest_price - p.current_price) / p.highest_price * 100.0, 2)
                    if p.highest_price > 0
                    else 0.0,
                    "holdTimeHours": round(max(0.0, now - p.entry_ts) / 3600.0, 2),
                    "usdcInvested": p.usdc_invested,
                }
            )
        return json.dumps(
            {
                "task": "portfolio_review",
                "positions": rows,
                "trailTiers": [{"minProfitPercent": a, "trailPercent": b} for a, b in config.TRAIL_TIERS],
                "responseSchema": {
                    "summary": "string (1-2 sentences)",
                    "positionAdvice": [
                        {
                            "address": "string",
                            "symbol": "string",
                            "action": "hold | sell | tighten-stop",
                            "reasoning": "string",
                            "suggestedTrailPercent": "number | null",
                        }
                    ],
                },
            }
        )

    def _review_sync(self, request: str) -> str:
        message = self.client.messages.create(
            model=self.model,
            max_tokens=int(config.AI_MAX_TOKENS),
            system=SYSTEM_PROMPT,
            messages=[{"role": "user", "content": request}],
        )
        for block in message.content:
            if getattr(block, "type", "") == "text":
                return block.text.strip()
        raise ValueError("no text block in advisor reply")

    async def review(self, positions: list[Position]) -> list[PositionAdvice]:
        if not self.enabled or not positions:
            return []
        by_address = {p.token_address: p for p in positions}
        by_symbol = {p.symbol.upper(): p for p in positions}
        try:
            raw = await asyncio.to_thread(self._review_sync, self._build_request(positions, time.time()))
            data = _parse_json(raw)
        except (anthropic.APIError, ValueError) as exc:
            logger.warning("ADVISOR_FAILED model=%s err=%s", self.model, exc)
            return []
        self._call_count += 1

        out: list[PositionAdvice] = []
        for row in data.get("positionAdvice") or []:
            if not isinstance(row, dict):
                continue
            action = str(row.get("action", "")).strip().lower()
            if action not in ACTIONS:
                continue
            pos = by_address.get(normalize_address(row.get("address"))) or by_symbol.get(
                str(row.get("symbol", "")).upper()
            )
            if pos is None:
                continue
            trail = row.get("suggestedTrailPercent")
            try:
                trail_value = float(trail) if trail is not None else None
            except (TypeError, ValueError):
                trail_value = None
            out.append(
                PositionAdvice(
                    token_address=pos.token_address,
                    symbol=pos.symbol,
                    action=action,
                    reason=str(row.get("reasoning", ""))[:300],
                    suggested_trail_percent=trail_value,
                )
            )
        logger.info("ADVISOR_REVIEW call=%s positions=%s advice=%s", self._call_count, len(positions), len(out))
        return out
