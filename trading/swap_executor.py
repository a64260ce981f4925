"""USDC <-> token swaps on Base through the 0x aggregator, plus wallet balance reads."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

from eth_account import Account
from web3 import HTTPProvider, Web3
from web3.contract import Contract

import config
from utils.http_client import ResilientHttpClient

logger = logging.getLogger(__name__)

SELL_ALL = "all"

ERC20_ABI: list[dict[str, Any]] = [
    {
        "name": "balanceOf",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "owner", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "name": "allowance",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "owner", "type": "address"}, {"name": "spender", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "name": "approve",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [{"name": "spender", "type": "address"}, {"name": "value", "type": "uint256"}],
        "outputs": [{"name": "", "type": "bool"}],
    },
]


@dataclass
class SwapResult:
    success: bool
    filled_quantity: int = 0
    proceeds_amount: float = 0.0
    tx_hash: str = ""
    error: str = ""
    dry_run: bool = False


class SwapExecutor:
    """Buys spend USDC; sells return USDC. Web3 calls run in worker threads."""

    def __init__(self, http: ResilientHttpClient | None = None) -> None:
        if not config.PRIVATE_KEY:
            raise ValueError("PRIVATE_KEY is empty")
        if not config.BASE_RPC_URL:
            raise ValueError("BASE_RPC_URL is empty")
        if not config.DRY_RUN and not config.ZEROX_API_KEY:
            raise ValueError("ZEROX_API_KEY is empty")

        self.w3 = Web3(HTTPProvider(config.BASE_RPC_URL, request_kwargs={"timeout": config.RPC_TIMEOUT_SECONDS}))
        self.account = Account.from_key(config.PRIVATE_KEY)
        self.wallet = self.w3.to_checksum_address(self.account.address)
        self.usdc_address = self.w3.to_checksum_address(config.USDC_ADDRESS)
        self.usdc: Contract = self.w3.eth.contract(address=self.usdc_address, abi=ERC20_ABI)
        self._http = http or ResilientHttpClient(
            timeout_seconds=config.DEX_TIMEOUT,
            source_limits={"zerox": 2},
        )
        self._owns_http = http is None

    async def close(self) -> None:
        if self._owns_http:
            await self._http.close()

    # --- balances -----------------------------------------------------

    def _token(self, address: str) -> Contract:
        return self.w3.eth.contract(address=self.w3.to_checksum_address(address), abi=ERC20_ABI)

    async def native_balance(self) -> float:
        wei = await asyncio.to_thread(self.w3.eth.get_balance, self.wallet)
        return float(self.w3.from_wei(wei, "ether"))

    async def quote_balance(self) -> float:
        raw = await asyncio.to_thread(self.usdc.functions.balanceOf(self.wallet).call)
        return int(raw) / (10 ** int(config.USDC_DECIMALS))

    async def token_balance_raw(self, token_address: str) -> int:
        contract = self._token(token_address)
        return int(await asyncio.to_thread(contract.functions.balanceOf(self.wallet).call))

    # --- swaps --------------------------------------------------------

    async def buy(self, token_address: str, usdc_amount: float) -> SwapResult:
        sell_raw = int(round(float(usdc_amount) * (10 ** int(config.USDC_DECIMALS))))
        if sell_raw <= 0:
            return SwapResult(False, error="usdc_amount is zero")
        logger.info("SWAP_BUY token=%s usdc=%.2f dry_run=%s", token_address, usdc_amount, config.DRY_RUN)
        return await self._swap(self.usdc_address, token_address, sell_raw, buying=True)

    async def sell(self, token_address: str, amount: int | str = SELL_ALL) -> SwapResult:
        if amount == SELL_ALL:
            try:
                amount = await self.token_balance_raw(token_address)
            except Exception as exc:
                logger.exception("SWAP_SELL_BALANCE_FAILED token=%s", token_address)
                return SwapResult(False, error=f"balance_read_failed:{exc}")
        sell_raw = int(amount)
        if sell_raw <= 0:
            return SwapResult(False, error="zero token balance")
        logger.info("SWAP_SELL token=%s amount_raw=%s dry_run=%s", token_address, sell_raw, config.DRY_RUN)
        return await self._swap(token_address, self.usdc_address, sell_raw, buying=False)

    def _swap_params(self, sell_token: str, buy_token: str, sell_raw: int) -> dict[str, str]:
        return {
            "sellToken": self.w3.to_checksum_address(sell_token),
            "buyToken": self.w3.to_checksum_address(buy_token),
            "sellAmount": str(int(sell_raw)),
            "takerAddress": self.wallet,
            "slippagePercentage": str(int(config.SLIPPAGE_BPS) / 10_000),
        }

    async def _zerox(self, endpoint: str, params: dict[str, str]) -> tuple[dict[str, Any] | None, str]:
        result = await self._http.get_json(
            f"{config.ZEROX_API_URL}/swap/v1/{endpoint}",
            source="zerox",
            params=params,
            headers={"0x-api-key": config.ZEROX_API_KEY, "0x-chain-id": str(config.EVM_CHAIN_ID)},
        )
        if not result.ok or not isinstance(result.data, dict):
            return None, f"zerox_{endpoint}_failed:{result.error or result.status}"
        return result.data, ""

    async def _swap(self, sell_token: str, buy_token: str, sell_raw: int, *, buying: bool) -> SwapResult:
        params = self._swap_params(sell_token, buy_token, sell_raw)
        usdc_scale = 10 ** int(config.USDC_DECIMALS)

        if config.DRY_RUN:
            data, error = await self._zerox("price", params)
            if data is None:
                return SwapResult(False, error=error, dry_run=True)
            buy_amount = int(data.get("buyAmount") or 0)
            if buying:
                return SwapResult(True, filled_quantity=buy_amount, dry_run=True)
            return SwapResult(True, filled_quantity=sell_raw, proceeds_amount=buy_amount / usdc_scale, dry_run=True)

        quote, error = await self._zerox("quote", params)
        if quote is None:
            return SwapResult(False, error=error)
        try:
            tx_hash, delta = await asyncio.to_thread(self._execute_quote, quote, sell_token, buy_token, sell_raw)
        except Exception as exc:
            logger.exception("SWAP_FAILED sell=%s buy=%s", sell_token, buy_token)
            return SwapResult(False, error=str(exc))
        if buying:
            return SwapResult(True, filled_quantity=delta, tx_hash=tx_hash)
        return SwapResult(True, filled_quantity=sell_raw, proceeds_amount=delta / usdc_scale, tx_hash=tx_hash)

    def _execute_quote(self, quote: dict[str, Any], sell_token: str, buy_token: str, sell_raw: int) -> tuple[str, int]:
        """Approve, send and confirm a 0x quote; returns (tx_hash, bought raw amount)."""
        sell_contract = self._token(sell_token)
        buy_contract = self._token(buy_token)
        spender = str(quote.get("allowanceTarget") or quote.get("to") or "")
        if not spender:
            raise RuntimeError("quote_missing_allowance_target")
        self._ensure_allowance(sell_contract, self.w3.to_checksum_address(spender), sell_raw)

        before = int(buy_contract.functions.balanceOf(self.wallet).call())
        tx = self._tx_params(value_wei=int(quote.get("value") or 0))
        tx["to"] = self.w3.to_checksum_address(str(quote["to"]))
        tx["data"] = str(quote["data"])
        estimated = int(quote.get("estimatedGas") or quote.get("gas") or 0)
        tx_hash = self._send_and_wait(tx, gas_hint=estimated)
        after = int(buy_contract.functions.balanceOf(self.wallet).call())
        return tx_hash, max(0, after - before)

    def _ensure_allowance(self, token_contract: Contract, spender: str, required_amount: int) -> None:
        allowance = int(token_contract.functions.allowance(self.wallet, spender).call())
        if allowance >= required_amount:
            return
        logger.info("SWAP_APPROVE token=%s spender=%s", token_contract.address, spender)
        approve_tx = token_contract.functions.approve(spender, (2**256) - 1).build_transaction(self._tx_params())
        self._send_and_wait(approve_tx)

    def _tx_params(self, value_wei: int = 0) -> dict[str, Any]:
        nonce = self.w3.eth.get_transaction_count(self.wallet, "pending")
        latest = self.w3.eth.get_block("latest")
        base_fee = int(latest.get("baseFeePerGas") or 0)
        priority = int(self.w3.to_wei(float(config.PRIORITY_FEE_GWEI), "gwei"))
        cap = int(self.w3.to_wei(float(config.MAX_GAS_GWEI), "gwei"))
        if cap <= 0:
            cap = int(self.w3.to_wei(1, "gwei"))

        observed = int(self.w3.eth.gas_price or 0)
        if observed > cap:
            raise RuntimeError(
                f"gas_price_too_high observed_gwei={float(self.w3.from_wei(observed, 'gwei')):.3f} "
                f"cap_gwei={float(self.w3.from_wei(cap, 'gwei')):.3f}"
            )
        max_fee = min(cap, max(observed, base_fee * 2 + priority))
        return {
            "from": self.wallet,
            "chainId": int(config.EVM_CHAIN_ID),
            "nonce": nonce,
            "value": int(value_wei),
            "maxFeePerGas": max_fee,
            "maxPriorityFeePerGas": min(priority, max_fee),
            "type": 2,
        }

    def _send_and_wait(self, tx: dict[str, Any], gas_hint: int = 0) -> str:
        gas = gas_hint if gas_hint > 0 else int(self.w3.eth.estimate_gas(tx))
        tx["gas"] = int(gas * float(config.GAS_LIMIT_BUFFER))

        balance = int(self.w3.eth.get_balance(self.wallet))
        worst_cost = int(tx["gas"]) * int(tx.get("maxFeePerGas") or 0) + int(tx.get("value") or 0)
        if worst_cost > balance:
            raise RuntimeError(
                f"insufficient_eth_for_gas have_eth={float(self.w3.from_wei(balance, 'ether')):.8f} "
                f"want_eth={float(self.w3.from_wei(worst_cost, 'ether')):.8f}"
            )
        signed = self.account.sign_transaction(tx)
        tx_hash = self.w3.eth.send_raw_transaction(signed.raw_transaction)
        receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=int(config.TX_TIMEOUT_SECONDS))
        if int(receipt.status) != 1:
            raise RuntimeError(f"tx_reverted hash={tx_hash.hex()}")
        logger.info("SWAP_TX_CONFIRMED hash=%s gas=%s", tx_hash.hex(), tx["gas"])
        return tx_hash.hex()
