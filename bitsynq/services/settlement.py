"""
bitsynq.services.settlement — ERC-20 Settlement over JSON-RPC
==============================================================

Realizes an allocation as ERC-20 ``transfer`` calls against an EVM node,
speaking plain JSON-RPC through **httpx**.

Two signing modes:

  * ``private_key`` given: transactions are built and signed locally with
    **eth-account** (EIP-155, the configured ``chain_id``) and submitted
    with ``eth_sendRawTransaction``.  Works against any public RPC
    provider.
  * only ``sender_address`` given: the node signs for an unlocked account
    (Hardhat, Anvil) via ``eth_sendTransaction``.

Either way the client polls ``eth_getTransactionReceipt`` until mined and
checks ``status``.  Reads use ``eth_call`` (``balanceOf``, ``name``,
``symbol``, ``decimals``) and ``eth_getBalance``.

Transfers run sequentially.  A failed transfer is recorded and the batch
continues; the batch succeeds only when every transfer was confirmed.

Usage::

    settlement = settlement_from_env(cfg)     # None when not configured
    result = settlement.batch_transfer([TransferItem(to=addr, amount=10**18)])
"""

from __future__ import annotations

import itertools
import logging
import os
import re
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Protocol

import httpx
from eth_account import Account
from eth_utils import to_checksum_address

from bitsynq.config import BitsynqConfig, default_config
from bitsynq.services.errors import SettlementError

logger = logging.getLogger(__name__)

TRANSFER_SELECTOR = "0xa9059cbb"     # transfer(address,uint256)
BALANCE_OF_SELECTOR = "0x70a08231"   # balanceOf(address)
NAME_SELECTOR = "0x06fdde03"         # name()
SYMBOL_SELECTOR = "0x95d89b41"       # symbol()
DECIMALS_SELECTOR = "0x313ce567"     # decimals()
ETHER_DECIMALS = 18
UINT256_MAX = 2**256 - 1

_ADDRESS = re.compile(r"^0x[0-9a-fA-F]{40}$")


class RpcError(SettlementError):
    """JSON-RPC transport failure, node error, revert or receipt timeout."""


# ---------------------------------------------------------------------------
# Value types
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class TransferItem:
    """One recipient of a batch; *amount* is in token base units."""

    to: str
    amount: int


@dataclass(slots=True)
class SettlementResult:
    success: bool
    tx_hashes: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def tx_hash(self) -> str | None:
        """Hash of the last confirmed transfer."""
        return self.tx_hashes[-1] if self.tx_hashes else None

    @property
    def error(self) -> str | None:
        return "; ".join(self.errors) if self.errors else None


class SettlementBackend(Protocol):
    sender_address: str
    token_contract: str

    def batch_transfer(self, transfers: Sequence[TransferItem]) -> SettlementResult: ...


# ---------------------------------------------------------------------------
# Encoding helpers
# ---------------------------------------------------------------------------
def is_valid_address(address: str | None) -> bool:
    """``0x`` followed by 40 hex digits (checksum casing is not verified)."""
    return bool(address) and bool(_ADDRESS.match(address))


def _word(value: int) -> str:
    return format(value, "x").rjust(64, "0")


def encode_transfer_call(to: str, amount: int) -> str:
    """ABI-encode ``transfer(to, amount)`` calldata."""
    if not is_valid_address(to):
        raise ValueError(f"Invalid recipient address: {to!r}")
    if not 0 <= amount <= UINT256_MAX:
        raise ValueError(f"Amount out of uint256 range: {amount}")
    return TRANSFER_SELECTOR + to[2:].lower().rjust(64, "0") + _word(amount)


def encode_balance_of_call(owner: str) -> str:
    if not is_valid_address(owner):
        raise ValueError(f"Invalid address: {owner!r}")
    return BALANCE_OF_SELECTOR + owner[2:].lower().rjust(64, "0")


def parse_token_amount(amount: str | int | Decimal, decimals: int = 18) -> int:
    """Whole-token amount → base units (``"1.5"`` → ``1500000000000000000``).

    Raises ``ValueError`` for non-numeric input, negative amounts or more
    fractional digits than *decimals* allows.
    """
    try:
        value = Decimal(str(amount))
    except InvalidOperation as exc:
        raise ValueError(f"Invalid token amount: {amount!r}") from exc
    if not value.is_finite() or value < 0:
        raise ValueError(f"Invalid token amount: {amount!r}")
    scaled = value.scaleb(decimals)
    if scaled != scaled.to_integral_value():
        raise ValueError(f"Too many decimal places for {decimals} decimals: {amount!r}")
    return int(scaled)


def format_token_amount(base_units: int, decimals: int = 18) -> str:
    """Base units → whole-token string without trailing zeros."""
    whole, frac = divmod(base_units, 10**decimals)
    if not frac:
        return str(whole)
    return f"{whole}.{str(frac).rjust(decimals, '0').rstrip('0')}"


def _hex_to_int(value: str | None) -> int | None:
    return int(value, 16) if value else None


def decode_abi_string(data: str) -> str:
    """Decode an ABI-encoded dynamic ``string`` return value."""
    raw = bytes.fromhex(data[2:] if data.startswith("0x") else data)
    if len(raw) < 64:
        raise ValueError("ABI string payload too short")
    offset = int.from_bytes(raw[:32], "big")
    length = int.from_bytes(raw[offset : offset + 32], "big")
    body = raw[offset + 32 : offset + 32 + length]
    if len(body) != length:
        raise ValueError("ABI string payload truncated")
    return body.decode("utf-8")


# ---------------------------------------------------------------------------
# JSON-RPC client
# ---------------------------------------------------------------------------
class Erc20RpcSettlement:
    """ERC-20 transfers signed locally (``private_key``) or by the node."""

    def __init__(
        self,
        rpc_url: str,
        token_contract: str,
        *,
        private_key: str | None = None,
        sender_address: str | None = None,
        chain_id: int | None = None,
        decimals: int = 18,
        receipt_timeout: float = 120.0,
        poll_interval: float = 2.0,
        client: httpx.Client | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if not is_valid_address(token_contract):
            raise ValueError(f"Invalid token contract address: {token_contract!r}")

        self._account = Account.from_key(private_key) if private_key else None
        if self._account is not None:
            if chain_id is None:
                raise ValueError("chain_id is required to sign transactions locally")
            if sender_address and sender_address.lower() != self._account.address.lower():
                raise ValueError("sender_address does not match the private key")
            sender_address = self._account.address
        elif not is_valid_address(sender_address):
            raise ValueError(f"Invalid sender address: {sender_address!r}")

        self.rpc_url = rpc_url
        self.token_contract = token_contract
        self.sender_address = sender_address
        self.chain_id = chain_id
        self.decimals = decimals
        self.receipt_timeout = receipt_timeout
        self.poll_interval = poll_interval
        self._client = client or httpx.Client(
            timeout=10, transport=httpx.HTTPTransport(retries=1)
        )
        self._sleep = sleep
        self._ids = itertools.count(1)

    @property
    def signs_locally(self) -> bool:
        return self._account is not None

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> Erc20RpcSettlement:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    # -- transport -----------------------------------------------------------

    def _rpc(self, method: str, params: list[Any]) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            resp = self._client.post(self.rpc_url, json=payload)
            resp.raise_for_status()
            body = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise RpcError(f"{method} failed: {exc}") from exc
        if body.get("error"):
            err = body["error"]
            message = err.get("message", err) if isinstance(err, dict) else err
            raise RpcError(f"{method} failed: {message}", details=err)
        return body.get("result")

    def _call(self, data: str) -> str:
        result = self._rpc("eth_call", [{"to": self.token_contract, "data": data}, "latest"])
        if not result or result == "0x":
            raise RpcError(f"eth_call to {self.token_contract} returned no data")
        return result

    # -- reads ---------------------------------------------------------------

    def get_token_balance(self, address: str) -> int:
        """``balanceOf(address)`` in base units."""
        result = self._rpc(
            "eth_call",
            [{"to": self.token_contract, "data": encode_balance_of_call(address)}, "latest"],
        )
        return _hex_to_int(result) or 0

    def get_token_info(self) -> dict[str, Any]:
        """``name``, ``symbol`` and ``decimals`` of the token contract."""
        try:
            return {
                "name": decode_abi_string(self._call(NAME_SELECTOR)),
                "symbol": decode_abi_string(self._call(SYMBOL_SELECTOR)),
                "decimals": int(self._call(DECIMALS_SELECTOR), 16),
            }
        except ValueError as exc:
            raise RpcError(f"Malformed token metadata: {exc}") from exc

    def get_eth_balance(self, address: str) -> int:
        """Native balance in wei."""
        return _hex_to_int(self._rpc("eth_getBalance", [address, "latest"])) or 0

    def get_sender_wallet(self) -> dict[str, Any]:
        """Funding view of the sending wallet: gas balance and token holdings."""
        token_info = self.get_token_info()
        raw_tokens = self.get_token_balance(self.sender_address)
        return {
            "address": self.sender_address,
            "chain_id": self.chain_id,
            "eth_balance": format_token_amount(
                self.get_eth_balance(self.sender_address), ETHER_DECIMALS
            ),
            "token_balance": format_token_amount(raw_tokens, token_info["decimals"]),
            "token_info": token_info,
        }

    def get_transaction_status(self, tx_hash: str) -> dict[str, Any]:
        """``{"confirmed": False}`` until mined, then block number and status."""
        receipt = self._rpc("eth_getTransactionReceipt", [tx_hash])
        if not receipt:
            return {"confirmed": False}
        return {
            "confirmed": True,
            "block_number": _hex_to_int(receipt.get("blockNumber")),
            "status": _hex_to_int(receipt.get("status")),
            "gas_used": _hex_to_int(receipt.get("gasUsed")),
        }

    # -- writes --------------------------------------------------------------

    def _wait_for_receipt(self, tx_hash: str) -> dict[str, Any]:
        deadline = time.monotonic() + self.receipt_timeout
        while True:
            receipt = self._rpc("eth_getTransactionReceipt", [tx_hash])
            if receipt:
                return receipt
            if time.monotonic() >= deadline:
                raise RpcError(f"Timed out waiting for receipt of {tx_hash}")
            self._sleep(self.poll_interval)

    def _send_signed(self, data: str) -> str:
        call = {"from": self.sender_address, "to": self.token_contract, "data": data}
        nonce = _hex_to_int(self._rpc("eth_getTransactionCount", [self.sender_address, "pending"]))
        gas = _hex_to_int(self._rpc("eth_estimateGas", [call]))
        gas_price = _hex_to_int(self._rpc("eth_gasPrice", []))
        if nonce is None or not gas or gas_price is None:
            raise RpcError("Node returned no nonce, gas estimate or gas price")

        signed = self._account.sign_transaction({
            "to": to_checksum_address(self.token_contract),
            "data": data,
            "value": 0,
            "nonce": nonce,
            "gas": gas,
            "gasPrice": gas_price,
            "chainId": self.chain_id,
        })
        return self._rpc("eth_sendRawTransaction", ["0x" + bytes(signed.raw_transaction).hex()])

    def transfer(self, to: str, amount: int) -> str:
        """Send one transfer and block until it is mined successfully.

        Returns the transaction hash; raises :class:`RpcError` on failure
        or revert.
        """
        data = encode_transfer_call(to, amount)
        if self._account is not None:
            tx_hash = self._send_signed(data)
        else:
            tx = {"from": self.sender_address, "to": self.token_contract, "data": data}
            tx_hash = self._rpc("eth_sendTransaction", [tx])
        if not tx_hash:
            raise RpcError("Node returned no transaction hash")
        logger.info("Transfer submitted: %s → %s (%d)", tx_hash, to, amount)

        receipt = self._wait_for_receipt(tx_hash)
        if _hex_to_int(receipt.get("status")) != 1:
            raise RpcError(f"Transaction {tx_hash} reverted")
        logger.info("Transfer confirmed: %s in block %s", tx_hash, _hex_to_int(receipt.get("blockNumber")))
        return tx_hash

    def batch_transfer(self, transfers: Sequence[TransferItem]) -> SettlementResult:
        result = SettlementResult(success=False)
        for item in transfers:
            try:
                result.tx_hashes.append(self.transfer(item.to, item.amount))
            except (RpcError, ValueError) as exc:
                logger.warning("Transfer to %s failed: %s", item.to, exc)
                result.errors.append(f"Failed to transfer to {item.to}: {exc}")
        result.success = not result.errors
        return result


# ---------------------------------------------------------------------------
# Environment wiring
# ---------------------------------------------------------------------------
def settlement_from_env(config: BitsynqConfig | None = None) -> Erc20RpcSettlement | None:
    """Build the settlement client from ``ETH_*`` env vars.

    Needs ``ETH_RPC_URL`` and ``ETH_TOKEN_CONTRACT`` plus a signer:
    ``ETH_PRIVATE_KEY`` (signed locally for ``config.chain_id``) or, for a
    local dev node, ``ETH_SENDER_ADDRESS``.  Returns ``None`` when any of
    these is missing, meaning on-chain settlement is off.
    """
    cfg = config or default_config()
    rpc_url = os.getenv("ETH_RPC_URL", "").strip()
    token_contract = os.getenv("ETH_TOKEN_CONTRACT", "").strip()
    private_key = os.getenv("ETH_PRIVATE_KEY", "").strip()
    sender = os.getenv("ETH_SENDER_ADDRESS", "").strip()
    if not (rpc_url and token_contract and (private_key or sender)):
        logger.debug("Ethereum settlement not configured")
        return None
    return Erc20RpcSettlement(
        rpc_url,
        token_contract,
        private_key=private_key or None,
        sender_address=sender or None,
        chain_id=cfg.chain_id,
        decimals=cfg.token_decimals,
        receipt_timeout=cfg.settlement_receipt_timeout_seconds,
        poll_interval=cfg.settlement_poll_interval_seconds,
    )
