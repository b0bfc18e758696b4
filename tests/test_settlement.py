"""
tests/test_settlement.py — ERC-20 JSON-RPC Settlement
======================================================

The node is faked with ``httpx.MockTransport``; receipts are returned
immediately and the poll sleep is a no-op.  Local signing uses the
well-known first Hardhat dev account.
"""

from __future__ import annotations

import json
from decimal import Decimal

import httpx
import pytest
from eth_account import Account

from bitsynq.config import BitsynqConfig
from bitsynq.services.settlement import (
    DECIMALS_SELECTOR,
    NAME_SELECTOR,
    SYMBOL_SELECTOR,
    Erc20RpcSettlement,
    RpcError,
    TransferItem,
    decode_abi_string,
    encode_balance_of_call,
    encode_transfer_call,
    format_token_amount,
    is_valid_address,
    parse_token_amount,
    settlement_from_env,
)

SENDER = "0x" + "99" * 20
TOKEN = "0x" + "77" * 20
ALICE = "0x" + "a1" * 20
BOB = "0x" + "B2" * 20
DEV_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
DEV_ADDRESS = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"
ETH_VARS = ("ETH_RPC_URL", "ETH_TOKEN_CONTRACT", "ETH_PRIVATE_KEY", "ETH_SENDER_ADDRESS")


def _abi_string(text: str) -> str:
    raw = text.encode("utf-8")
    words = -(-len(raw) // 32)
    return "0x" + format(32, "064x") + format(len(raw), "064x") + raw.hex().ljust(words * 64, "0")


class FakeNode:
    """Minimal JSON-RPC node: every transfer is mined at once."""

    def __init__(self, *, revert_to: set[str] = frozenset(), pending_polls: int = 0):
        self.revert_to = {a.lower() for a in revert_to}
        self.pending_polls = pending_polls
        self.calls: list[dict] = []
        self.raw_transactions: list[str] = []
        self._receipts: dict[str, str] = {}

    def _mine(self, status: str) -> str:
        tx_hash = f"0x{len(self._receipts) + 1:064x}"
        self._receipts[tx_hash] = status
        return tx_hash

    def _eth_call(self, data: str) -> str:
        if data == NAME_SELECTOR:
            return _abi_string("Bitsynq Token")
        if data == SYMBOL_SELECTOR:
            return _abi_string("BTS")
        if data == DECIMALS_SELECTOR:
            return "0x" + format(18, "064x")
        return hex(5 * 10**18)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.calls.append(body)
        method, params = body["method"], body["params"]

        if method == "eth_sendTransaction":
            recipient = "0x" + params[0]["data"][10 + 24 : 10 + 64]
            result = self._mine("0x0" if recipient in self.revert_to else "0x1")
        elif method == "eth_sendRawTransaction":
            self.raw_transactions.append(params[0])
            result = self._mine("0x1")
        elif method == "eth_getTransactionReceipt":
            if self.pending_polls:
                self.pending_polls -= 1
                result = None
            else:
                result = {"status": self._receipts[params[0]], "blockNumber": "0x10", "gasUsed": "0x5208"}
        elif method == "eth_call":
            result = self._eth_call(params[0]["data"])
        elif method == "eth_getTransactionCount":
            result = "0x7"
        elif method == "eth_estimateGas":
            result = "0xea60"
        elif method == "eth_gasPrice":
            result = hex(10**9)
        elif method == "eth_getBalance":
            result = hex(2 * 10**18)
        else:
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "error": {"code": -32601, "message": "method not found"}})
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": result})


def _client(node, **kwargs) -> Erc20RpcSettlement:
    if "private_key" not in kwargs:
        kwargs.setdefault("sender_address", SENDER)
    return Erc20RpcSettlement(
        "http://node.test",
        TOKEN,
        client=httpx.Client(transport=httpx.MockTransport(node)),
        sleep=lambda _: None,
        **kwargs,
    )


def _signer(node, **kwargs) -> Erc20RpcSettlement:
    return _client(node, private_key=DEV_KEY, chain_id=31337, **kwargs)


# ---------------------------------------------------------------------------
# Encoding helpers
# ---------------------------------------------------------------------------
class TestEncoding:
    def test_transfer_calldata(self):
        data = encode_transfer_call(BOB, 1)
        assert data.startswith("0xa9059cbb")
        assert len(data) == 10 + 64 + 64
        assert data[10:74] == "0" * 24 + "b2" * 20
        assert data.endswith("0" * 63 + "1")

    def test_balance_of_calldata(self):
        assert encode_balance_of_call(ALICE) == "0x70a08231" + "0" * 24 + "a1" * 20

    @pytest.mark.parametrize(
        "address, ok",
        [(ALICE, True), (BOB, True), ("0x123", False), ("a1" * 20, False), ("", False), (None, False)],
    )
    def test_is_valid_address(self, address, ok):
        assert is_valid_address(address) is ok

    def test_bad_inputs(self):
        with pytest.raises(ValueError):
            encode_transfer_call("nope", 1)
        with pytest.raises(ValueError):
            encode_transfer_call(ALICE, -1)


class TestTokenAmounts:
    def test_parse(self):
        assert parse_token_amount("1.5") == 1_500_000_000_000_000_000
        assert parse_token_amount(34, decimals=2) == 3400
        assert parse_token_amount(Decimal("0.01"), decimals=2) == 1

    @pytest.mark.parametrize("amount", ["-1", "abc", "0.001", "NaN"])
    def test_parse_rejects(self, amount):
        with pytest.raises(ValueError):
            parse_token_amount(amount, decimals=2)

    def test_format(self):
        assert format_token_amount(1_500_000_000_000_000_000) == "1.5"
        assert format_token_amount(3400, decimals=2) == "34"
        assert format_token_amount(5, decimals=3) == "0.005"


# ---------------------------------------------------------------------------
# JSON-RPC client
# ---------------------------------------------------------------------------
class TestTransfers:
    def test_transfer_confirmed(self):
        node = FakeNode(pending_polls=2)
        tx_hash = _client(node).transfer(ALICE, 42)
        assert tx_hash == f"0x{1:064x}"
        sent = node.calls[0]
        assert sent["method"] == "eth_sendTransaction"
        assert sent["params"][0]["from"] == SENDER
        assert sent["params"][0]["to"] == TOKEN
        # two empty polls then the receipt
        assert [c["method"] for c in node.calls[1:]] == ["eth_getTransactionReceipt"] * 3

    def test_revert_raises(self):
        node = FakeNode(revert_to={ALICE})
        with pytest.raises(RpcError, match="reverted"):
            _client(node).transfer(ALICE, 1)

    def test_receipt_timeout(self):
        node = FakeNode(pending_polls=10**6)
        with pytest.raises(RpcError, match="Timed out"):
            _client(node, receipt_timeout=0).transfer(ALICE, 1)

    def test_batch_continues_past_failures(self):
        node = FakeNode(revert_to={ALICE})
        result = _client(node).batch_transfer(
            [TransferItem(to=ALICE, amount=1), TransferItem(to=BOB, amount=2), TransferItem(to="bad", amount=3)]
        )
        assert result.success is False
        assert len(result.tx_hashes) == 1
        assert len(result.errors) == 2
        assert result.errors[0].startswith(f"Failed to transfer to {ALICE}")
        assert result.tx_hash == result.tx_hashes[-1]

    def test_batch_all_confirmed(self):
        result = _client(FakeNode()).batch_transfer(
            [TransferItem(to=ALICE, amount=1), TransferItem(to=BOB, amount=2)]
        )
        assert result.success is True
        assert result.error is None
        assert len(result.tx_hashes) == 2

    def test_node_error_surfaces(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "error": {"code": -32000, "message": "insufficient funds"}})

        settlement = _client(handler)
        with pytest.raises(RpcError, match="insufficient funds"):
            settlement.transfer(ALICE, 1)

    def test_http_error_surfaces(self):
        settlement = _client(lambda request: httpx.Response(502))
        with pytest.raises(RpcError):
            settlement.transfer(ALICE, 1)

    def test_balance_and_status(self):
        settlement = _client(FakeNode())
        assert settlement.get_token_balance(ALICE) == 5 * 10**18
        tx_hash = settlement.transfer(BOB, 1)
        status = settlement.get_transaction_status(tx_hash)
        assert status == {"confirmed": True, "block_number": 16, "status": 1, "gas_used": 21000}

    def test_constructor_validates_addresses(self):
        with pytest.raises(ValueError):
            Erc20RpcSettlement("http://node.test", "0xdead", sender_address=SENDER)
        with pytest.raises(ValueError):
            Erc20RpcSettlement("http://node.test", TOKEN)


class TestLocalSigning:
    def test_transfer_is_signed_and_sent_raw(self):
        node = FakeNode()
        settlement = _signer(node)
        assert settlement.signs_locally is True
        assert settlement.sender_address == DEV_ADDRESS

        tx_hash = settlement.transfer(ALICE, 42)

        assert tx_hash == f"0x{1:064x}"
        methods = [c["method"] for c in node.calls]
        assert methods == [
            "eth_getTransactionCount",
            "eth_estimateGas",
            "eth_gasPrice",
            "eth_sendRawTransaction",
            "eth_getTransactionReceipt",
        ]
        assert node.calls[0]["params"] == [DEV_ADDRESS, "pending"]
        assert Account.recover_transaction(node.raw_transactions[0]) == DEV_ADDRESS

    def test_node_signing_does_not_sign_locally(self):
        node = FakeNode()
        settlement = _client(node)
        assert settlement.signs_locally is False
        settlement.transfer(ALICE, 1)
        assert node.raw_transactions == []

    def test_chain_id_required(self):
        with pytest.raises(ValueError, match="chain_id"):
            Erc20RpcSettlement("http://node.test", TOKEN, private_key=DEV_KEY)

    def test_sender_must_match_key(self):
        with pytest.raises(ValueError, match="does not match"):
            _client(FakeNode(), private_key=DEV_KEY, chain_id=1, sender_address=SENDER)
        settlement = _client(
            FakeNode(), private_key=DEV_KEY, chain_id=1, sender_address=DEV_ADDRESS.lower()
        )
        assert settlement.sender_address == DEV_ADDRESS

    def test_missing_gas_estimate(self):
        node = FakeNode()

        def handler(request: httpx.Request) -> httpx.Response:
            if json.loads(request.content)["method"] == "eth_estimateGas":
                return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": None})
            return node(request)

        with pytest.raises(RpcError, match="gas"):
            _signer(handler).transfer(ALICE, 1)


# ---------------------------------------------------------------------------
# Token metadata & wallet reads
# ---------------------------------------------------------------------------
class TestTokenInfo:
    def test_decode_abi_string(self):
        assert decode_abi_string(_abi_string("Bitsynq Token")) == "Bitsynq Token"
        assert decode_abi_string(_abi_string("幣")) == "幣"
        assert decode_abi_string(_abi_string("")) == ""

    @pytest.mark.parametrize("payload", ["0x", "0x" + "00" * 31, _abi_string("BTS")[:-64]])
    def test_decode_rejects_malformed(self, payload):
        with pytest.raises(ValueError):
            decode_abi_string(payload)

    def test_token_info(self):
        info = _client(FakeNode()).get_token_info()
        assert info == {"name": "Bitsynq Token", "symbol": "BTS", "decimals": 18}

    def test_token_info_without_contract_code(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": 1, "result": "0x"})

        with pytest.raises(RpcError, match="no data"):
            _client(handler).get_token_info()

    def test_eth_balance(self):
        assert _client(FakeNode()).get_eth_balance(ALICE) == 2 * 10**18

    def test_sender_wallet(self):
        wallet = _signer(FakeNode()).get_sender_wallet()
        assert wallet == {
            "address": DEV_ADDRESS,
            "chain_id": 31337,
            "eth_balance": "2",
            "token_balance": "5",
            "token_info": {"name": "Bitsynq Token", "symbol": "BTS", "decimals": 18},
        }


# ---------------------------------------------------------------------------
# Environment wiring
# ---------------------------------------------------------------------------
class TestSettlementFromEnv:
    @pytest.fixture(autouse=True)
    def clean_env(self, monkeypatch):
        for name in ETH_VARS:
            monkeypatch.delenv(name, raising=False)

    def test_unconfigured(self):
        assert settlement_from_env() is None

    def test_no_signer_is_unconfigured(self, monkeypatch):
        monkeypatch.setenv("ETH_RPC_URL", "http://127.0.0.1:8545")
        monkeypatch.setenv("ETH_TOKEN_CONTRACT", TOKEN)
        assert settlement_from_env() is None

    def test_node_managed_sender(self, monkeypatch):
        monkeypatch.setenv("ETH_RPC_URL", "http://127.0.0.1:8545")
        monkeypatch.setenv("ETH_TOKEN_CONTRACT", TOKEN)
        monkeypatch.setenv("ETH_SENDER_ADDRESS", SENDER)
        cfg = BitsynqConfig(token_symbol="BTS", chain_id=31337, token_decimals=6)
        with settlement_from_env(cfg) as settlement:
            assert settlement.decimals == 6
            assert settlement.sender_address == SENDER
            assert settlement.signs_locally is False

    def test_private_key_signs_for_configured_chain(self, monkeypatch):
        monkeypatch.setenv("ETH_RPC_URL", "https://rpc.sepolia.test")
        monkeypatch.setenv("ETH_TOKEN_CONTRACT", TOKEN)
        monkeypatch.setenv("ETH_PRIVATE_KEY", DEV_KEY)
        cfg = BitsynqConfig(token_symbol="BTS", chain_id=11155111)
        with settlement_from_env(cfg) as settlement:
            assert settlement.signs_locally is True
            assert settlement.chain_id == 11155111
            assert settlement.sender_address == DEV_ADDRESS
