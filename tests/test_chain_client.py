"""Tests for ChainClient against a mocked AsyncWeb3."""
from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from contract_studio.chain import ChainClient
from contract_studio.chain.client import coerce_argument, find_abi_entry
from contract_studio.exceptions import ChainError

PRIVATE_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
SIGNER = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"
TX_HASH = b"\x12" * 32


async def _resolved(value):
    return value


def _signable_tx(contract_address: str) -> dict:
    return {
        "to": contract_address,
        "value": 0,
        "gas": 100000,
        "gasPrice": 1_000_000_000,
        "nonce": 3,
        "chainId": 57054,
        "data": "0x",
    }


@pytest.fixture
def w3():
    w3 = MagicMock()
    w3.eth.get_transaction_count = AsyncMock(return_value=3)
    w3.eth.send_raw_transaction = AsyncMock(return_value=TX_HASH)
    w3.eth.wait_for_transaction_receipt = AsyncMock(
        return_value={
            "status": 1,
            "blockNumber": 12,
            "gasUsed": 21000,
            "transactionHash": TX_HASH,
            "contractAddress": "0x5FbDB2315678afecb367f032d93F642f64180aa3",
        }
    )
    return w3


@pytest.fixture
def contract(w3):
    contract = MagicMock()
    w3.eth.contract.return_value = contract
    return contract


@pytest.fixture
def client(w3) -> ChainClient:
    return ChainClient("http://localhost:8545", private_key=PRIVATE_KEY, chain_id=57054, w3=w3)


def _function(contract, name: str, *, call=None, build=None) -> MagicMock:
    bound = MagicMock()
    if call is not None:
        bound.call = call
    if build is not None:
        bound.build_transaction = build
    fn = MagicMock(return_value=bound)
    setattr(contract.functions, name, fn)
    return fn


# =============================================================================
# Argument handling
# =============================================================================

def test_coerce_lowercase_address():
    assert coerce_argument("address", SIGNER.lower()) == SIGNER


@pytest.mark.parametrize(
    "abi_type, value, expected",
    [
        ("uint256", "42", 42),
        ("uint256", "0x10", 16),
        ("int8", "-3", -3),
        ("uint256[]", ["1", "2"], [1, 2]),
        ("string", "5", "5"),
        ("uint256", "not a number", "not a number"),
    ],
)
def test_coerce_numbers(abi_type, value, expected):
    assert coerce_argument(abi_type, value) == expected


def test_find_abi_entry_prefers_matching_overload():
    abi = [
        {"type": "function", "name": "mint", "inputs": [{"type": "uint256"}]},
        {"type": "function", "name": "mint", "inputs": [{"type": "address"}, {"type": "uint256"}]},
    ]
    assert len(find_abi_entry(abi, "mint", "function", 2)["inputs"]) == 2
    assert find_abi_entry(abi, "burn", "function") is None


def test_signer_address_from_key(client):
    assert client.address == SIGNER


# =============================================================================
# Reads
# =============================================================================

@pytest.mark.asyncio
async def test_read_stringifies_integers(client, contract, contract_address, counter_abi):
    _function(contract, "count", call=AsyncMock(return_value=2**70))

    result = await client.read(contract_address, counter_abi, "count", [])

    assert result == str(2**70)


@pytest.mark.asyncio
async def test_read_formats_tuples(client, contract, contract_address):
    abi = [{"type": "function", "name": "info", "inputs": [], "outputs": []}]
    _function(contract, "info", call=AsyncMock(return_value=(1, b"\xab", True, "name")))

    assert await client.read(contract_address, abi, "info") == ["1", "0xab", True, "name"]


@pytest.mark.asyncio
async def test_read_coerces_inputs(client, contract, contract_address):
    abi = [{"type": "function", "name": "balanceOf", "inputs": [{"name": "owner", "type": "address"}]}]
    fn = _function(contract, "balanceOf", call=AsyncMock(return_value=0))

    await client.read(contract_address, abi, "balanceOf", [SIGNER.lower()])

    fn.assert_called_once_with(SIGNER)


@pytest.mark.asyncio
async def test_unknown_function(client, contract_address, counter_abi):
    with pytest.raises(ChainError, match="Function missing not found in contract"):
        await client.read(contract_address, counter_abi, "missing")


@pytest.mark.asyncio
async def test_read_failure_is_wrapped(client, contract, contract_address, counter_abi):
    _function(contract, "count", call=AsyncMock(side_effect=ValueError("execution reverted")))

    with pytest.raises(ChainError) as exc_info:
        await client.read(contract_address, counter_abi, "count")

    assert exc_info.value.message == "execution reverted"
    assert exc_info.value.details["operation"] == "read"


# =============================================================================
# Writes and deployments
# =============================================================================

@pytest.mark.asyncio
async def test_write_signs_and_waits(client, w3, contract, contract_address, counter_abi):
    build = AsyncMock(return_value=_signable_tx(contract_address))
    _function(contract, "increment", build=build)

    result = await client.write(contract_address, counter_abi, "increment", [])

    assert result == {
        "transactionHash": "0x" + "12" * 32,
        "blockNumber": "12",
        "gasUsed": "21000",
    }
    build.assert_awaited_once_with({"from": SIGNER, "nonce": 3, "chainId": 57054})
    w3.eth.get_transaction_count.assert_awaited_once_with(SIGNER, "pending")
    w3.eth.send_raw_transaction.assert_awaited_once()
    w3.eth.wait_for_transaction_receipt.assert_awaited_once_with(TX_HASH, timeout=120.0)


@pytest.mark.asyncio
async def test_reverted_write(client, w3, contract, contract_address, counter_abi):
    _function(contract, "increment", build=AsyncMock(return_value=_signable_tx(contract_address)))
    w3.eth.wait_for_transaction_receipt.return_value = {
        "status": 0,
        "blockNumber": 13,
        "gasUsed": 50000,
        "transactionHash": TX_HASH,
    }

    with pytest.raises(ChainError, match="Transaction reverted") as exc_info:
        await client.write(contract_address, counter_abi, "increment")

    assert exc_info.value.details["blockNumber"] == "13"


@pytest.mark.asyncio
async def test_write_without_key(w3, contract_address, counter_abi):
    client = ChainClient("http://localhost:8545", w3=w3)

    with pytest.raises(ChainError, match="No signing key configured"):
        await client.write(contract_address, counter_abi, "increment")

    w3.eth.send_raw_transaction.assert_not_called()


@pytest.mark.asyncio
async def test_deploy_returns_address(client, w3, contract_address):
    factory = MagicMock()
    factory.constructor.return_value.build_transaction = AsyncMock(return_value=_signable_tx(contract_address))
    w3.eth.contract.return_value = factory
    abi = [{"type": "constructor", "inputs": [{"name": "start", "type": "uint256"}]}]

    result = await client.deploy(abi, "0x6080", ["7"])

    assert result == {
        "contractAddress": "0x5FbDB2315678afecb367f032d93F642f64180aa3",
        "transactionHash": "0x" + "12" * 32,
    }
    factory.constructor.assert_called_once_with(7)
    w3.eth.contract.assert_called_once_with(abi=abi, bytecode="0x6080")


# =============================================================================
# Events
# =============================================================================

@pytest.mark.asyncio
async def test_events_are_formatted(client, contract, contract_address, counter_abi):
    event = MagicMock()
    event.get_logs = AsyncMock(
        return_value=[
            {
                "event": "Incremented",
                "args": {"value": 5},
                "address": contract_address,
                "blockNumber": 10,
                "transactionHash": b"\xab" * 32,
                "logIndex": 0,
            }
        ]
    )
    contract.events.Incremented = event

    logs = await client.events(contract_address, counter_abi, "Incremented")

    assert logs == [
        {
            "event": "Incremented",
            "args": {"value": "5"},
            "address": contract_address,
            "blockNumber": "10",
            "transactionHash": "0x" + "ab" * 32,
            "logIndex": "0",
        }
    ]
    event.get_logs.assert_awaited_once_with(from_block=0, to_block="latest")


@pytest.mark.asyncio
async def test_unknown_event(client, contract_address, counter_abi):
    with pytest.raises(ChainError, match="Event Missing not found in contract"):
        await client.events(contract_address, counter_abi, "Missing")


# =============================================================================
# Health
# =============================================================================

@pytest.mark.asyncio
async def test_health_connected(client, w3):
    w3.is_connected = AsyncMock(return_value=True)
    w3.eth.block_number = _resolved(100)

    assert await client.health() == {
        "connected": True,
        "chain_id": 57054,
        "block_number": 100,
        "signer": SIGNER,
    }


@pytest.mark.asyncio
async def test_health_never_raises(client, w3):
    w3.is_connected = AsyncMock(side_effect=ConnectionError("rpc down"))

    assert await client.health() == {"connected": False, "error": "rpc down"}


@pytest.mark.asyncio
async def test_close_disconnects_provider(client, w3):
    w3.provider.disconnect = AsyncMock()

    await client.close()

    w3.provider.disconnect.assert_awaited_once()
