"""
Chain client for contract reads, writes, event queries and deployments.

Architecture:
- Uses web3.py's AsyncWeb3 over an HTTP provider
- Signs locally with an eth-account LocalAccount when a key is configured
- Returns JSON-safe values: every integer is stringified, bytes become 0x-hex
"""
from __future__ import annotations

import logging
from typing import Any, Optional, Sequence, Union

from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import AsyncHTTPProvider, AsyncWeb3

from ..exceptions import ChainError, ContractStudioError
from ..serialization import format_chain_value

logger = logging.getLogger(__name__)

BlockId = Union[int, str]


def find_abi_entry(
    abi: Sequence[dict[str, Any]],
    name: str,
    entry_type: str,
    arity: Optional[int] = None,
) -> Optional[dict[str, Any]]:
    """Find an ABI entry by name; with `arity`, prefer the matching overload."""
    candidates = [e for e in abi if e.get("type") == entry_type and e.get("name") == name]
    if arity is not None:
        for entry in candidates:
            if len(entry.get("inputs", [])) == arity:
                return entry
    return candidates[0] if candidates else None


def coerce_argument(abi_type: str, value: Any) -> Any:
    """Accept lowercase addresses and decimal/hex strings for integer types."""
    if abi_type.endswith("]") and isinstance(value, (list, tuple)):
        inner = abi_type[: abi_type.rindex("[")]
        return [coerce_argument(inner, v) for v in value]
    if abi_type == "address" and isinstance(value, str) and AsyncWeb3.is_address(value):
        return AsyncWeb3.to_checksum_address(value)
    if abi_type.startswith(("uint", "int")) and isinstance(value, str):
        try:
            return int(value, 0)
        except ValueError:
            return value
    return value


def coerce_arguments(entry: Optional[dict[str, Any]], args: Sequence[Any]) -> list[Any]:
    params = (entry or {}).get("inputs", [])
    if len(params) != len(args):
        return list(args)
    return [coerce_argument(p.get("type", ""), a) for p, a in zip(params, args)]


def _hex(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (bytes, bytearray)):
        text = bytes(value).hex()
        return text if text.startswith("0x") else f"0x{text}"
    return str(value)


class ChainClient:
    """
    Contract interaction over a single JSON-RPC endpoint.

    The signing account is optional; reads and event queries work without
    it, writes and deployments raise ChainError.
    """

    def __init__(
        self,
        rpc_url: str,
        private_key: Optional[str] = None,
        chain_id: Optional[int] = None,
        timeout_seconds: float = 120.0,
        w3: Optional[AsyncWeb3] = None,
    ) -> None:
        self.rpc_url = rpc_url
        self.chain_id = chain_id
        self.timeout_seconds = timeout_seconds
        self.w3 = w3 or AsyncWeb3(
            AsyncHTTPProvider(rpc_url, request_kwargs={"timeout": timeout_seconds})
        )
        self.account: Optional[LocalAccount] = Account.from_key(private_key) if private_key else None

    @property
    def address(self) -> Optional[str]:
        return self.account.address if self.account else None

    def _contract(self, address: str, abi: Sequence[dict[str, Any]]):
        return self.w3.eth.contract(address=AsyncWeb3.to_checksum_address(address), abi=list(abi))

    def _function_entry(self, abi: Sequence[dict[str, Any]], function_name: str, inputs: Sequence[Any]):
        entry = find_abi_entry(abi, function_name, "function", len(inputs))
        if entry is None:
            raise ChainError(f"Function {function_name} not found in contract", operation="lookup")
        return entry

    def _require_account(self, operation: str) -> LocalAccount:
        if self.account is None:
            raise ChainError("No signing key configured", operation=operation)
        return self.account

    async def _send(self, tx_builder: Any, operation: str) -> dict[str, Any]:
        """Build, sign and send a transaction, then wait for its receipt."""
        account = self._require_account(operation)
        params: dict[str, Any] = {
            "from": account.address,
            "nonce": await self.w3.eth.get_transaction_count(account.address, "pending"),
        }
        if self.chain_id is not None:
            params["chainId"] = self.chain_id

        tx = await tx_builder.build_transaction(params)
        signed = account.sign_transaction(tx)
        tx_hash = await self.w3.eth.send_raw_transaction(signed.raw_transaction)
        receipt = await self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.timeout_seconds)

        if receipt["status"] != 1:
            raise ChainError(
                "Transaction reverted",
                operation=operation,
                details={"transactionHash": _hex(tx_hash), "blockNumber": str(receipt["blockNumber"])},
            )
        return receipt

    async def read(
        self,
        address: str,
        abi: Sequence[dict[str, Any]],
        function_name: str,
        inputs: Sequence[Any] = (),
    ) -> Any:
        """Call a view/pure function and return its decoded result."""
        entry = self._function_entry(abi, function_name, inputs)
        try:
            contract = self._contract(address, abi)
            fn = getattr(contract.functions, function_name)
            result = await fn(*coerce_arguments(entry, inputs)).call()
        except ContractStudioError:
            raise
        except Exception as e:
            logger.warning(f"Read {function_name} at {address} failed: {e}")
            raise ChainError(str(e), operation="read") from e
        logger.debug(f"Read {function_name} at {address}")
        return format_chain_value(result)

    async def write(
        self,
        address: str,
        abi: Sequence[dict[str, Any]],
        function_name: str,
        inputs: Sequence[Any] = (),
    ) -> dict[str, Any]:
        """Send a state-changing call and wait for the receipt."""
        entry = self._function_entry(abi, function_name, inputs)
        self._require_account("write")
        try:
            contract = self._contract(address, abi)
            fn = getattr(contract.functions, function_name)
            receipt = await self._send(fn(*coerce_arguments(entry, inputs)), "write")
        except ContractStudioError:
            raise
        except Exception as e:
            logger.warning(f"Write {function_name} at {address} failed: {e}")
            raise ChainError(str(e), operation="write") from e

        logger.info(f"Wrote {function_name} at {address} in block {receipt['blockNumber']}")
        return format_chain_value(
            {
                "transactionHash": _hex(receipt["transactionHash"]),
                "blockNumber": receipt["blockNumber"],
                "gasUsed": receipt["gasUsed"],
            }
        )

    async def events(
        self,
        address: str,
        abi: Sequence[dict[str, Any]],
        event_name: str,
        from_block: BlockId = 0,
        to_block: BlockId = "latest",
    ) -> list[Any]:
        """Query decoded logs for one event over a block range."""
        if find_abi_entry(abi, event_name, "event") is None:
            raise ChainError(f"Event {event_name} not found in contract", operation="lookup")
        try:
            contract = self._contract(address, abi)
            event = getattr(contract.events, event_name)
            logs = await event.get_logs(from_block=from_block, to_block=to_block)
        except ContractStudioError:
            raise
        except Exception as e:
            logger.warning(f"Event query {event_name} at {address} failed: {e}")
            raise ChainError(str(e), operation="events") from e

        return [
            format_chain_value(
                {
                    "event": log["event"],
                    "args": dict(log["args"]),
                    "address": log["address"],
                    "blockNumber": log["blockNumber"],
                    "transactionHash": _hex(log["transactionHash"]),
                    "logIndex": log["logIndex"],
                }
            )
            for log in logs
        ]

    async def deploy(
        self,
        abi: Sequence[dict[str, Any]],
        bytecode: str,
        constructor_args: Sequence[Any] = (),
    ) -> dict[str, Any]:
        """Deploy creation bytecode and return the new contract address."""
        self._require_account("deploy")
        entry = next((e for e in abi if e.get("type") == "constructor"), None)
        try:
            factory = self.w3.eth.contract(abi=list(abi), bytecode=bytecode)
            receipt = await self._send(
                factory.constructor(*coerce_arguments(entry, constructor_args)),
                "deploy",
            )
        except ContractStudioError:
            raise
        except Exception as e:
            logger.warning(f"Deployment failed: {e}")
            raise ChainError(str(e), operation="deploy") from e

        address = receipt["contractAddress"]
        logger.info(f"Deployed contract at {address}")
        return {"contractAddress": address, "transactionHash": _hex(receipt["transactionHash"])}

    async def health(self) -> dict[str, Any]:
        """Connectivity snapshot; never raises."""
        try:
            connected = await self.w3.is_connected()
            block_number = await self.w3.eth.block_number if connected else None
        except Exception as e:
            logger.warning(f"Chain health check failed: {e}")
            return {"connected": False, "error": str(e)}
        return {
            "connected": connected,
            "chain_id": self.chain_id,
            "block_number": block_number,
            "signer": self.address,
        }

    async def close(self) -> None:
        provider = self.w3.provider
        disconnect = getattr(provider, "disconnect", None)
        if disconnect is not None:
            await disconnect()
