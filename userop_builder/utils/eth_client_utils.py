import asyncio
import json
import logging
import re
import traceback
from typing import Any

from aiohttp import ClientSession
from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError

from userop_builder.exceptions import ChainDataUnavailable, SimulationFailed
from userop_builder.typing import Address
from userop_builder.user_operation.user_operation import \
    ENTRYPOINT_V6_ADDRESS, HEX_PATTERN

# execution errors are answers about the request itself, retrying won't help
EXECUTION_ERROR_CODES = (3, -32000, -32603)

ERROR_STRING_SELECTOR = "0x08c379a0"  # Error(string)
GET_NONCE_SELECTOR = "0x35567e1a"  # getNonce(address,uint192)


async def send_rpc_request_to_eth_client(
    nodes_urls: list[str],
    method: str,
    params=None,
    expected_key: str | None = None,
    retry_attempts: int = 3,
    retry_delay: float = 1,
) -> Any:
    json_request = {
        "jsonrpc": "2.0",
        "id": 1,
        "method": method,
        "params": params,
    }
    headers = {
        "content-type": "application/json",
        "connection": "keep-alive"
    }
    if len(nodes_urls) == 0:
        raise ChainDataUnavailable(
            f"No rpc node client url to send {method} to"
        )
    json_result = None
    nodes_len = len(nodes_urls)
    for i in range(retry_attempts):
        if i > 0:
            await asyncio.sleep(retry_delay)
        node_index = i % nodes_len
        if nodes_len > 1 and i > 0:
            logging.info(f'retrying with node no: {node_index + 1}.')
        chosen_node_url = nodes_urls[node_index]  # iterate through nodes
        try:
            async with ClientSession() as session:
                async with session.post(
                    chosen_node_url,
                    json=json_request,
                    headers=headers
                ) as response:
                    resp = await response.read()
                    json_result = json.loads(resp)
        except json.decoder.JSONDecodeError:
            logging.error(
                f"Attempt No. {i+1} to call node rpc failed."
                "Invalid json response from eth client."
            )
        except Exception as excp:
            logging.error(
                f"Attempt No. {i+1} to call node rpc failed."
                f"error: {str(excp)}"
            )
            logging.debug(f"traceback: {str(traceback.format_exc())}")
        else:
            if not isinstance(json_result, dict):
                logging.error(
                    f"Attempt No. {i+1} to call node rpc failed."
                    f"Unexpected response: {str(json_result)}"
                )
                continue
            if "error" in json_result:
                error = json_result["error"]
                if not is_execution_error(error):
                    logging.error(
                        f"Attempt No. {i+1} to call node rpc failed."
                        f"the request: {str(json_request)}"
                        f" with error: {str(error)}."
                    )
                    continue
            elif expected_key is not None and expected_key not in json_result:
                logging.error(
                    f"Attempt No. {i+1} to call node rpc failed."
                    f"the request: {str(json_request)}"
                    f"as the key {expected_key} is not in the result: "
                    f"{str(json_result)}"
                )
                continue
            return json_result
    raise ChainDataUnavailable(
        f"Failed rpc request {method} to rpc node client"
    )


def is_execution_error(error: Any) -> bool:
    return (
        isinstance(error, dict)
        and error.get("code") in EXECUTION_ERROR_CODES
    )


def decode_revert_reason(revert_data: bytes) -> str | None:
    if revert_data[:4] != bytes.fromhex(ERROR_STRING_SELECTOR[2:]):
        return None
    try:
        return decode(["string"], revert_data[4:])[0]
    except (DecodingError, UnicodeDecodeError):
        return None


def hex_to_bytes(value: Any) -> bytes | None:
    if (
        not isinstance(value, str)
        or re.fullmatch(HEX_PATTERN, value) is None
        or len(value) % 2 != 0
    ):
        return None
    return bytes.fromhex(value[2:])


class EthClient:
    """
    ChainDataClient backed by an Ethereum node's JSON-RPC api.
    """
    ethereum_node_urls: list[str]
    retry_attempts: int
    retry_delay: float

    def __init__(
        self,
        ethereum_node_urls: list[str],
        retry_attempts: int = 3,
        retry_delay: float = 1,
    ):
        self.ethereum_node_urls = ethereum_node_urls
        self.retry_attempts = retry_attempts
        self.retry_delay = retry_delay

    async def _request(self, method: str, params=None) -> Any:
        json_result = await send_rpc_request_to_eth_client(
            self.ethereum_node_urls,
            method,
            params,
            "result",
            self.retry_attempts,
            self.retry_delay,
        )
        if "error" in json_result:
            raise ChainDataUnavailable(
                f"{method} failed: "
                f"{json_result['error'].get('message', 'unknown error')}"
            )
        return json_result["result"]

    async def _request_quantity(self, method: str, params=None) -> int:
        result = await self._request(method, params)
        try:
            return int(result, 16)
        except (TypeError, ValueError):
            raise ChainDataUnavailable(
                f"{method} returned an invalid quantity: {result}"
            )

    async def get_base_fee(self) -> int:
        latest_block = await self._request(
            "eth_getBlockByNumber", ["latest", False]
        )
        if not isinstance(latest_block, dict):
            raise ChainDataUnavailable("latest block not available")
        if "baseFeePerGas" not in latest_block:
            return 0  # for networks before the EIP-1559 upgrade
        try:
            return int(latest_block["baseFeePerGas"], 16)
        except (TypeError, ValueError):
            raise ChainDataUnavailable(
                "latest block has an invalid base fee: "
                f"{latest_block['baseFeePerGas']}"
            )

    async def get_max_priority_fee_per_gas(self) -> int:
        return await self._request_quantity("eth_maxPriorityFeePerGas")

    async def get_chain_id(self) -> int:
        return await self._request_quantity("eth_chainId")

    async def get_nonce(self, sender: Address, key: int = 0) -> int:
        call_data = GET_NONCE_SELECTOR + encode(
            ["address", "uint192"], [sender, key]
        ).hex()
        result = await self._request(
            "eth_call",
            [{"to": ENTRYPOINT_V6_ADDRESS, "data": call_data}, "latest"],
        )
        result_bytes = hex_to_bytes(result)
        if result_bytes is None or len(result_bytes) != 32:
            raise ChainDataUnavailable(
                f"getNonce returned an invalid value: {result}"
            )
        return decode(["uint256"], result_bytes)[0]

    async def estimate_gas(
        self,
        from_address: Address,
        to_address: Address,
        data: bytes,
        gas: int | None = None,
    ) -> int:
        transaction: dict[str, str] = {
            "from": from_address,
            "to": to_address,
            "data": "0x" + data.hex(),
        }
        if gas is not None:
            transaction["gas"] = hex(gas)

        json_result = await send_rpc_request_to_eth_client(
            self.ethereum_node_urls,
            "eth_estimateGas",
            [transaction],
            "result",
            self.retry_attempts,
            self.retry_delay,
        )
        if "error" in json_result:
            error = json_result["error"]
            revert_data = hex_to_bytes(error.get("data"))
            message = str(error.get("message") or "simulation failed")
            if revert_data is not None:
                reason = decode_revert_reason(revert_data)
                if reason is not None and reason not in message:
                    message = f"{message}: {reason}"
            raise SimulationFailed(message, revert_data)

        try:
            gas_estimate = int(json_result["result"], 16)
        except (TypeError, ValueError):
            raise ChainDataUnavailable(
                "eth_estimateGas returned an invalid quantity: "
                f"{json_result['result']}"
            )
        if gas is not None and gas_estimate > gas:
            raise SimulationFailed(
                f"gas required {hex(gas_estimate)} exceeds the ceiling "
                f"{hex(gas)}"
            )
        return gas_estimate
