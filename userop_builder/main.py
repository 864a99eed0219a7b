import json
import logging
import sys

import uvloop

from .cli_manager import check_chain_id, parse_args
from .exceptions import ChainDataUnavailable, MalformedInput, SimulationFailed
from .user_operation.user_operation import \
    ENTRYPOINT_V6_ADDRESS, get_user_operation_hash_hex
from .user_operation.user_operation_builder import \
    build_user_operation, sign_user_operation
from .utils.eth_client_utils import EthClient
from .utils.signer import import_signer_account


async def main(cmd_args=sys.argv[1:]) -> dict:
    init_data = parse_args(cmd_args)
    logging.info("Starting *** userop-builder *** - EIP-4337 user operations")

    chain_data = EthClient(
        init_data.ethereum_node_urls, init_data.rpc_retry_attempts
    )
    await check_chain_id(chain_data, init_data.chain_id)

    user_operation = await build_user_operation(
        init_data.sender,
        init_data.call_data,
        init_data.init_code,
        chain_data,
        init_data.nonce,
        init_data.nonce_key,
        init_data.paymaster_and_data,
    )

    if init_data.signer_keystore_file_path is not None:
        signer = import_signer_account(
            init_data.signer_keystore_file_password,
            init_data.signer_keystore_file_path,
        )
        user_operation = sign_user_operation(
            user_operation, init_data.chain_id, signer
        )

    return {
        "userOperation": user_operation.get_user_operation_json(),
        "userOpHash": get_user_operation_hash_hex(
            user_operation, init_data.chain_id),
        "entryPoint": ENTRYPOINT_V6_ADDRESS,
        "chainId": hex(init_data.chain_id),
    }


def run() -> None:
    try:
        result = uvloop.run(main())
    except (ChainDataUnavailable, SimulationFailed, MalformedInput) as excp:
        logging.critical(
            f"{type(excp).__name__} ({excp.exception_code.value}): "
            f"{excp.message}"
        )
        sys.exit(1)
    print(json.dumps(result, indent=2))
