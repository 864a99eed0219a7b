import logging
import os
import re
from argparse import ArgumentParser, ArgumentTypeError, Namespace
from dataclasses import dataclass
from importlib.metadata import version

from .exceptions import MalformedInput
from .typing import Address, ChainDataClient
from .user_operation.user_operation import HEX_PATTERN

__version__ = version("userop-builder")


@dataclass()
class InitData:
    ethereum_node_urls: list[str]
    chain_id: int
    sender: Address
    nonce: int | None
    nonce_key: int
    call_data: bytes
    init_code: bytes
    paymaster_and_data: bytes
    rpc_retry_attempts: int
    signer_keystore_file_path: str | None
    signer_keystore_file_password: str
    is_verbose: bool


def address(ep: str):
    address_pattern = "0x[0-9a-fA-F]{40}"
    if not isinstance(ep, str) or re.fullmatch(address_pattern, ep) is None:
        raise ArgumentTypeError(f"Wrong address format : {ep}")
    return ep


def unsigned_int(value):
    ivalue = int(value, 0) if isinstance(value, str) else int(value)
    if ivalue < 0:
        raise ArgumentTypeError(
                "%s is an invalid unsigned int value" % value)
    return ivalue


def positive_int(value):
    ivalue = unsigned_int(value)
    if ivalue == 0:
        raise ArgumentTypeError(
                "%s is an invalid positive int value" % value)
    return ivalue


def hex_bytes(value: str) -> bytes:
    if (
        not isinstance(value, str)
        or re.fullmatch(HEX_PATTERN, value) is None
        or len(value) % 2 != 0
    ):
        raise ArgumentTypeError(f"Wrong hex format : {value}")
    return bytes.fromhex(value[2:])


def _get_env_or_default(env_var, default, value_type):
    """
    Helper function to get the value from an environment variable or return
    the default value. Supports single values or lists (for nargs="+"
    arguments).
    """
    value = os.getenv(env_var, None)
    if value is not None:
        if value_type == list:
            return value.split(",")
        return value_type(value)
    return default


def initialize_argument_parser() -> ArgumentParser:
    parser = ArgumentParser(
        prog="userop-builder",
        description=(
            "Build, estimate and sign EIP-4337 user operations "
            "for EntryPoint v0.6"
        ),
    )

    parser.add_argument(
        "--ethereum_node_url",
        type=str,
        help=(
            "Eth Client JSON-RPC Url, more than one url can be passed "
            "for failover - defaults to http://0.0.0.0:8545"
        ),
        nargs="+",
        default=_get_env_or_default(
            "USEROP_ETHEREUM_NODE_URL", ["http://0.0.0.0:8545"], list),
    )

    parser.add_argument(
        "--chain_id",
        type=positive_int,
        help="chain id of the target network",
        nargs="?",
        default=_get_env_or_default("USEROP_CHAIN_ID", None, positive_int),
    )

    parser.add_argument(
        "--sender",
        type=address,
        help="smart account address",
        required=True,
    )

    parser.add_argument(
        "--nonce",
        type=unsigned_int,
        help="user operation nonce - defaults to the entrypoint nonce",
        nargs="?",
        default=None,
    )

    parser.add_argument(
        "--nonce_key",
        type=unsigned_int,
        help="entrypoint nonce key used to read the nonce - defaults to 0",
        nargs="?",
        const=0,
        default=0,
    )

    parser.add_argument(
        "--call_data",
        type=hex_bytes,
        help="call data for the smart account - defaults to 0x",
        nargs="?",
        const=b"",
        default=b"",
    )

    parser.add_argument(
        "--init_code",
        type=hex_bytes,
        help="factory address and data, only for undeployed accounts",
        nargs="?",
        const=b"",
        default=b"",
    )

    parser.add_argument(
        "--paymaster_and_data",
        type=hex_bytes,
        help="paymaster address and data - defaults to 0x",
        nargs="?",
        const=b"",
        default=b"",
    )

    parser.add_argument(
        "--rpc_retry_attempts",
        type=positive_int,
        help="number of attempts for each node rpc request - defaults to 3",
        nargs="?",
        const=3,
        default=_get_env_or_default(
            "USEROP_RPC_RETRY_ATTEMPTS", 3, positive_int),
    )

    parser.add_argument(
        "--signer_keystore_file_path",
        type=str,
        help="owner keystore file path - the operation is unsigned if unset",
        nargs="?",
        default=_get_env_or_default(
            "USEROP_SIGNER_KEYSTORE_FILE_PATH", None, str),
    )

    parser.add_argument(
        "--signer_keystore_file_password",
        type=str,
        help="owner keystore file password - defaults to no password",
        nargs="?",
        const="",
        default=_get_env_or_default(
            "USEROP_SIGNER_KEYSTORE_FILE_PASSWORD", "", str),
    )

    parser.add_argument(
        "--verbose",
        help="show debug log",
        nargs="?",
        const=True,
        default=_get_env_or_default(
            "USEROP_VERBOSE", False, lambda v: v.lower() == "true"),
    )

    parser.add_argument(
        "--version",
        action="version",
        version="%(prog)s " + "version " + __version__,
    )

    return parser


def parse_args(cmd_args: list[str]) -> InitData:
    argument_parser: ArgumentParser = initialize_argument_parser()
    args = argument_parser.parse_args(cmd_args)
    if args.chain_id is None:
        argument_parser.error(
            "You must specify --chain_id or set the USEROP_CHAIN_ID "
            "environment variable."
        )
    if 0 < len(args.init_code) < 20:
        argument_parser.error(
            "--init_code must start with a 20 bytes factory address"
        )
    return get_init_data(args)


def init_logging(args: Namespace):
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s.%(msecs)03d %(levelname)s %(message)s",
        datefmt="%b %d %H:%M:%S",
    )


def get_init_data(args: Namespace) -> InitData:
    init_logging(args)

    return InitData(
        ethereum_node_urls=args.ethereum_node_url,
        chain_id=args.chain_id,
        sender=Address(args.sender),
        nonce=args.nonce,
        nonce_key=args.nonce_key,
        call_data=args.call_data,
        init_code=args.init_code,
        paymaster_and_data=args.paymaster_and_data,
        rpc_retry_attempts=args.rpc_retry_attempts,
        signer_keystore_file_path=args.signer_keystore_file_path,
        signer_keystore_file_password=args.signer_keystore_file_password,
        is_verbose=bool(args.verbose),
    )


async def check_chain_id(chain_data: ChainDataClient, chain_id: int) -> None:
    node_chain_id = await chain_data.get_chain_id()
    if node_chain_id != chain_id:
        logging.critical(
            f"Invalid chain id {chain_id}, the Eth node is on {node_chain_id}"
        )
        raise MalformedInput(
            f"Eth node chain id {node_chain_id} doesn't match {chain_id}"
        )
