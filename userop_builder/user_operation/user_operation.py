import re
from dataclasses import dataclass, replace
from typing import Any

from eth_abi import encode
from eth_utils import is_checksum_address, keccak

from userop_builder.exceptions import MalformedInput
from userop_builder.typing import Address
from .models import FeeEstimate, GasEstimate

# EntryPoint v0.6, the verifying contract every digest is bound to
ENTRYPOINT_V6_ADDRESS = Address("0x5FF137D4b0FDCD49DcA30c7CF57E578a026d2789")

UINT256_MAX = 2**256 - 1
HEX_PATTERN = "0x[0-9a-fA-F]*"


@dataclass(frozen=True)
class UserOperation:
    sender_address: Address
    nonce: int
    init_code: bytes
    call_data: bytes
    call_gas_limit: int
    verification_gas_limit: int
    pre_verification_gas: int
    max_fee_per_gas: int
    max_priority_fee_per_gas: int
    paymaster_and_data: bytes = b""
    signature: bytes = b""

    def __post_init__(self) -> None:
        verify_and_get_address("sender", self.sender_address)
        for field_name in (
            "nonce",
            "call_gas_limit",
            "verification_gas_limit",
            "pre_verification_gas",
            "max_fee_per_gas",
            "max_priority_fee_per_gas",
        ):
            verify_uint256(field_name, getattr(self, field_name))
        for field_name in (
            "init_code",
            "call_data",
            "paymaster_and_data",
            "signature",
        ):
            if not isinstance(getattr(self, field_name), bytes):
                raise MalformedInput(
                    f"Invalid bytes value in field {field_name}"
                )

    @classmethod
    def from_json(cls, json_request_dict: dict[str, Any]) -> "UserOperation":
        verify_fields_exist(json_request_dict)
        return cls(
            sender_address=verify_and_get_address(
                "sender", json_request_dict["sender"]),
            nonce=verify_and_get_uint(
                "nonce", json_request_dict["nonce"]),
            init_code=verify_and_get_bytes(
                "initCode", json_request_dict["initCode"]),
            call_data=verify_and_get_bytes(
                "callData", json_request_dict["callData"]),
            call_gas_limit=verify_and_get_uint(
                "callGasLimit", json_request_dict["callGasLimit"]),
            verification_gas_limit=verify_and_get_uint(
                "verificationGasLimit",
                json_request_dict["verificationGasLimit"]
            ),
            pre_verification_gas=verify_and_get_uint(
                "preVerificationGas", json_request_dict["preVerificationGas"]
            ),
            max_fee_per_gas=verify_and_get_uint(
                "maxFeePerGas", json_request_dict["maxFeePerGas"]),
            max_priority_fee_per_gas=verify_and_get_uint(
                "maxPriorityFeePerGas",
                json_request_dict["maxPriorityFeePerGas"]
            ),
            paymaster_and_data=verify_and_get_bytes(
                "paymasterAndData", json_request_dict["paymasterAndData"]
            ),
            signature=verify_and_get_bytes(
                "signature", json_request_dict.get("signature", "0x")),
        )

    def get_user_operation_json(self) -> dict[str, str]:
        return {
            "sender": self.sender_address,
            "nonce": hex(self.nonce),
            "initCode": "0x" + self.init_code.hex(),
            "callData": "0x" + self.call_data.hex(),
            "callGasLimit": hex(self.call_gas_limit),
            "verificationGasLimit": hex(self.verification_gas_limit),
            "preVerificationGas": hex(self.pre_verification_gas),
            "maxFeePerGas": hex(self.max_fee_per_gas),
            "maxPriorityFeePerGas": hex(self.max_priority_fee_per_gas),
            "paymasterAndData": "0x" + self.paymaster_and_data.hex(),
            "signature": "0x" + self.signature.hex(),
        }

    def with_gas_estimate(self, gas_estimate: GasEstimate) -> "UserOperation":
        return replace(
            self,
            call_gas_limit=gas_estimate.call_gas_limit,
            verification_gas_limit=gas_estimate.verification_gas_limit,
            pre_verification_gas=gas_estimate.pre_verification_gas,
            signature=b"",
        )

    def with_fee_estimate(self, fee_estimate: FeeEstimate) -> "UserOperation":
        return replace(
            self,
            max_fee_per_gas=fee_estimate.max_fee_per_gas,
            max_priority_fee_per_gas=fee_estimate.max_priority_fee_per_gas,
            signature=b"",
        )

    def with_signature(self, signature: bytes) -> "UserOperation":
        return replace(self, signature=signature)


def verify_fields_exist(json_request_dict: dict[str, Any]) -> None:
    field_list = [
        "sender",
        "nonce",
        "initCode",
        "callData",
        "callGasLimit",
        "verificationGasLimit",
        "preVerificationGas",
        "maxFeePerGas",
        "maxPriorityFeePerGas",
        "paymasterAndData",
    ]

    for field in field_list:
        if field not in json_request_dict:
            raise MalformedInput(f"UserOperation missing {field} field")


def verify_and_get_address(field_name: str, value: Any) -> Address:
    address_pattern = "0x[0-9a-fA-F]{40}"
    if (
        isinstance(value, str)
        and re.fullmatch(address_pattern, value) is not None
        and is_valid_address_checksum(value)
    ):
        return Address(value)
    else:
        raise MalformedInput(
            f"Invalid address value : {value} in field {field_name}"
        )


def is_valid_address_checksum(address: str) -> bool:
    # single case addresses carry no EIP-55 checksum
    hex_address = address[2:]
    if hex_address in (hex_address.lower(), hex_address.upper()):
        return True
    return is_checksum_address(address)


def verify_uint256(field_name: str, value: Any) -> int:
    # bool is an int subclass and never a valid quantity
    if (
        not isinstance(value, int)
        or isinstance(value, bool)
        or value < 0
        or value > UINT256_MAX
    ):
        raise MalformedInput(
            f"Invalid uint256 value : {value} in field {field_name}"
        )
    return value


def verify_and_get_uint(field_name: str, value: Any) -> int:
    if value == "0x":
        return 0
    elif (
        isinstance(value, str)
        and re.fullmatch(HEX_PATTERN, value) is not None
    ):
        return verify_uint256(field_name, int(value, 16))
    else:
        raise MalformedInput(
            f"Invalid uint hex value : {value} in field {field_name}"
        )


def verify_and_get_bytes(field_name: str, value: Any) -> bytes:
    if (
        isinstance(value, str)
        and re.fullmatch(HEX_PATTERN, value) is not None
        and len(value) % 2 == 0
    ):
        return bytes.fromhex(value[2:])
    else:
        raise MalformedInput(
            f"Invalid bytes hex value : {value} in field {field_name}"
        )


def get_factory_address(init_code: bytes) -> Address | None:
    if len(init_code) == 0:
        return None
    if len(init_code) < 20:
        raise MalformedInput(
            "initCode must start with a 20 bytes factory address"
        )
    return Address("0x" + init_code[:20].hex())


def verify_chain_id(chain_id: Any) -> int:
    if not isinstance(chain_id, int) or isinstance(chain_id, bool) \
            or chain_id <= 0:
        raise MalformedInput(f"Invalid chain id : {chain_id}")
    return chain_id


def pack_user_operation(user_operation: UserOperation) -> bytes:
    """
    ABI encode the signed fields of a user operation, with the dynamic
    fields replaced by their keccak hashes. The signature is not included.
    """
    return encode(
        [
            "address",  # sender
            "uint256",  # nonce
            "bytes32",  # keccak(initCode)
            "bytes32",  # keccak(callData)
            "uint256",  # callGasLimit
            "uint256",  # verificationGasLimit
            "uint256",  # preVerificationGas
            "uint256",  # maxFeePerGas
            "uint256",  # maxPriorityFeePerGas
            "bytes32",  # keccak(paymasterAndData)
        ],
        [
            user_operation.sender_address,
            user_operation.nonce,
            keccak(user_operation.init_code),
            keccak(user_operation.call_data),
            user_operation.call_gas_limit,
            user_operation.verification_gas_limit,
            user_operation.pre_verification_gas,
            user_operation.max_fee_per_gas,
            user_operation.max_priority_fee_per_gas,
            keccak(user_operation.paymaster_and_data),
        ],
    )


def get_user_operation_hash(
    user_operation: UserOperation, chain_id: int
) -> bytes:
    """
    Return the 32 byte digest the account owner signs.

    Mirrors EntryPoint.getUserOpHash: the packed operation hash is bound to
    the entrypoint address and the chain id so a signature can't be replayed
    on another chain or against another entrypoint.
    """
    verify_chain_id(chain_id)
    packed_user_operation_hash = keccak(pack_user_operation(user_operation))

    encoded_user_operation_hash = encode(
        ["(bytes32,address,uint256)"],
        [(packed_user_operation_hash, ENTRYPOINT_V6_ADDRESS, chain_id)],
    )
    return keccak(encoded_user_operation_hash)


def get_user_operation_hash_hex(
    user_operation: UserOperation, chain_id: int
) -> str:
    return "0x" + get_user_operation_hash(user_operation, chain_id).hex()

