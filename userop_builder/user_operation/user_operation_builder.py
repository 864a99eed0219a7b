import logging
from typing import Any, Coroutine

from userop_builder.gas.fee_manager import estimate_fees
from userop_builder.gas.gas_manager import estimate_user_operation_gas
from userop_builder.typing import Address, ChainDataClient, Signer
from userop_builder.utils.asyncio_utils import gather_or_cancel
from .models import FeeEstimate, GasEstimate
from .user_operation import UserOperation, get_user_operation_hash


async def build_user_operation(
    sender: Address,
    call_data: bytes,
    init_code: bytes,
    chain_data: ChainDataClient,
    nonce: int | None = None,
    nonce_key: int = 0,
    paymaster_and_data: bytes = b"",
) -> UserOperation:
    """
    Assemble an unsigned user operation with estimated gas and fee fields.

    Fee estimation, gas estimation and, when no nonce is given, the
    entrypoint nonce lookup are independent and run concurrently. Any
    failure cancels the pending lookups and aborts the whole build.
    """
    tasks_arr: list[Coroutine[Any, Any, Any]] = [
        estimate_fees(chain_data),
        estimate_user_operation_gas(
            sender, call_data, init_code, chain_data),
    ]
    if nonce is None:
        tasks_arr.append(chain_data.get_nonce(sender, nonce_key))

    tasks = await gather_or_cancel(*tasks_arr)
    fee_estimate: FeeEstimate = tasks[0]
    gas_estimate: GasEstimate = tasks[1]
    if nonce is None:
        nonce = tasks[2]
    logging.debug(
        f"Estimates for sender {sender}: "
        f"{gas_estimate.to_json()} {fee_estimate.to_json()}"
    )

    user_operation = UserOperation(
        sender_address=sender,
        nonce=nonce,
        init_code=init_code,
        call_data=call_data,
        call_gas_limit=0,
        verification_gas_limit=0,
        pre_verification_gas=0,
        max_fee_per_gas=0,
        max_priority_fee_per_gas=0,
        paymaster_and_data=paymaster_and_data,
    ).with_gas_estimate(gas_estimate).with_fee_estimate(fee_estimate)
    logging.info(f"Built user operation for sender {sender} nonce {nonce}")
    return user_operation


def sign_user_operation(
    user_operation: UserOperation, chain_id: int, signer: Signer
) -> UserOperation:
    user_operation_hash = get_user_operation_hash(user_operation, chain_id)
    signature = signer.sign_user_operation_hash(user_operation_hash)
    logging.info(
        f"Signed user operation 0x{user_operation_hash.hex()} "
        f"with {signer.address}"
    )
    return user_operation.with_signature(signature)
