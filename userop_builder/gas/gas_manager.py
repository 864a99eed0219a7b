import logging

from userop_builder.typing import Address, ChainDataClient
from userop_builder.user_operation.models import GasEstimate
from userop_builder.user_operation.user_operation import \
    ENTRYPOINT_V6_ADDRESS, get_factory_address, verify_and_get_address
from userop_builder.utils.asyncio_utils import gather_or_cancel

# the simulated call isn't wrapped by the entrypoint's dispatch logic
CALL_GAS_OVERHEAD = 55_000
# signature check cost of an already deployed account
VERIFICATION_GAS_BASELINE = 100_000
# flat bundler overhead compensation, never refunded
PRE_VERIFICATION_GAS = 0x21000
FACTORY_SIMULATION_GAS_CEILING = 10_000_000


async def estimate_user_operation_gas(
    sender: Address,
    call_data: bytes,
    init_code: bytes,
    chain_data: ChainDataClient,
) -> GasEstimate:
    verify_and_get_address("sender", sender)
    factory_address = get_factory_address(init_code)

    # simulated with the entrypoint as caller
    call_gas_estimate_op = chain_data.estimate_gas(
        ENTRYPOINT_V6_ADDRESS, sender, call_data
    )
    if factory_address is None:
        call_gas_estimate = await call_gas_estimate_op
        verification_gas_limit = VERIFICATION_GAS_BASELINE
    else:
        deployment_gas_estimate_op = chain_data.estimate_gas(
            ENTRYPOINT_V6_ADDRESS,
            factory_address,
            init_code[20:],
            FACTORY_SIMULATION_GAS_CEILING,
        )
        call_gas_estimate, deployment_gas_estimate = await gather_or_cancel(
            call_gas_estimate_op, deployment_gas_estimate_op
        )
        verification_gas_limit = (
            deployment_gas_estimate + VERIFICATION_GAS_BASELINE
        )

    call_gas_limit = call_gas_estimate + CALL_GAS_OVERHEAD

    logging.debug(
        f"Estimated gas for sender {sender}. "
        f"call gas limit: {hex(call_gas_limit)} "
        f"verification gas limit: {hex(verification_gas_limit)} "
        f"preverification gas: {hex(PRE_VERIFICATION_GAS)}"
    )
    return GasEstimate(
        call_gas_limit=call_gas_limit,
        pre_verification_gas=PRE_VERIFICATION_GAS,
        verification_gas_limit=verification_gas_limit,
    )
