import logging

from userop_builder.typing import ChainDataClient
from userop_builder.user_operation.models import FeeEstimate
from userop_builder.utils.asyncio_utils import gather_or_cancel


async def estimate_fees(chain_data: ChainDataClient) -> FeeEstimate:
    """
    Derive EIP-1559 fee fields from a single snapshot of chain fee data.

    max_priority_fee_per_gas is the node's suggestion as is, and
    max_fee_per_gas is exactly the latest base fee plus that tip.
    """
    base_fee_per_gas, max_priority_fee_per_gas = await gather_or_cancel(
        chain_data.get_base_fee(),
        chain_data.get_max_priority_fee_per_gas(),
    )

    max_fee_per_gas = base_fee_per_gas + max_priority_fee_per_gas

    logging.debug(
        f"Estimated fees. base fee: {hex(base_fee_per_gas)} "
        f"max fee per gas: {hex(max_fee_per_gas)} "
        f"max priority fee per gas: {hex(max_priority_fee_per_gas)}"
    )
    return FeeEstimate(
        max_fee_per_gas=max_fee_per_gas,
        max_priority_fee_per_gas=max_priority_fee_per_gas,
    )
