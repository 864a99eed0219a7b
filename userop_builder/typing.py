from typing import NewType, Protocol

Address = NewType('Address', str)


class ChainDataClient(Protocol):
    async def get_base_fee(self) -> int:
        ...

    async def get_max_priority_fee_per_gas(self) -> int:
        ...

    async def estimate_gas(
        self,
        from_address: Address,
        to_address: Address,
        data: bytes,
        gas: int | None = None,
    ) -> int:
        ...

    async def get_nonce(self, sender: Address, key: int = 0) -> int:
        ...

    async def get_chain_id(self) -> int:
        ...


class Signer(Protocol):
    address: Address

    def sign_user_operation_hash(self, user_operation_hash: bytes) -> bytes:
        ...
