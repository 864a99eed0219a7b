import asyncio
import json

import pytest
from eth_account import Account, messages

from conftest import FACTORY, SENDER, FakeChainData
from userop_builder.exceptions import ChainDataUnavailable, SimulationFailed
from userop_builder.gas.gas_manager import (
    CALL_GAS_OVERHEAD, PRE_VERIFICATION_GAS, VERIFICATION_GAS_BASELINE)
from userop_builder.user_operation.user_operation import \
    get_user_operation_hash
from userop_builder.user_operation.user_operation_builder import (
    build_user_operation, sign_user_operation)
from userop_builder.utils.signer import \
    LocalAccountSigner, import_signer_account

OWNER_PRIVATE_KEY = "0x" + "46" * 32


@pytest.mark.asyncio
async def test_build_user_operation(chain_data):
    chain_data.nonce = 9

    user_operation = await build_user_operation(
        SENDER, b"\x01\x02", b"", chain_data, nonce_key=4
    )

    assert user_operation.sender_address == SENDER
    assert user_operation.nonce == 9
    assert user_operation.call_data == b"\x01\x02"
    assert user_operation.call_gas_limit == 30_000 + CALL_GAS_OVERHEAD
    assert user_operation.verification_gas_limit == VERIFICATION_GAS_BASELINE
    assert user_operation.pre_verification_gas == PRE_VERIFICATION_GAS
    assert user_operation.max_priority_fee_per_gas == 0x1000000000
    assert user_operation.max_fee_per_gas == 0x1000000016
    assert user_operation.paymaster_and_data == b""
    assert user_operation.signature == b""
    assert chain_data.nonce_calls == [(SENDER, 4)]


@pytest.mark.asyncio
async def test_build_user_operation_with_nonce_and_init_code(chain_data):
    init_code = bytes.fromhex(FACTORY[2:]) + b"\x5f\xbf\xb9\xcf"

    user_operation = await build_user_operation(
        SENDER,
        b"",
        init_code,
        chain_data,
        nonce=0,
        paymaster_and_data=bytes.fromhex("22" * 20),
    )

    assert user_operation.nonce == 0
    assert user_operation.init_code == init_code
    assert user_operation.verification_gas_limit == \
        250_000 + VERIFICATION_GAS_BASELINE
    assert user_operation.paymaster_and_data == bytes.fromhex("22" * 20)
    assert chain_data.nonce_calls == []


@pytest.mark.asyncio
async def test_build_user_operation_simulation_failed():
    chain_data = FakeChainData(reverts={SENDER: b""})
    with pytest.raises(SimulationFailed):
        await build_user_operation(SENDER, b"", b"", chain_data, nonce=0)



class SlowNonceChainData(FakeChainData):
    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.nonce_lookup_cancelled = False

    async def get_nonce(self, sender, key=0):
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            self.nonce_lookup_cancelled = True
            raise
        return await super().get_nonce(sender, key)


@pytest.mark.asyncio
async def test_build_user_operation_failure_cancels_nonce_lookup():
    chain_data = SlowNonceChainData(reverts={SENDER: b""})
    with pytest.raises(SimulationFailed):
        await asyncio.wait_for(
            build_user_operation(SENDER, b"", b"", chain_data), timeout=5
        )
    assert chain_data.nonce_lookup_cancelled

@pytest.mark.asyncio
async def test_build_user_operation_chain_data_unavailable():
    chain_data = FakeChainData(unavailable=True)
    with pytest.raises(ChainDataUnavailable):
        await build_user_operation(SENDER, b"", b"", chain_data)


def test_sign_user_operation(user_operation):
    signer = LocalAccountSigner(Account.from_key(OWNER_PRIVATE_KEY))

    signed_user_operation = sign_user_operation(user_operation, 1, signer)

    assert len(signed_user_operation.signature) == 65
    assert user_operation.signature == b""
    user_operation_hash = get_user_operation_hash(user_operation, 1)
    assert get_user_operation_hash(signed_user_operation, 1) == \
        user_operation_hash
    recovered = Account.recover_message(
        messages.encode_defunct(primitive=user_operation_hash),
        signature=signed_user_operation.signature,
    )
    assert recovered == signer.address


def test_signature_is_bound_to_the_chain(user_operation):
    signer = LocalAccountSigner(Account.from_key(OWNER_PRIVATE_KEY))
    assert sign_user_operation(user_operation, 1, signer).signature != \
        sign_user_operation(user_operation, 5, signer).signature


def test_import_signer_account(tmp_path):
    keystore = Account.encrypt(
        OWNER_PRIVATE_KEY, "password", kdf="pbkdf2", iterations=2
    )
    keystore_file_path = tmp_path / "keystore.json"
    keystore_file_path.write_text(json.dumps(keystore))

    signer = import_signer_account("password", str(keystore_file_path))

    assert signer.address == \
        Account.from_key(OWNER_PRIVATE_KEY).address
