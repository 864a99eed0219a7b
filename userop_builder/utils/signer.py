from eth_account import Account, messages
from eth_account.signers.local import LocalAccount

from userop_builder.typing import Address


class LocalAccountSigner:
    """
    Signs user operation hashes with a local key the way SimpleAccount
    verifies them, as an EIP-191 personal message over the raw hash.
    """
    address: Address
    account: LocalAccount

    def __init__(self, account: LocalAccount):
        self.account = account
        self.address = Address(account.address)

    def sign_user_operation_hash(self, user_operation_hash: bytes) -> bytes:
        message = messages.encode_defunct(primitive=user_operation_hash)
        signed_message = self.account.sign_message(message)
        return bytes(signed_message.signature)


def import_signer_account(
    keystore_file_password: str, keystore_file_path: str
) -> LocalAccountSigner:
    with open(keystore_file_path) as keyfile:
        encrypted_key = keyfile.read()
    private_key = Account.decrypt(encrypted_key, keystore_file_password)
    return LocalAccountSigner(Account.from_key(private_key))
