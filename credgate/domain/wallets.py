"""Per-agent Ethereum wallet issuance.

Each agent gets a fresh secp256k1 keypair. The address is keccak-256 derived
and EIP-55 checksummed by eth_account; the private key is sealed in a secret
envelope before `issue_wallet` returns and is never logged.
"""
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Iterator, Optional

from eth_account import Account
from eth_account.signers.local import LocalAccount
from eth_utils import is_checksum_address

from credgate.domain.interfaces import AgentWalletRecord, utcnow
from credgate.domain.secrets.kek_provider import EnvelopeCipher
from credgate.errors import DecryptionError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AgentWallet:
    address: str
    encrypted_private_key: str  # serialized SecretEnvelope

    def to_record(self, agent_id: str, created_at: Optional[datetime] = None) -> AgentWalletRecord:
        return AgentWalletRecord(
            agent_id=agent_id,
            address=self.address,
            encrypted_private_key=self.encrypted_private_key,
            created_at=created_at or utcnow(),
        )


class WalletIssuer:
    def __init__(self, cipher: EnvelopeCipher):
        self._cipher = cipher

    def issue_wallet(self) -> AgentWallet:
        account = Account.create()
        address = account.address
        if not is_checksum_address(address):
            raise RuntimeError("eth_account produced a non-checksummed address")
        sealed = self._cipher.encrypt_text("0x" + bytes(account.key).hex())
        del account
        logger.info(f"Issued agent wallet {address}")
        return AgentWallet(address=address, encrypted_private_key=sealed)

    @contextmanager
    def unlock_signer(self, wallet: AgentWallet) -> Iterator[LocalAccount]:
        """Yield a signer for one operation.

        The decrypted account must derive the stored address; a mismatch is
        treated like any other integrity failure.
        """
        private_key = self._cipher.decrypt_text(wallet.encrypted_private_key)
        try:
            account = Account.from_key(private_key)
        except ValueError:
            raise DecryptionError() from None
        if account.address != wallet.address:
            raise DecryptionError()
        try:
            yield account
        finally:
            del account, private_key
