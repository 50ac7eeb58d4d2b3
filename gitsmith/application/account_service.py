import logging
from typing import List, Optional, Tuple

from gitsmith.domain.exceptions import DecryptionFailedException, NoActiveAccountException
from gitsmith.domain.keys import Keypair
from gitsmith.domain.vault import StoredAccount, Vault
from gitsmith.infrastructure.cipher import decrypt_secret, encrypt_secret
from gitsmith.infrastructure.vault_file import VaultFileRepository

logger = logging.getLogger(__name__)


def login(vault: Vault, secret: str, password: str) -> Tuple[Vault, str]:
    """
    Adds or refreshes an identity and makes it active.

    Returns:
        Tuple of (new vault, npub).

    Raises:
        InvalidKeyException: if the secret is neither nsec nor hex.
    """
    keypair = Keypair.parse(secret)
    ciphertext, nonce = encrypt_secret(keypair.secret_bytes, password)
    account = StoredAccount(npub=keypair.npub, encrypted_nsec=ciphertext, nonce=nonce)
    return vault.upsert(account), keypair.npub


def logout(vault: Vault) -> Tuple[Vault, str]:
    if vault.active_npub is None:
        raise NoActiveAccountException("No active account to logout.")
    return vault.deactivate(), vault.active_npub


def active_signing_key(vault: Vault, password: str) -> Keypair:
    if vault.active_npub is None:
        raise NoActiveAccountException()
    account = vault.active_account
    if account is None:
        raise DecryptionFailedException()
    keypair = Keypair(decrypt_secret(account.encrypted_nsec, account.nonce, password))
    if keypair.npub != account.npub:
        raise DecryptionFailedException()
    return keypair


class AccountService:
    """
    Credential vault operations backed by a vault file.
    Each mutating call loads the vault, applies one transition and saves the whole file.
    """

    def __init__(self, repository: VaultFileRepository):
        self.repository = repository

    def login(self, secret: str, password: str) -> str:
        vault, npub = login(self.repository.load(), secret, password)
        self.repository.save(vault)
        logger.info(f"Logged in as {npub}")
        return npub

    def logout(self) -> str:
        vault, npub = logout(self.repository.load())
        self.repository.save(vault)
        logger.info(f"Logged out from {npub}")
        return npub

    def active_signing_key(self, password: str) -> Keypair:
        return active_signing_key(self.repository.load(), password)

    def export(self, password: str) -> str:
        return self.active_signing_key(password).nsec

    def list(self) -> List[Tuple[str, bool]]:
        return self.repository.load().listing()

    def active_public_key(self) -> Optional[str]:
        return self.repository.load().active_npub
