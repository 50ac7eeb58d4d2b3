from typing import Any, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator


class StoredAccount(BaseModel):
    """
    One identity in the vault.
    Only the encrypted secret is kept; byte fields serialize as lists of ints.
    """
    model_config = ConfigDict(frozen=True)

    npub: str = Field(..., description="Bech32 public key")
    encrypted_nsec: bytes = Field(..., description="ChaCha20-Poly1305 ciphertext of the raw secret key")
    nonce: bytes = Field(..., description="12-byte nonce used for encrypted_nsec")

    @field_validator("encrypted_nsec", "nonce", mode="before")
    @classmethod
    def _bytes_from_list(cls, value: Any) -> Any:
        if isinstance(value, list):
            return bytes(value)
        return value

    @field_serializer("encrypted_nsec", "nonce")
    def _bytes_to_list(self, value: bytes) -> List[int]:
        return list(value)


class Vault(BaseModel):
    """
    Ordered accounts plus the active pointer.
    Vault values are immutable: every transition returns a new Vault.
    """
    model_config = ConfigDict(frozen=True)

    accounts: List[StoredAccount] = Field(default_factory=list)
    active_npub: Optional[str] = None

    def find(self, npub: str) -> Optional[StoredAccount]:
        return next((account for account in self.accounts if account.npub == npub), None)

    @property
    def active_account(self) -> Optional[StoredAccount]:
        if self.active_npub is None:
            return None
        return self.find(self.active_npub)

    def upsert(self, account: StoredAccount) -> "Vault":
        """Replaces the account with the same npub in place, or appends it, and makes it active."""
        accounts = list(self.accounts)
        for index, existing in enumerate(accounts):
            if existing.npub == account.npub:
                accounts[index] = account
                break
        else:
            accounts.append(account)
        return Vault(accounts=accounts, active_npub=account.npub)

    def deactivate(self) -> "Vault":
        return Vault(accounts=list(self.accounts), active_npub=None)

    def listing(self) -> List[Tuple[str, bool]]:
        return [(account.npub, account.npub == self.active_npub) for account in self.accounts]
