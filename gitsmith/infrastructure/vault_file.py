import json
import logging
from pathlib import Path

from gitsmith.domain.vault import Vault

logger = logging.getLogger(__name__)

DEFAULT_VAULT_PATH = Path.home() / ".config" / "gitsmith" / "accounts.json"


class VaultFileRepository:
    """
    Repository class for the vault JSON file.
    The file is always read and rewritten as a whole.
    """

    def __init__(self, path: Path = DEFAULT_VAULT_PATH):
        self.path = Path(path)

    def load(self) -> Vault:
        """
        Reads the vault. A missing file is the empty vault.
        """
        if not self.path.exists():
            return Vault()
        data = json.loads(self.path.read_text(encoding="utf-8"))
        return Vault.model_validate(data)

    def save(self, vault: Vault) -> None:
        """
        Writes the whole vault, creating parent directories when absent.

        Args:
            vault (Vault): The vault value to persist.
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = json.dumps(vault.model_dump(mode="json"), indent=2)
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        tmp_path.write_text(payload, encoding="utf-8")
        tmp_path.replace(self.path)
        logger.debug(f"Saved vault with {len(vault.accounts)} account(s) to {self.path}")
