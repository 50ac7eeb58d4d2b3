import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field

from gitsmith.application.retry import RetryPolicy
from gitsmith.infrastructure.relay_client import CONNECT_DELAY, PUBLISH_TIMEOUT, RECEIVE_TIMEOUT
from gitsmith.infrastructure.vault_file import DEFAULT_VAULT_PATH


class Settings(BaseModel):
    """Runtime settings read from the environment (and a .env file when present)."""
    model_config = ConfigDict(frozen=True)

    vault_path: Path = DEFAULT_VAULT_PATH
    password: Optional[str] = Field(None, repr=False)
    relays: List[str] = Field(default_factory=list)
    connect_delay: float = Field(CONNECT_DELAY, ge=0)
    publish_timeout: float = Field(PUBLISH_TIMEOUT, gt=0)
    receive_timeout: float = Field(RECEIVE_TIMEOUT, gt=0)
    log_level: str = "INFO"
    retry: RetryPolicy = Field(default_factory=RetryPolicy)


def _split_list(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def load_settings() -> Settings:
    # Load environment variables from .env file
    load_dotenv()

    values = {
        "vault_path": os.getenv("GITSMITH_VAULT_PATH"),
        "password": os.getenv("GITSMITH_PASSWORD"),
        "relays": _split_list(os.getenv("NOSTR_GIT_RELAYS")),
        "connect_delay": os.getenv("GITSMITH_CONNECT_DELAY"),
        "publish_timeout": os.getenv("GITSMITH_PUBLISH_TIMEOUT"),
        "receive_timeout": os.getenv("GITSMITH_RECEIVE_TIMEOUT"),
        "log_level": os.getenv("GITSMITH_LOG_LEVEL"),
    }
    retry = {
        "max_attempts": os.getenv("GITSMITH_RETRY_MAX_ATTEMPTS"),
        "base_delay": os.getenv("GITSMITH_RETRY_BASE_DELAY"),
        "multiplier": os.getenv("GITSMITH_RETRY_MULTIPLIER"),
        "max_delay": os.getenv("GITSMITH_RETRY_MAX_DELAY"),
    }
    values["retry"] = RetryPolicy(**{key: value for key, value in retry.items() if value is not None})
    return Settings(**{key: value for key, value in values.items() if value is not None})


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout)
        ]
    )
