import re
import time
from enum import Enum, IntEnum
from typing import Any, Dict, Iterable, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from gitsmith.domain.exceptions import MalformedMessageException
from gitsmith.domain.keys import Keypair, compute_message_id
from gitsmith.domain.tags import Identifier, RepoCoordinate, Tag, all_of, decode_tags, encode_tags

IDENTIFIER_PATTERN = re.compile(r"^[a-z0-9_-]+$")


class MessageKind(IntEnum):
    ANNOUNCEMENT = 30617
    STATE = 30618
    PATCH = 1617
    PULL_REQUEST = 1618
    PULL_REQUEST_UPDATE = 1619


def is_valid_identifier(identifier: str) -> bool:
    return bool(IDENTIFIER_PATTERN.match(identifier))


class Message(BaseModel):
    """
    Immutable signed record exchanged with relays.
    The id is a hash of (pubkey, created_at, kind, tags, content).
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Hex sha256 of the canonical serialization")
    pubkey: str = Field(..., description="Hex x-only public key of the signer")
    created_at: int = Field(..., ge=0, description="Unix timestamp in seconds")
    kind: int = Field(..., ge=0)
    tags: Tuple[Tuple[str, ...], ...] = Field(default_factory=tuple)
    content: str = ""
    sig: str = Field(..., description="Hex Schnorr signature over the id")

    @classmethod
    def create(
        cls,
        keypair: Keypair,
        kind: int,
        content: str,
        tags: Iterable[Tag],
        created_at: Optional[int] = None,
    ) -> "Message":
        wire_tags = encode_tags(tags)
        timestamp = int(time.time()) if created_at is None else created_at
        pubkey = keypair.public_key
        message_id = compute_message_id(pubkey, timestamp, int(kind), wire_tags, content)
        return cls(
            id=message_id,
            pubkey=pubkey,
            created_at=timestamp,
            kind=int(kind),
            tags=wire_tags,
            content=content,
            sig=keypair.sign(message_id),
        )

    def typed_tags(self) -> List[Tag]:
        return decode_tags(self.tags)

    def to_wire(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "pubkey": self.pubkey,
            "created_at": self.created_at,
            "kind": self.kind,
            "tags": [list(tag) for tag in self.tags],
            "content": self.content,
            "sig": self.sig,
        }


class RepoAnnouncement(BaseModel):
    """Repository metadata published as an announcement message."""
    model_config = ConfigDict(frozen=True)

    identifier: str = Field(..., description="Slug unique per signer, [a-z0-9_-]")
    name: str
    description: str = ""
    clone_urls: List[str] = Field(default_factory=list)
    relays: List[str] = Field(default_factory=list)
    web: List[str] = Field(default_factory=list)
    root_commit: str = ""
    maintainers: List[str] = Field(default_factory=list, description="Maintainer npubs")
    grasp_servers: List[str] = Field(default_factory=list)


class RepoState(BaseModel):
    model_config = ConfigDict(frozen=True)

    identifier: str
    refs: Dict[str, str] = Field(default_factory=dict, description="Ref name (including HEAD) to commit hash")


class PullRequestStatus(str, Enum):
    OPEN = "open"
    UPDATED = "updated"


class PullRequestRecord(BaseModel):
    """
    Pull request view derived from relay messages.
    It is never transmitted; folding the same messages always rebuilds the same record.
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Id of the creation message")
    title: str
    description: str = ""
    author: str = Field(..., description="Hex public key of the author")
    created_at: int
    updated_at: Optional[int] = None
    patches_count: int = Field(0, ge=0)
    root_commit: Optional[str] = None
    status: PullRequestStatus = PullRequestStatus.OPEN


class PublishOutcome(BaseModel):
    """Per-relay result of publishing one message."""
    model_config = ConfigDict(frozen=True)

    message_id: str
    succeeded: List[str] = Field(default_factory=list)
    failed: List[Tuple[str, str]] = Field(default_factory=list, description="(relay, reason) pairs")

    @property
    def ok(self) -> bool:
        """False only when every relay failed."""
        return bool(self.succeeded) or not self.failed

    @property
    def partial(self) -> bool:
        return bool(self.succeeded) and bool(self.failed)


class AnnounceResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    message_id: str
    nostr_url: str
    outcome: PublishOutcome


class RelayFilter(BaseModel):
    """Subscription filter sent with a REQ."""
    model_config = ConfigDict(frozen=True)

    kinds: List[int] = Field(default_factory=list)
    ids: List[str] = Field(default_factory=list)
    authors: List[str] = Field(default_factory=list)
    coordinates: List[str] = Field(default_factory=list, description="Values for the #a tag")
    identifiers: List[str] = Field(default_factory=list, description="Values for the #d tag")
    limit: Optional[int] = None

    def to_wire(self) -> Dict[str, Any]:
        wire: Dict[str, Any] = {}
        if self.kinds:
            wire["kinds"] = list(self.kinds)
        if self.ids:
            wire["ids"] = list(self.ids)
        if self.authors:
            wire["authors"] = list(self.authors)
        if self.coordinates:
            wire["#a"] = list(self.coordinates)
        if self.identifiers:
            wire["#d"] = list(self.identifiers)
        if self.limit is not None:
            wire["limit"] = self.limit
        return wire

    def matches(self, message: Message) -> bool:
        if self.kinds and message.kind not in self.kinds:
            return False
        if self.ids and message.id not in self.ids:
            return False
        if self.authors and message.pubkey not in self.authors:
            return False
        if not (self.coordinates or self.identifiers):
            return True
        try:
            tags = message.typed_tags()
        except MalformedMessageException:
            return False
        if self.coordinates and not any(tag.value in self.coordinates for tag in all_of(tags, RepoCoordinate)):
            return False
        if self.identifiers and not any(tag.value in self.identifiers for tag in all_of(tags, Identifier)):
            return False
        return True
