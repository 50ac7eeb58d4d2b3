import time
from typing import List, Optional, Sequence, Tuple

from gitsmith.domain.exceptions import MalformedMessageException, NoPatchesException
from gitsmith.domain.keys import Keypair
from gitsmith.domain.models import Message, MessageKind
from gitsmith.domain.tags import (
    REPLY_MARKER,
    Alt,
    CommitRef,
    EventRef,
    RepoCoordinate,
    Subject,
    Tag,
)


def repo_coordinate(pubkey: str, identifier: str) -> str:
    return f"{int(MessageKind.ANNOUNCEMENT)}:{pubkey}:{identifier}"


def parse_repo_coordinate(coordinate: str) -> Tuple[str, str, str]:
    """
    Splits "kind:pubkey:identifier".

    Raises:
        MalformedMessageException: if the coordinate does not have three parts.
    """
    parts = coordinate.split(":")
    if len(parts) != 3 or not all(parts):
        raise MalformedMessageException(
            f"Invalid repository coordinate {coordinate!r}. Expected kind:pubkey:identifier"
        )
    return parts[0], parts[1], parts[2]


def assemble(
    keypair: Keypair,
    coordinate: str,
    title: str,
    description: str,
    patches: Sequence[str],
    root_commit: str,
    reply_to: Optional[str] = None,
    created_at: Optional[int] = None,
) -> List[Message]:
    """
    Turns patches into a chain of signed patch messages followed by one summary message.

    Each patch after the first references the previous patch. The summary is a pull
    request (1618), or an update (1619) when reply_to is given, and points at the
    first patch.

    Returns:
        Patch messages in input order, then the summary.

    Raises:
        NoPatchesException: if patches is empty.
    """
    if not patches:
        raise NoPatchesException()

    timestamp = int(time.time()) if created_at is None else created_at
    total = len(patches)
    messages: List[Message] = []
    for index, patch in enumerate(patches):
        tags: List[Tag] = [Alt(value=f"git patch: {index + 1}/{total}")]
        if messages:
            tags.append(EventRef(event_id=messages[-1].id))
        messages.append(Message.create(keypair, MessageKind.PATCH, patch, tags, timestamp))

    summary_tags: List[Tag] = [
        RepoCoordinate(value=coordinate),
        Subject(value=title),
        CommitRef(value=root_commit),
        EventRef(event_id=messages[0].id, patch=True),
    ]
    if reply_to is not None:
        summary_tags.append(EventRef(event_id=reply_to, marker=REPLY_MARKER))
    kind = MessageKind.PULL_REQUEST_UPDATE if reply_to is not None else MessageKind.PULL_REQUEST

    messages.append(Message.create(keypair, kind, description, summary_tags, timestamp))
    return messages
