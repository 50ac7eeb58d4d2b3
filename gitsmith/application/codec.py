import logging
from typing import List, Optional

from gitsmith.domain.exceptions import InvalidIdentifierException, MalformedMessageException
from gitsmith.domain.keys import Keypair, decode_npub
from gitsmith.domain.models import (
    Message,
    MessageKind,
    PullRequestRecord,
    PullRequestStatus,
    RepoAnnouncement,
    RepoState,
    is_valid_identifier,
)
from gitsmith.domain.tags import (
    HEAD_REF,
    REPLY_MARKER,
    Clone,
    CommitRef,
    Description,
    EventRef,
    Identifier,
    MaintainerRef,
    Name,
    RefState,
    Relay,
    RootCommit,
    Subject,
    Tag,
    Web,
    all_of,
    first_of,
)

logger = logging.getLogger(__name__)

UNTITLED_PR = "Untitled PR"
PULL_REQUEST_KINDS = (MessageKind.PULL_REQUEST, MessageKind.PULL_REQUEST_UPDATE)


def build_announcement(announcement: RepoAnnouncement, keypair: Keypair, created_at: Optional[int] = None) -> Message:
    """
    Builds the repository announcement (kind 30617).

    Maintainers that are not valid npubs are skipped.

    Raises:
        InvalidIdentifierException: if the identifier has characters outside [a-z0-9_-].
    """
    if not is_valid_identifier(announcement.identifier):
        raise InvalidIdentifierException(announcement.identifier)

    tags: List[Tag] = [Identifier(value=announcement.identifier), Name(value=announcement.name)]
    if announcement.description:
        tags.append(Description(value=announcement.description))
    tags.append(RootCommit(value=announcement.root_commit))
    if announcement.clone_urls:
        tags.append(Clone(urls=tuple(announcement.clone_urls)))
    tags.extend(Relay(value=relay) for relay in announcement.relays)
    if announcement.web:
        tags.append(Web(urls=tuple(announcement.web)))
    for maintainer in announcement.maintainers:
        try:
            tags.append(MaintainerRef(value=decode_npub(maintainer)))
        except ValueError:
            logger.warning(f"Skipping invalid maintainer npub: {maintainer}")

    return Message.create(keypair, MessageKind.ANNOUNCEMENT, "", tags, created_at)


def build_state(state: RepoState, keypair: Keypair, created_at: Optional[int] = None) -> Message:
    """Builds the repository state message (kind 30618), refs in sorted order."""
    tags: List[Tag] = [Identifier(value=state.identifier)]
    tags.extend(RefState(ref=ref, commit=commit) for ref, commit in sorted(state.refs.items()))
    if HEAD_REF in state.refs:
        tags.append(RefState(ref=HEAD_REF, commit=state.refs[HEAD_REF]))
    return Message.create(keypair, MessageKind.STATE, "", tags, created_at)


def parse_state(message: Message) -> RepoState:
    if message.kind != MessageKind.STATE:
        raise MalformedMessageException(f"Message {message.id} is kind {message.kind}, not a state message.")
    tags = message.typed_tags()
    identifier = first_of(tags, Identifier)
    if identifier is None:
        raise MalformedMessageException(f"State message {message.id} has no identifier tag.")
    refs = {tag.ref: tag.commit for tag in all_of(tags, RefState)}
    return RepoState(identifier=identifier.value, refs=refs)


def parse_pull_request(message: Message) -> PullRequestRecord:
    """
    Reads a pull request (1618) or update (1619) message into a record.

    Raises:
        MalformedMessageException: on another kind or unparseable tags.
    """
    if message.kind not in PULL_REQUEST_KINDS:
        raise MalformedMessageException(f"Message {message.id} is kind {message.kind}, not a pull request.")
    tags = message.typed_tags()

    subject = first_of(tags, Subject)
    commit = first_of(tags, CommitRef)
    patches_count = sum(1 for tag in all_of(tags, EventRef) if tag.patch)
    status = PullRequestStatus.UPDATED if message.kind == MessageKind.PULL_REQUEST_UPDATE else PullRequestStatus.OPEN

    return PullRequestRecord(
        id=message.id,
        title=subject.value if subject else UNTITLED_PR,
        description=message.content,
        author=message.pubkey,
        created_at=message.created_at,
        patches_count=patches_count,
        root_commit=commit.value if commit else None,
        status=status,
    )


def find_reply_target(message: Message) -> Optional[str]:
    """Returns the id the message replies to, taken from the first reply-marked event reference."""
    for tag in all_of(message.typed_tags(), EventRef):
        if tag.marker == REPLY_MARKER:
            return tag.event_id
    return None
