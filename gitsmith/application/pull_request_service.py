import logging
from typing import Dict, Iterable, List, Optional, Sequence

from gitsmith.application.codec import find_reply_target, parse_pull_request
from gitsmith.application.patch_assembler import assemble
from gitsmith.application.retry import RetryPolicy, poll
from gitsmith.domain.exceptions import MalformedMessageException
from gitsmith.domain.keys import Keypair
from gitsmith.domain.models import (
    Message,
    MessageKind,
    PublishOutcome,
    PullRequestRecord,
    PullRequestStatus,
    RelayFilter,
)
from gitsmith.infrastructure.relay_client import RelayClient

logger = logging.getLogger(__name__)


def fold_pull_requests(messages: Iterable[Message]) -> List[PullRequestRecord]:
    """
    Reduces an unordered, possibly duplicated batch of messages to pull request records.

    Creations are keyed by message id, so re-delivered copies collapse into one
    record. Updates are applied oldest first (ties by id), each only when newer
    than the record's creation, so the newest update wins whatever the arrival
    order. Updates whose creation is not in the batch are dropped. Malformed
    messages are skipped.

    Returns:
        Records sorted newest first, ties broken by id.
    """
    creations: Dict[str, Message] = {}
    updates: Dict[str, Message] = {}
    for message in messages:
        if message.kind == MessageKind.PULL_REQUEST:
            creations[message.id] = message
        elif message.kind == MessageKind.PULL_REQUEST_UPDATE:
            updates[message.id] = message

    records: Dict[str, PullRequestRecord] = {}
    for message_id in sorted(creations):
        try:
            records[message_id] = parse_pull_request(creations[message_id])
        except MalformedMessageException as e:
            logger.warning(f"Skipping malformed pull request {message_id}: {e}")

    for update in sorted(updates.values(), key=lambda m: (m.created_at, m.id)):
        try:
            target_id = find_reply_target(update)
        except MalformedMessageException as e:
            logger.warning(f"Skipping malformed pull request update {update.id}: {e}")
            continue

        existing = records.get(target_id) if target_id else None
        if existing is None:
            logger.debug(f"Dropping update {update.id}: target {target_id} not received")
            continue
        if update.created_at > existing.created_at:
            records[target_id] = existing.model_copy(
                update={
                    "description": update.content,
                    "updated_at": update.created_at,
                    "status": PullRequestStatus.UPDATED,
                }
            )

    return sorted(records.values(), key=lambda record: (-record.created_at, record.id))


def format_pull_request(record: PullRequestRecord) -> str:
    lines = [
        f"Title: {record.title}",
        f"Author: {record.author[:16]}...",
        f"Status: {record.status.value}",
        f"Patches: {record.patches_count}",
    ]
    if record.root_commit:
        lines.append(f"Root: {record.root_commit[:8]}...")
    output = "\n".join(lines) + "\n"
    if record.description:
        output += f"\n{record.description}\n"
    return output


class PullRequestService:
    """
    Service that sends pull requests to relays and rebuilds the pull request
    list of a repository from what the relays return.
    """

    def __init__(self, relay_client: RelayClient):
        self.relay_client = relay_client

    async def list_pull_requests(self, coordinate: str, relays: Sequence[str]) -> List[PullRequestRecord]:
        """
        Fetches pull requests and updates for a repository coordinate and folds them.

        An empty list means the relays hold no pull requests for the repository.

        Raises:
            TransportException: if none of the relays could be reached.
        """
        relay_filter = RelayFilter(
            kinds=[MessageKind.PULL_REQUEST, MessageKind.PULL_REQUEST_UPDATE],
            coordinates=[coordinate],
        )
        logger.info(f"Fetching pull requests for {coordinate} from {len(relays)} relay(s)...")
        messages = await self.relay_client.collect(relay_filter, relays)
        records = fold_pull_requests(messages)
        logger.info(f"Received {len(messages)} message(s), {len(records)} pull request(s).")
        return records

    async def send(
        self,
        keypair: Keypair,
        coordinate: str,
        title: str,
        description: str,
        patches: Sequence[str],
        root_commit: str,
        relays: Sequence[str],
        reply_to: Optional[str] = None,
    ) -> List[PublishOutcome]:
        """
        Assembles the patch chain and summary and publishes them in order.

        Returns:
            One outcome per message, summary last. Empty when there are no patches.
        """
        if not patches:
            logger.info("No patches to send.")
            return []

        messages = assemble(keypair, coordinate, title, description, patches, root_commit, reply_to)
        logger.info(f"Sending {len(messages)} message(s) to {len(relays)} relay(s)...")
        return await self.relay_client.publish_all(messages, relays)

    async def wait_for_pull_request(
        self,
        coordinate: str,
        relays: Sequence[str],
        pull_request_id: str,
        policy: RetryPolicy,
    ) -> Optional[PullRequestRecord]:
        """
        Polls until the pull request shows up, backing off between attempts.
        Relays are eventually consistent, so a fresh pull request may take a few tries.
        """
        records = await poll(
            lambda: self.list_pull_requests(coordinate, relays),
            lambda result: any(record.id == pull_request_id for record in result),
            policy,
        )
        return next((record for record in records if record.id == pull_request_id), None)
