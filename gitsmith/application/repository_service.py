import logging
from pathlib import Path
from typing import Optional, Sequence

from gitsmith.application.codec import build_announcement, build_state, parse_state
from gitsmith.domain.exceptions import GitsmithException, MalformedMessageException
from gitsmith.domain.keys import Keypair
from gitsmith.domain.models import AnnounceResult, MessageKind, RelayFilter, RepoAnnouncement, RepoState
from gitsmith.infrastructure import git_repository
from gitsmith.infrastructure.relay_client import RelayClient

logger = logging.getLogger(__name__)


class RepositoryService:
    """
    Service responsible for announcing repositories and their ref state on relays,
    and for reading the published state back.
    """

    def __init__(self, relay_client: RelayClient):
        self.relay_client = relay_client

    async def announce(
        self,
        announcement: RepoAnnouncement,
        keypair: Keypair,
        repo_path: Optional[Path] = None,
        update_git_config: bool = True,
    ) -> AnnounceResult:
        """
        Publishes the announcement and, when a repository path is given, its current state.

        The reported outcome is the announcement's per-relay result. Git config
        is only written for a repository path and a failure there is logged,
        not raised.

        Raises:
            ValueError: if no relay is configured or the root commit is unknown.
            InvalidIdentifierException: if the identifier is not a valid slug.
        """
        if not announcement.relays:
            raise ValueError("At least one relay is required.")
        if not announcement.root_commit:
            raise ValueError("Root commit could not be detected. Please specify it explicitly.")

        message = build_announcement(announcement, keypair)
        messages = [message]
        if repo_path is not None:
            state = git_repository.current_state(repo_path, announcement.identifier)
            messages.append(build_state(state, keypair))

        outcomes = await self.relay_client.publish_all(messages, announcement.relays)
        url = git_repository.nostr_url(keypair.npub, announcement.relays, announcement.identifier)

        if repo_path is not None and update_git_config:
            try:
                git_repository.write_nostr_config(repo_path, announcement, url)
            except GitsmithException as e:
                logger.warning(f"Failed to update git config: {e}")

        return AnnounceResult(message_id=message.id, nostr_url=url, outcome=outcomes[0])

    async def publish_state(self, state: RepoState, keypair: Keypair, relays: Sequence[str]):
        if not relays:
            raise ValueError("At least one relay is required.")
        return await self.relay_client.publish(build_state(state, keypair), relays)

    async def fetch_remote_state(self, identifier: str, relays: Sequence[str]) -> Optional[RepoState]:
        """Returns the newest published state for the identifier, or None if no relay has one."""
        relay_filter = RelayFilter(kinds=[MessageKind.STATE], identifiers=[identifier])
        messages = await self.relay_client.collect(relay_filter, relays)

        for message in sorted(messages, key=lambda m: (m.created_at, m.id), reverse=True):
            try:
                return parse_state(message)
            except MalformedMessageException as e:
                logger.warning(f"Skipping malformed state message {message.id}: {e}")
        return None
