import unittest
from pathlib import Path
from unittest.mock import patch

from gitsmith.application.codec import build_state, parse_state
from gitsmith.application.repository_service import RepositoryService
from gitsmith.domain.exceptions import GitCommandException, InvalidIdentifierException
from gitsmith.domain.keys import Keypair
from gitsmith.domain.models import Message, MessageKind, PublishOutcome, RepoAnnouncement, RepoState
from gitsmith.domain.tags import Identifier

KEYPAIR = Keypair.parse("a" * 64)
RELAYS = ["wss://one.example", "wss://two.example"]


def _announcement(**overrides) -> RepoAnnouncement:
    values = {"identifier": "repo", "name": "Repo", "relays": RELAYS, "root_commit": "c" * 40}
    values.update(overrides)
    return RepoAnnouncement(**values)


class _FakeRelayClient:
    def __init__(self, messages=None) -> None:
        self.messages = list(messages or [])
        self.published = []
        self.collect_calls = []

    async def publish_all(self, messages, endpoints, session=None):
        self.published.extend(messages)
        return [
            PublishOutcome(message_id=m.id, succeeded=list(endpoints[:1]), failed=[(e, "down") for e in endpoints[1:]])
            for m in messages
        ]

    async def publish(self, message, endpoints, session=None):
        return (await self.publish_all([message], endpoints, session))[0]

    async def collect(self, relay_filter, endpoints, timeout=None, session=None):
        self.collect_calls.append(relay_filter)
        return self.messages


class TestAnnounce(unittest.IsolatedAsyncioTestCase):
    async def test_announce_without_repository_publishes_announcement_only(self) -> None:
        relay_client = _FakeRelayClient()

        result = await RepositoryService(relay_client).announce(_announcement(), KEYPAIR)

        self.assertEqual([m.kind for m in relay_client.published], [MessageKind.ANNOUNCEMENT])
        self.assertEqual(result.message_id, relay_client.published[0].id)
        self.assertEqual(result.nostr_url, f"nostr://{KEYPAIR.npub}/one.example/repo")
        self.assertEqual(result.outcome.succeeded, ["wss://one.example"])
        self.assertEqual(result.outcome.failed, [("wss://two.example", "down")])

    async def test_announce_with_repository_publishes_state_and_writes_config(self) -> None:
        relay_client = _FakeRelayClient()
        state = RepoState(identifier="repo", refs={"HEAD": "c" * 40, "refs/heads/main": "c" * 40})

        with patch("gitsmith.application.repository_service.git_repository.current_state", return_value=state), \
                patch("gitsmith.application.repository_service.git_repository.write_nostr_config") as mock_write:
            result = await RepositoryService(relay_client).announce(_announcement(), KEYPAIR, Path("/repo"))

        self.assertEqual(
            [m.kind for m in relay_client.published], [MessageKind.ANNOUNCEMENT, MessageKind.STATE]
        )
        self.assertEqual(parse_state(relay_client.published[1]).refs, state.refs)
        mock_write.assert_called_once_with(Path("/repo"), _announcement(), result.nostr_url)

    async def test_git_config_failure_is_not_fatal(self) -> None:
        relay_client = _FakeRelayClient()
        state = RepoState(identifier="repo", refs={})

        with patch("gitsmith.application.repository_service.git_repository.current_state", return_value=state), \
                patch(
                    "gitsmith.application.repository_service.git_repository.write_nostr_config",
                    side_effect=GitCommandException("config", "locked"),
                ):
            with self.assertLogs("gitsmith.application.repository_service", level="WARNING"):
                result = await RepositoryService(relay_client).announce(_announcement(), KEYPAIR, Path("/repo"))

        self.assertTrue(result.outcome.ok)

    async def test_announce_requires_relays_and_root_commit(self) -> None:
        service = RepositoryService(_FakeRelayClient())

        with self.assertRaises(ValueError):
            await service.announce(_announcement(relays=[]), KEYPAIR)
        with self.assertRaises(ValueError):
            await service.announce(_announcement(root_commit=""), KEYPAIR)

    async def test_invalid_identifier_is_rejected(self) -> None:
        relay_client = _FakeRelayClient()

        with self.assertRaises(InvalidIdentifierException):
            await RepositoryService(relay_client).announce(_announcement(identifier="Bad Name"), KEYPAIR)
        self.assertEqual(relay_client.published, [])


class TestRemoteState(unittest.IsolatedAsyncioTestCase):
    async def test_newest_valid_state_wins(self) -> None:
        older = build_state(RepoState(identifier="repo", refs={"HEAD": "a" * 40}), KEYPAIR, created_at=1000)
        newer = build_state(RepoState(identifier="repo", refs={"HEAD": "b" * 40}), KEYPAIR, created_at=2000)
        broken = Message.create(KEYPAIR, MessageKind.ANNOUNCEMENT, "", [Identifier(value="repo")], 3000)
        relay_client = _FakeRelayClient([older, newer, broken])

        state = await RepositoryService(relay_client).fetch_remote_state("repo", RELAYS)

        self.assertEqual(state.refs, {"HEAD": "b" * 40})
        self.assertEqual(relay_client.collect_calls[0].to_wire(), {"kinds": [30618], "#d": ["repo"]})

    async def test_no_state_published(self) -> None:
        self.assertIsNone(await RepositoryService(_FakeRelayClient()).fetch_remote_state("repo", RELAYS))

    async def test_publish_state(self) -> None:
        relay_client = _FakeRelayClient()
        state = RepoState(identifier="repo", refs={"HEAD": "a" * 40})

        outcome = await RepositoryService(relay_client).publish_state(state, KEYPAIR, RELAYS)

        self.assertEqual(outcome.message_id, relay_client.published[0].id)
        self.assertEqual(relay_client.published[0].kind, MessageKind.STATE)

    async def test_publish_state_requires_relays(self) -> None:
        relay_client = _FakeRelayClient()
        state = RepoState(identifier="repo", refs={"HEAD": "a" * 40})

        with self.assertRaises(ValueError):
            await RepositoryService(relay_client).publish_state(state, KEYPAIR, [])
        self.assertEqual(relay_client.published, [])
