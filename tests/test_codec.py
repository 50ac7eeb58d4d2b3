import unittest

from gitsmith.application.codec import (
    build_announcement,
    build_state,
    find_reply_target,
    parse_pull_request,
    parse_state,
)
from gitsmith.domain.exceptions import InvalidIdentifierException, MalformedMessageException
from gitsmith.domain.keys import Keypair
from gitsmith.domain.models import Message, MessageKind, PullRequestStatus, RepoAnnouncement, RepoState
from gitsmith.domain.tags import CommitRef, EventRef, RepoCoordinate, Subject, UnknownTag

KEYPAIR = Keypair.parse("a" * 64)
MAINTAINER = Keypair.parse("b" * 64)


class TestBuildAnnouncement(unittest.TestCase):
    def test_tag_order_and_values(self) -> None:
        announcement = RepoAnnouncement(
            identifier="my-repo",
            name="My Repo",
            description="A repo",
            clone_urls=["https://example.com/a.git", "git@example.com:a.git"],
            relays=["wss://one", "wss://two"],
            web=["https://example.com/a"],
            root_commit="c0ffee",
            maintainers=[MAINTAINER.npub, "not-an-npub"],
        )

        message = build_announcement(announcement, KEYPAIR, created_at=1700000000)

        self.assertEqual(message.kind, MessageKind.ANNOUNCEMENT)
        self.assertEqual(message.content, "")
        self.assertEqual(
            [list(tag) for tag in message.tags],
            [
                ["d", "my-repo"],
                ["name", "My Repo"],
                ["description", "A repo"],
                ["r", "c0ffee"],
                ["clone", "https://example.com/a.git", "git@example.com:a.git"],
                ["relays", "wss://one"],
                ["relays", "wss://two"],
                ["web", "https://example.com/a"],
                ["p", MAINTAINER.public_key],
            ],
        )

    def test_optional_tags_are_omitted(self) -> None:
        announcement = RepoAnnouncement(identifier="repo", name="repo", root_commit="c0ffee")

        message = build_announcement(announcement, KEYPAIR, created_at=1)

        self.assertEqual([tag[0] for tag in message.tags], ["d", "name", "r"])

    def test_invalid_identifier_raises(self) -> None:
        announcement = RepoAnnouncement(identifier="My Repo", name="My Repo", root_commit="c0ffee")

        with self.assertRaises(InvalidIdentifierException):
            build_announcement(announcement, KEYPAIR)


class TestBuildState(unittest.TestCase):
    def test_refs_sorted_with_duplicate_head(self) -> None:
        state = RepoState(
            identifier="repo",
            refs={"refs/heads/main": "111", "HEAD": "111", "refs/tags/v1": "222"},
        )

        message = build_state(state, KEYPAIR, created_at=1)

        self.assertEqual(message.kind, MessageKind.STATE)
        self.assertEqual(
            [list(tag) for tag in message.tags],
            [
                ["d", "repo"],
                ["HEAD", "111"],
                ["refs/heads/main", "111"],
                ["refs/tags/v1", "222"],
                ["HEAD", "111"],
            ],
        )

    def test_no_head_tag_without_head(self) -> None:
        message = build_state(RepoState(identifier="repo", refs={"refs/heads/main": "1"}), KEYPAIR, created_at=1)

        self.assertEqual([tag[0] for tag in message.tags], ["d", "refs/heads/main"])

    def test_parse_state_reads_refs(self) -> None:
        state = RepoState(identifier="repo", refs={"refs/heads/main": "1", "HEAD": "1"})

        parsed = parse_state(build_state(state, KEYPAIR, created_at=1))

        self.assertEqual(parsed, state)


class TestParsePullRequest(unittest.TestCase):
    def _message(self, kind, tags, content="body", created_at=10) -> Message:
        return Message.create(KEYPAIR, kind, content, tags, created_at)

    def test_fields_are_extracted(self) -> None:
        message = self._message(
            MessageKind.PULL_REQUEST,
            [
                RepoCoordinate(value="30617:abc:repo"),
                Subject(value="Add feature"),
                CommitRef(value="c0ffee"),
                EventRef(event_id="p1", patch=True),
                EventRef(event_id="p2", patch=True),
                EventRef(event_id="other"),
            ],
        )

        record = parse_pull_request(message)

        self.assertEqual(record.id, message.id)
        self.assertEqual(record.title, "Add feature")
        self.assertEqual(record.description, "body")
        self.assertEqual(record.author, KEYPAIR.public_key)
        self.assertEqual(record.created_at, 10)
        self.assertIsNone(record.updated_at)
        self.assertEqual(record.patches_count, 2)
        self.assertEqual(record.root_commit, "c0ffee")
        self.assertEqual(record.status, PullRequestStatus.OPEN)

    def test_defaults_when_tags_absent(self) -> None:
        record = parse_pull_request(self._message(MessageKind.PULL_REQUEST, []))

        self.assertEqual(record.title, "Untitled PR")
        self.assertIsNone(record.root_commit)
        self.assertEqual(record.patches_count, 0)

    def test_update_kind_is_updated_status(self) -> None:
        message = self._message(MessageKind.PULL_REQUEST_UPDATE, [EventRef(event_id="orig", marker="reply")])

        self.assertEqual(parse_pull_request(message).status, PullRequestStatus.UPDATED)
        self.assertEqual(find_reply_target(message), "orig")

    def test_reply_target_needs_reply_marker(self) -> None:
        message = self._message(MessageKind.PULL_REQUEST_UPDATE, [EventRef(event_id="orig")])

        self.assertIsNone(find_reply_target(message))

    def test_other_kinds_are_rejected(self) -> None:
        with self.assertRaises(MalformedMessageException):
            parse_pull_request(self._message(MessageKind.PATCH, [UnknownTag(raw=("alt", "x"))]))
