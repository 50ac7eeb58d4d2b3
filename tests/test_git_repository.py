import os
import subprocess
import tempfile
import unittest
from pathlib import Path

from gitsmith.domain.exceptions import EmptyRepositoryException, GitCommandException, InsufficientHistoryException
from gitsmith.domain.keys import Keypair
from gitsmith.domain.models import RepoAnnouncement
from gitsmith.infrastructure import git_repository

GIT_ENV = {
    **os.environ,
    "GIT_AUTHOR_NAME": "Test",
    "GIT_AUTHOR_EMAIL": "test@example.com",
    "GIT_COMMITTER_NAME": "Test",
    "GIT_COMMITTER_EMAIL": "test@example.com",
    "GIT_CONFIG_NOSYSTEM": "1",
}


def _git(repo: Path, *args: str) -> str:
    result = subprocess.run(
        ["git", "-c", "commit.gpgsign=false", *args],
        cwd=repo, env=GIT_ENV, capture_output=True, text=True, check=True,
    )
    return result.stdout.strip()


def _commit(repo: Path, filename: str, message: str, timestamp: int) -> str:
    (repo / filename).write_text(f"{message}\n")
    _git(repo, "add", filename)
    env_date = f"{timestamp} +0000"
    subprocess.run(
        ["git", "-c", "commit.gpgsign=false", "commit", "-q", "-m", message],
        cwd=repo, env={**GIT_ENV, "GIT_AUTHOR_DATE": env_date, "GIT_COMMITTER_DATE": env_date},
        capture_output=True, text=True, check=True,
    )
    return _git(repo, "rev-parse", "HEAD")


class _RepoTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.repo = Path(self._tmp.name) / "My Repo!!"
        self.repo.mkdir()
        _git(self.repo, "init", "-q")

    def tearDown(self) -> None:
        self._tmp.cleanup()


class TestDetect(_RepoTestCase):
    def test_identifier_sanitization_and_root_commit(self) -> None:
        first = _commit(self.repo, "a.txt", "first", 1700000000)
        _commit(self.repo, "b.txt", "second", 1700000100)

        announcement = git_repository.detect(self.repo)

        self.assertEqual(announcement.identifier, "my-repo--")
        self.assertEqual(announcement.name, "My Repo!!")
        self.assertEqual(announcement.root_commit, first)
        self.assertEqual(announcement.clone_urls, [])

    def test_origin_url_becomes_clone_url(self) -> None:
        _commit(self.repo, "a.txt", "first", 1700000000)
        _git(self.repo, "remote", "add", "origin", "https://example.com/repo.git")

        self.assertEqual(git_repository.detect(self.repo).clone_urls, ["https://example.com/repo.git"])

    def test_empty_repository_raises(self) -> None:
        with self.assertRaises(EmptyRepositoryException):
            git_repository.detect(self.repo)

    def test_not_a_repository_raises(self) -> None:
        with tempfile.TemporaryDirectory() as plain:
            with self.assertRaises(GitCommandException):
                git_repository.detect(plain)

    def test_sanitize_identifier(self) -> None:
        self.assertEqual(git_repository.sanitize_identifier("My Repo!!"), "my-repo--")
        self.assertEqual(git_repository.sanitize_identifier("ok_name-1"), "ok_name-1")
        self.assertEqual(git_repository.sanitize_identifier("café"), "caf-")


class TestCurrentState(_RepoTestCase):
    def test_refs_and_head(self) -> None:
        head = _commit(self.repo, "a.txt", "first", 1700000000)
        _git(self.repo, "tag", "v1")
        branch = _git(self.repo, "symbolic-ref", "--short", "HEAD")

        state = git_repository.current_state(self.repo, "repo")

        self.assertEqual(state.identifier, "repo")
        self.assertEqual(state.refs["HEAD"], head)
        self.assertEqual(state.refs[f"refs/heads/{branch}"], head)
        self.assertEqual(state.refs["refs/tags/v1"], head)

    def test_reflects_live_repository(self) -> None:
        _commit(self.repo, "a.txt", "first", 1700000000)
        before = git_repository.current_state(self.repo, "repo")
        second = _commit(self.repo, "b.txt", "second", 1700000100)

        after = git_repository.current_state(self.repo, "repo")

        self.assertNotEqual(before.refs["HEAD"], after.refs["HEAD"])
        self.assertEqual(after.refs["HEAD"], second)


class TestPatchesSince(_RepoTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.commits = [
            _commit(self.repo, f"{name}.txt", name, 1700000000 + index * 100)
            for index, name in enumerate(["first", "second", "third"])
        ]

    def test_head_offset_is_oldest_first(self) -> None:
        patches = git_repository.patches_since(self.repo, "HEAD~2")

        self.assertEqual(len(patches), 2)
        self.assertIn("Subject: [PATCH] second", patches[0])
        self.assertIn("Subject: [PATCH] third", patches[1])
        self.assertTrue(patches[0].startswith(f"From {self.commits[1]}"))

    def test_count(self) -> None:
        patches = git_repository.patches_since(self.repo, 3)

        self.assertEqual(len(patches), 3)
        self.assertIn("Subject: [PATCH] first", patches[0])

    def test_revision(self) -> None:
        patches = git_repository.patches_since(self.repo, self.commits[0])

        self.assertEqual(len(patches), 2)

    def test_head_itself_yields_nothing(self) -> None:
        self.assertEqual(git_repository.patches_since(self.repo, "HEAD"), [])

    def test_insufficient_history(self) -> None:
        for spec in ["HEAD~3", "HEAD~10", 4]:
            with self.subTest(spec=spec):
                with self.assertRaises(InsufficientHistoryException):
                    git_repository.patches_since(self.repo, spec)

    def test_unknown_revision(self) -> None:
        with self.assertRaises(GitCommandException):
            git_repository.patches_since(self.repo, "no-such-branch")


class TestNostrConfig(_RepoTestCase):
    def test_write_and_read_back(self) -> None:
        _commit(self.repo, "a.txt", "first", 1700000000)
        keypair = Keypair.parse("a" * 64)
        announcement = RepoAnnouncement(
            identifier="my-repo--", name="My Repo!!", relays=["wss://one.example", "ws://two.example"]
        )
        url = git_repository.nostr_url(keypair.npub, announcement.relays, announcement.identifier)

        git_repository.write_nostr_config(self.repo, announcement, url)
        git_repository.write_nostr_config(self.repo, announcement, url)

        self.assertEqual(url, f"nostr://{keypair.npub}/one.example/my-repo--")
        self.assertEqual(_git(self.repo, "config", "nostr.url"), url)
        self.assertEqual(_git(self.repo, "config", "nostr.identifier"), "my-repo--")
        self.assertEqual(_git(self.repo, "config", "nostr.name"), "My Repo!!")
        self.assertEqual(git_repository.detect(self.repo).relays, announcement.relays)
        self.assertEqual(git_repository.read_repo_owner(self.repo), keypair.npub)

    def test_nostr_url_without_relays(self) -> None:
        self.assertEqual(git_repository.nostr_url("npub1x", [], "repo"), "nostr://npub1x/repo")

    def test_owner_absent(self) -> None:
        self.assertIsNone(git_repository.read_repo_owner(self.repo))
