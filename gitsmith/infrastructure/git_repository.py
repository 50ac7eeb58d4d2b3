"""
Git glue for gitsmith.

Every read runs git as a subprocess against the live repository, so each call
reflects the current on-disk state; nothing is cached.
"""

import logging
import re
import subprocess
from pathlib import Path
from typing import List, Optional, Sequence, Union

from gitsmith.domain.exceptions import (
    EmptyRepositoryException,
    GitCommandException,
    InsufficientHistoryException,
)
from gitsmith.domain.keys import decode_npub
from gitsmith.domain.models import RepoAnnouncement, RepoState
from gitsmith.domain.tags import HEAD_REF

logger = logging.getLogger(__name__)

GIT_TIMEOUT = 30
NOSTR_URL_SCHEME = "nostr://"
HEAD_OFFSET_PATTERN = re.compile(r"^HEAD~(\d+)$")

PathLike = Union[str, Path]


def _run_git(repo_path: PathLike, args: Sequence[str], check: bool = True) -> subprocess.CompletedProcess:
    """
    Run a git command in repo_path.

    Raises:
        GitCommandException: if git cannot be started, times out, or exits non-zero while check is set.
    """
    try:
        result = subprocess.run(
            ["git", *args],
            cwd=str(repo_path),
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
            timeout=GIT_TIMEOUT,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        raise GitCommandException(" ".join(args), str(e)) from e

    if check and result.returncode != 0:
        raise GitCommandException(" ".join(args), result.stderr)
    return result


def _lines(output: str) -> List[str]:
    return [line for line in output.splitlines() if line.strip()]


def _resolve(repo_path: PathLike, revision: str) -> Optional[str]:
    result = _run_git(repo_path, ["rev-parse", "--verify", "--quiet", f"{revision}^{{commit}}"], check=False)
    if result.returncode != 0:
        return None
    return result.stdout.strip()


def _config_values(repo_path: PathLike, key: str) -> List[str]:
    # Exit code 1 means the key is not set
    result = _run_git(repo_path, ["config", "--get-all", key], check=False)
    return _lines(result.stdout) if result.returncode == 0 else []


def sanitize_identifier(name: str) -> str:
    """Lowercases and replaces every character outside [a-z0-9_-] with '-'."""
    return "".join(
        char.lower() if char.isascii() and (char.isalnum() or char in "-_") else "-"
        for char in name
    )


def root_commit(repo_path: PathLike) -> str:
    """
    Returns the chronologically first commit reachable from HEAD.

    Raises:
        EmptyRepositoryException: if HEAD has no commits.
    """
    if _resolve(repo_path, HEAD_REF) is None:
        raise EmptyRepositoryException(str(repo_path))
    # Roots come newest first with --date-order
    roots = _lines(_run_git(repo_path, ["rev-list", "--max-parents=0", "--date-order", HEAD_REF]).stdout)
    if not roots:
        raise EmptyRepositoryException(str(repo_path))
    return roots[-1]


def detect(repo_path: PathLike) -> RepoAnnouncement:
    """
    Builds a repository announcement from a local repository.

    The identifier is derived from the directory name, clone URLs from the
    "origin" remote, and relays from any nostr.relay entries in git config.
    """
    path = Path(repo_path).resolve()
    _run_git(path, ["rev-parse", "--git-dir"])

    name = path.name or "unnamed"
    origin = _run_git(path, ["config", "--get", "remote.origin.url"], check=False)
    clone_urls = _lines(origin.stdout) if origin.returncode == 0 else []

    announcement = RepoAnnouncement(
        identifier=sanitize_identifier(name),
        name=name,
        clone_urls=clone_urls,
        relays=_config_values(path, "nostr.relay"),
        root_commit=root_commit(path),
    )
    logger.debug(f"Detected repository '{announcement.identifier}' at {path}")
    return announcement


def current_state(repo_path: PathLike, identifier: str) -> RepoState:
    """Maps every non-symbolic ref, plus HEAD when it resolves, to its commit."""
    output = _run_git(repo_path, ["for-each-ref", "--format=%(refname)\t%(objectname)\t%(symref)"]).stdout
    refs = {}
    for line in _lines(output):
        ref_name, object_name, symref = (line.split("\t") + ["", ""])[:3]
        if symref:
            continue
        refs[ref_name] = object_name

    head = _resolve(repo_path, HEAD_REF)
    if head is not None:
        refs[HEAD_REF] = head

    return RepoState(identifier=identifier, refs=refs)


def _commit_count(repo_path: PathLike) -> int:
    if _resolve(repo_path, HEAD_REF) is None:
        return 0
    return int(_run_git(repo_path, ["rev-list", "--count", HEAD_REF]).stdout.strip() or 0)


def patches_since(repo_path: PathLike, ref_or_count: Union[str, int]) -> List[str]:
    """
    Produces one format-patch text per commit, oldest first.

    ref_or_count may be a number of commits, "HEAD~N", or any revision; the
    range is then <revision>..HEAD.

    Raises:
        InsufficientHistoryException: if the range reaches past the first commit.
        GitCommandException: if the revision cannot be resolved.
    """
    spec = str(ref_or_count).strip()
    available = _commit_count(repo_path)

    if spec.isdigit():
        count = int(spec)
        if count > available:
            raise InsufficientHistoryException(spec, available)
        commits = _lines(_run_git(repo_path, ["rev-list", f"--max-count={count}", HEAD_REF]).stdout) if count else []
        commits.reverse()
    else:
        match = HEAD_OFFSET_PATTERN.match(spec)
        base = _resolve(repo_path, spec)
        if base is None:
            if match or available == 0:
                raise InsufficientHistoryException(spec, available)
            raise GitCommandException(f"rev-parse {spec}", f"unknown revision {spec!r}")
        commits = _lines(_run_git(repo_path, ["rev-list", "--reverse", f"{base}..{HEAD_REF}"]).stdout)

    patches = [_run_git(repo_path, ["format-patch", "-1", "--stdout", commit]).stdout for commit in commits]
    logger.info(f"Generated {len(patches)} patch(es) from {spec}")
    return patches


def nostr_url(npub: str, relays: Sequence[str], identifier: str) -> str:
    """Builds "nostr://<npub>[/<relay-host>]/<identifier>" using the first relay."""
    relay_part = ""
    if relays:
        host = relays[0].replace("wss://", "").replace("ws://", "")
        relay_part = f"/{host}"
    return f"{NOSTR_URL_SCHEME}{npub}{relay_part}/{identifier}"


def write_nostr_config(repo_path: PathLike, announcement: RepoAnnouncement, url: str) -> None:
    """Stores the [nostr] section (identifier, name, relays) and nostr.url in the repository config."""
    _run_git(repo_path, ["config", "nostr.identifier", announcement.identifier])
    _run_git(repo_path, ["config", "nostr.name", announcement.name])
    # Exit code 5 means there was nothing to unset
    _run_git(repo_path, ["config", "--unset-all", "nostr.relay"], check=False)
    for relay in announcement.relays:
        _run_git(repo_path, ["config", "--add", "nostr.relay", relay])
    _run_git(repo_path, ["config", "nostr.url", url])
    logger.info(f"Saved nostr configuration for '{announcement.identifier}' to git config")


def read_repo_owner(repo_path: PathLike) -> Optional[str]:
    """Returns the npub recorded in nostr.url, or None when absent or unparseable."""
    values = _config_values(repo_path, "nostr.url")
    if not values or not values[-1].startswith(NOSTR_URL_SCHEME):
        return None
    npub = values[-1][len(NOSTR_URL_SCHEME):].split("/", 1)[0]
    try:
        decode_npub(npub)
    except ValueError:
        logger.warning(f"Ignoring malformed nostr.url: {values[-1]}")
        return None
    return npub
