import asyncio
import getpass
import json
import logging
import sys
from pathlib import Path
from typing import Dict, List, Sequence, Tuple

from gitsmith.application.account_service import AccountService
from gitsmith.application.patch_assembler import repo_coordinate
from gitsmith.application.pull_request_service import PullRequestService, format_pull_request
from gitsmith.application.repository_service import RepositoryService
from gitsmith.config import Settings, configure_logging, load_settings
from gitsmith.domain.exceptions import GitsmithException
from gitsmith.domain.keys import decode_npub
from gitsmith.infrastructure import git_repository
from gitsmith.infrastructure.relay_client import RelayClient
from gitsmith.infrastructure.vault_file import VaultFileRepository

logger = logging.getLogger(__name__)

USAGE = """usage: gitsmith <command> [args]

  account login <nsec-or-hex> | logout | export | list
  state [repo_path]
  sync [repo_path]
  init [repo_path] [--identifier ID] [--name NAME] [--description TEXT] [--web URL]...
  send <since> <title> [description] [reply_to]
  list [repo_path] [--json]
"""


def _parse_options(
    args: List[str], valued: Sequence[str] = (), switches: Sequence[str] = ()
) -> Tuple[List[str], Dict[str, List[str]]]:
    """Splits args into positionals and "--flag value" / "--switch" options. Valued flags may repeat."""
    positional: List[str] = []
    options: Dict[str, List[str]] = {}
    index = 0
    while index < len(args):
        arg = args[index]
        if arg in switches:
            options[arg[2:]] = []
        elif arg in valued:
            if index + 1 >= len(args):
                raise ValueError(f"{arg} needs a value")
            options.setdefault(arg[2:], []).append(args[index + 1])
            index += 1
        elif arg.startswith("--"):
            raise ValueError(f"Unknown option {arg}")
        else:
            positional.append(arg)
        index += 1
    return positional, options


def _print_refs(refs: Dict[str, str]) -> None:
    print("-" * 40)
    for ref_name, commit in sorted(refs.items()):
        print(f"{ref_name:<20} {commit[:8]}")


def _password(settings: Settings) -> str:
    return settings.password if settings.password is not None else getpass.getpass("Enter password: ")


def _relay_client(settings: Settings) -> RelayClient:
    return RelayClient(
        connect_delay=settings.connect_delay,
        publish_timeout=settings.publish_timeout,
        receive_timeout=settings.receive_timeout,
    )


def _report_outcome(outcome) -> None:
    for relay in outcome.succeeded:
        print(f"  ok   {relay}")
    for relay, reason in outcome.failed:
        print(f"  fail {relay}: {reason}")


def run_account(args: List[str], settings: Settings) -> int:
    accounts = AccountService(VaultFileRepository(settings.vault_path))
    command = args[0] if args else ""

    if command == "login" and len(args) == 2:
        print(f"Logged in as {accounts.login(args[1], _password(settings))}")
    elif command == "logout":
        print(f"Logged out from {accounts.logout()}")
    elif command == "export":
        print(f"Private key: {accounts.export(_password(settings))}")
    elif command == "list":
        listing = accounts.list()
        if not listing:
            print("No accounts found")
        for npub, active in listing:
            print(f"  {npub} (active)" if active else f"  {npub}")
    else:
        print(USAGE)
        return 2
    return 0


async def run_init(args: List[str], settings: Settings) -> int:
    positional, options = _parse_options(
        args, valued=("--identifier", "--name", "--description", "--web")
    )
    repo_path = Path(positional[0]) if positional else Path(".")
    accounts = AccountService(VaultFileRepository(settings.vault_path))
    keypair = accounts.active_signing_key(_password(settings))

    announcement = git_repository.detect(repo_path)
    overrides = {
        "relays": settings.relays or announcement.relays,
        "maintainers": [keypair.npub],
    }
    for key in ("identifier", "name", "description"):
        if key in options:
            overrides[key] = options[key][-1]
    if "web" in options:
        overrides["web"] = options["web"]
    announcement = announcement.model_copy(update=overrides)

    result = await RepositoryService(_relay_client(settings)).announce(announcement, keypair, repo_path)
    print(f"Event ID: {result.message_id}")
    print(f"Nostr URL: {result.nostr_url}")
    _report_outcome(result.outcome)
    return 0 if result.outcome.ok else 1


async def run_send(args: List[str], repo_path: Path, settings: Settings) -> int:
    since, title = args[0], args[1]
    description = args[2] if len(args) > 2 else ""
    reply_to = args[3] if len(args) > 3 else None

    keypair = AccountService(VaultFileRepository(settings.vault_path)).active_signing_key(_password(settings))
    announcement = git_repository.detect(repo_path)
    relays = settings.relays or announcement.relays
    if not relays:
        logger.warning("No relays configured for repository. Run 'gitsmith init' first.")
        return 1

    patches = git_repository.patches_since(repo_path, since)
    coordinate = repo_coordinate(keypair.public_key, announcement.identifier)
    service = PullRequestService(_relay_client(settings))
    outcomes = await service.send(
        keypair, coordinate, title, description, patches, announcement.root_commit, relays, reply_to
    )
    if not outcomes:
        print("No patches to send")
        return 0
    print(f"Pull request {outcomes[-1].message_id}")
    _report_outcome(outcomes[-1])
    return 0 if all(outcome.ok for outcome in outcomes) else 1


async def run_list(args: List[str], settings: Settings) -> int:
    positional, options = _parse_options(args, switches=("--json",))
    repo_path = Path(positional[0]) if positional else Path(".")
    announcement = git_repository.detect(repo_path)
    relays = settings.relays or announcement.relays
    if not relays:
        logger.warning("No relays configured for repository. Run 'gitsmith init' first.")
        return 1

    owner = git_repository.read_repo_owner(repo_path)
    if owner is None:
        owner = AccountService(VaultFileRepository(settings.vault_path)).active_public_key()
    if owner is None:
        logger.error("Repository owner not found in config and no active account. Please login first.")
        return 1

    coordinate = repo_coordinate(decode_npub(owner), announcement.identifier)
    records = await PullRequestService(_relay_client(settings)).list_pull_requests(coordinate, relays)
    if "json" in options:
        print(json.dumps([record.model_dump(mode="json") for record in records], indent=2))
        return 0
    if not records:
        print("No pull requests found")
    for number, record in enumerate(records, start=1):
        print(f"PR #{number}")
        print(format_pull_request(record))
    return 0


async def run_sync(repo_path: Path, settings: Settings) -> int:
    """Prints the local ref state next to the newest state published on the relays."""
    announcement = git_repository.detect(repo_path)
    local_state = git_repository.current_state(repo_path, announcement.identifier)

    print(f"Repository: {announcement.name}")
    print(f"Identifier: {announcement.identifier}")
    print()
    print("Local Git State:")
    _print_refs(local_state.refs)
    print()

    relays = settings.relays or announcement.relays
    if not relays:
        print("No relays configured. Run 'gitsmith init' to configure relays.")
        return 0

    print(f"Fetching state from {len(relays)} relay(s)...")
    remote_state = await RepositoryService(_relay_client(settings)).fetch_remote_state(
        announcement.identifier, relays
    )
    if remote_state is None:
        print("No remote state found")
        return 0
    print("Remote Nostr State:")
    _print_refs(remote_state.refs)
    return 0


async def main(argv: List[str]) -> int:
    settings = load_settings()
    configure_logging(settings.log_level)

    if not argv:
        print(USAGE)
        return 2

    command, args = argv[0], argv[1:]
    try:
        if command == "account":
            return run_account(args, settings)
        if command == "state":
            repo_path = Path(args[0]) if args else Path(".")
            announcement = git_repository.detect(repo_path)
            state = git_repository.current_state(repo_path, announcement.identifier)
            print(json.dumps(state.model_dump(), indent=2))
            return 0
        if command == "init":
            return await run_init(args, settings)
        if command == "send" and len(args) >= 2:
            return await run_send(args, Path("."), settings)
        if command == "list":
            return await run_list(args, settings)
        if command == "sync":
            return await run_sync(Path(args[0]) if args else Path("."), settings)
    except GitsmithException as e:
        logger.error(str(e))
        return 1
    except ValueError as e:
        logger.error(f"Invalid input: {e}")
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted by user. Exiting gracefully.")
        return 130

    print(USAGE)
    return 2


def run() -> None:
    sys.exit(asyncio.run(main(sys.argv[1:])))


if __name__ == "__main__":
    run()
