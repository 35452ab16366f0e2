"""CLI entry point for the trello2planner migration tool."""

from __future__ import annotations

import logging
import sys
from collections.abc import Callable
from datetime import datetime
from pathlib import Path

from azure.identity import DeviceCodeCredential

from trello2planner.config import Settings, load_settings
from trello2planner.exceptions import ConfigurationError
from trello2planner.file_registry import FileMetaRegistry
from trello2planner.logging_config import setup_logging
from trello2planner.migrator import TrelloToPlannerMigrator
from trello2planner.planner_client import PlannerClient
from trello2planner.rate_limiter import RateLimiter
from trello2planner.snapshots import SnapshotStore
from trello2planner.trello_client import TrelloReader

logger = logging.getLogger("trello2planner.cli")

# Module docstring for --help
__doc__ = """
trello2planner - Migrate Trello boards into Microsoft Planner plans

Usage:
    export TRELLO_API_KEY="your-key"
    export TRELLO_TOKEN="your-token"
    export GRAPH_CLIENT_ID="your-azure-app-client-id"
    export GRAPH_TENANT_ID="your-tenant-id"     # optional, default: common

    # Start the interactive menu
    python3 -m trello2planner

    # More (or less) output
    python3 -m trello2planner --verbose
    python3 -m trello2planner --quiet
    python3 -m trello2planner --log-level WARNING --log-file migration.log

    # Disable SSL verification (if needed for network environment)
    python3 -m trello2planner --no-verify-ssl

Typical session: 1 (download boards), 7 (download attachments), 10 (discover
plans), 20 (map boards), 22 (upload attachments), 24 (sync).

Optional settings: DOWNLOAD_PATH, GRAPH_SCOPES, TRELLO_RATE_LIMIT,
GRAPH_RATE_LIMIT, MAX_WORKERS. Variables can also be put in a .env file
(or the file named by TRELLO2PLANNER_ENV_FILE).
"""

MENU = """
Please choose one of the following options:
0. Exit
1. Download Trello boards
2. Load downloaded Trello data
3. Show Trello board statistics
4. Render and save attachment metadata
5. Load attachment metadata
6. Show attachment metadata statistics
7. Download incomplete attachments
10. Discover Planner plans
11. Show Planner plans
20. Map Trello boards to Planner plans
21. Show board mapping
22. Upload attachments to Planner
23. Show plan drives
24. Sync Trello boards to Planner plans
25. Show upload state
26. Reset upload state
27. Save upload state
28. Load upload state
29. Clean mapped plans (delete all tasks and buckets)
101. Display access token
102. Show signed-in user
103. List groups with plan counts
"""


def show_device_code(verification_uri: str, user_code: str, expires_on: datetime) -> None:
    """Tell the operator where to sign in (device code flow)"""
    print(
        f"To sign in, open {verification_uri} and enter the code {user_code} "
        f"(valid until {expires_on:%H:%M})."
    )


def build_migrator(settings: Settings) -> TrelloToPlannerMigrator:
    trello = TrelloReader(
        settings.trello_api_key,
        settings.trello_token,
        rate_limiter=RateLimiter(requests_per_second=settings.trello_rate_limit),
        max_workers=settings.max_workers,
        verify_ssl=settings.verify_ssl,
    )
    credential = DeviceCodeCredential(
        client_id=settings.client_id,
        tenant_id=settings.tenant_id,
        prompt_callback=show_device_code,
        connection_verify=settings.verify_ssl,
    )
    planner = PlannerClient(
        credential,
        settings.scopes,
        rate_limiter=RateLimiter(requests_per_second=settings.graph_rate_limit),
        max_workers=settings.max_workers,
        verify_ssl=settings.verify_ssl,
    )
    store = SnapshotStore(settings.download_path)
    registry = FileMetaRegistry(store, Path(settings.download_path) / "attachments")
    return TrelloToPlannerMigrator(
        trello, planner, registry, store, max_workers=settings.max_workers
    )


def greet(migrator: TrelloToPlannerMigrator) -> None:
    me = migrator.planner.get_me()
    if me is None:
        logger.warning("⚠️  Unable to look up the signed-in Microsoft user")
        return
    logger.info(f"👋 Hello, {me.get('displayName') or me.get('userPrincipalName')}!")
    if me.get("mail"):
        logger.info(f"   Email: {me['mail']}")


def _show_group_plan_counts(migrator: TrelloToPlannerMigrator, output: Callable) -> None:
    counts = migrator.planner.list_group_plan_counts()
    if counts is None:
        return
    for group_id, group_name, plan_count in counts:
        output(f"{group_id} - {group_name}: {plan_count} plans")


def _show_user(migrator: TrelloToPlannerMigrator, output: Callable) -> None:
    me = migrator.planner.get_me()
    if me is not None:
        output(f"{me.get('displayName')} <{me.get('mail') or me.get('userPrincipalName')}>")


def menu_actions(
    migrator: TrelloToPlannerMigrator, output: Callable[[str], object] = print
) -> dict[int, Callable[[], object]]:
    registry = migrator.registry
    planner = migrator.planner

    def render_metadata() -> None:
        if registry.render(migrator.state.boards) is not None:
            registry.save()

    return {
        1: migrator.download_trello_boards,
        2: migrator.load_boards,
        3: migrator.log_board_statistics,
        4: render_metadata,
        5: registry.load,
        6: registry.log_statistics,
        7: lambda: registry.download_all(migrator.trello),
        10: migrator.discover_plans,
        11: planner.log_plans,
        20: migrator.map_boards,
        21: lambda: output(migrator.format_board_maps()),
        22: migrator.upload_attachments,
        23: planner.log_drives,
        24: migrator.sync_boards_to_plans,
        25: lambda: output(migrator.format_upload_state()),
        26: migrator.reset_upload_state,
        27: migrator.save_upload_state,
        28: migrator.load_upload_state,
        29: migrator.clean_mapped_boards,
        101: lambda: output(f"Access token: {planner.get_access_token()}"),
        102: lambda: _show_user(migrator, output),
        103: lambda: _show_group_plan_counts(migrator, output),
    }


def run_menu(
    migrator: TrelloToPlannerMigrator,
    prompt: Callable[[str], str] = input,
    output: Callable[[str], object] = print,
) -> None:
    """Show the menu until the operator chooses 0 (or input ends).

    An exception raised by an action is logged and the menu shown again.
    """
    actions = menu_actions(migrator, output)

    while True:
        output(MENU)
        try:
            raw = prompt("> ")
        except (EOFError, KeyboardInterrupt):
            output("")
            break

        try:
            choice = int(raw.strip())
        except ValueError:
            output("Invalid choice! Please try again.")
            continue

        if choice == 0:
            break

        action = actions.get(choice)
        if action is None:
            output("Invalid choice! Please try again.")
            continue

        try:
            action()
        except KeyboardInterrupt:
            logger.warning("Interrupted")
        except Exception as e:
            logger.error(f"❌ Action {choice} failed: {e}")
            logger.debug("Traceback:", exc_info=True)

    logger.info("Goodbye...")


def main() -> None:
    # Show help
    if "--help" in sys.argv or "-h" in sys.argv:
        print(__doc__)
        sys.exit(0)

    # Parse logging flags
    log_level = "INFO"  # Default
    log_file = None

    if "--verbose" in sys.argv or "-v" in sys.argv:
        log_level = "DEBUG"
    elif "--quiet" in sys.argv or "-q" in sys.argv:
        log_level = "ERROR"
    elif "--log-level" in sys.argv:
        idx = sys.argv.index("--log-level")
        if idx + 1 < len(sys.argv):
            log_level = sys.argv[idx + 1].upper()

    if "--log-file" in sys.argv:
        idx = sys.argv.index("--log-file")
        if idx + 1 < len(sys.argv):
            log_file = sys.argv[idx + 1]

    setup_logging(log_level, log_file)

    try:
        settings = load_settings()
    except ConfigurationError as e:
        logger.error("❌ Error: Invalid configuration")
        for line in str(e).splitlines():
            logger.error(f"  {line}")
        logger.error("\nRequired environment variables:")
        logger.error("  TRELLO_API_KEY     - Your Trello API key")
        logger.error("  TRELLO_TOKEN       - Your Trello API token")
        logger.error("  GRAPH_CLIENT_ID    - Client id of an Azure app registration")
        logger.error("                       with public client flows enabled")
        logger.error("\nSet them in your environment or create a .env file:")
        logger.error('  export TRELLO_API_KEY="..."')
        logger.error('  export TRELLO_TOKEN="..."')
        logger.error('  export GRAPH_CLIENT_ID="..."')
        sys.exit(1)

    # Disable SSL warnings if --no-verify-ssl is used
    if "--no-verify-ssl" in sys.argv:
        import urllib3

        urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)
        settings.verify_ssl = False
        logger.info("🔓 SSL verification disabled")

    migrator = build_migrator(settings)

    logger.info("🔍 Signing in to Microsoft Graph...")
    greet(migrator)

    run_menu(migrator)


if __name__ == "__main__":
    main()
