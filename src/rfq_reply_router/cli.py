"""Command-line interface (CLI) entrypoint.

Objective:
    Provide an operator CLI around :class:`rfq_reply_router.poller.ReplyPoller`
    and :class:`rfq_reply_router.sent_items.SentItemFiler`.

Commands:
    - ``watch``: poll the inbox until interrupted.
    - ``poll``: run one polling cycle and print the results.
    - ``recheck``: forget processed messages and run one cycle.
    - ``file-sent``: find a just-sent RFQ and file it under its material.
    - ``init-folders``: create the folder taxonomy of a material code.
    - ``serve``: run the FastAPI operator API with uvicorn.

High-level call tree:
    - :func:`main`
        - :func:`setup_logging`
            - installs :class:`_HttpRequestInfoToDebugFilter`
        - :func:`build_poller` / :func:`build_filer`
        - command handler
        - :func:`print_results`
"""

import argparse
import logging
import sys
from typing import Optional

from pydantic import ValidationError

from .config import Settings, get_settings
from .folder_manager import FolderManager
from .models import ProcessingResult
from .poller import ReplyPoller
from .sent_items import SentItemFiler

logger = logging.getLogger(__name__)


class _HttpRequestInfoToDebugFilter(logging.Filter):
    """Filter to suppress noisy per-request INFO logs of HTTP libraries.

    ``httpx`` logs each request at INFO level ("HTTP Request: ..."), and so
    can ``urllib3`` depending on configuration. This filter hides those
    messages unless the root logger is in DEBUG mode.
    """

    NOISY_LOGGERS = ("httpx", "urllib3")

    def filter(self, record: logging.LogRecord) -> bool:
        """Determine whether a log record should be emitted.

        Args:
            record: Log record emitted by the logging framework.

        Returns:
            bool: True to allow emission, False to suppress.
        """
        if record.levelno > logging.INFO:
            return True
        if record.name.startswith(self.NOISY_LOGGERS):
            return logging.getLogger().isEnabledFor(logging.DEBUG)
        return True


def setup_logging(level: str = "INFO") -> None:
    """
    Configure logging for the application.

    This sets the root logger level and installs the
    :class:`_HttpRequestInfoToDebugFilter` on all root handlers.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR).
    """
    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout),
        ],
    )

    root_logger = logging.getLogger()
    downgrade_filter = _HttpRequestInfoToDebugFilter()
    for handler in root_logger.handlers:
        handler.addFilter(downgrade_filter)


OUTCOME_ICONS = {
    "filed": "✅",
    "deleted_noise": "🗑",
    "unfileable": "⚠️",
    "quarantined": "⛔",
    "failed": "❌",
}


def print_results(results: list[ProcessingResult], verbose: bool = False) -> None:
    """
    Print processing results to console.

    Messages that were not RFQ replies are only listed with ``verbose=True``.

    Args:
        results: Results of one polling cycle.
        verbose: If True, print skipped messages and errors.
    """
    shown = [r for r in results if verbose or r.outcome.value in OUTCOME_ICONS]
    if not shown:
        print("\nNo RFQ replies processed.")
        return

    print(f"\n{'='*60}")
    print(f"PROCESSING RESULTS: {len(shown)} message(s)")
    print(f"{'='*60}\n")

    for item in shown:
        icon = OUTCOME_ICONS.get(item.outcome.value, "·")
        subject = item.subject[:50] + "..." if len(item.subject) > 50 else item.subject
        sender = f"{item.sender} " if item.sender else ""
        destination = f" → {item.target_folder}" if item.target_folder else ""
        label = f" [{item.classification}]" if item.classification else ""

        print(f"  {icon} {sender}{subject}{label}{destination}")
        if verbose and item.error:
            print(f"      Error: {item.error}")

    filed = sum(1 for r in results if r.outcome.value == "filed")
    failed = sum(1 for r in results if not r.success)

    print(f"\n{'='*60}")
    print(f"SUMMARY: ✅ {filed} filed, ❌ {failed} failed")
    print(f"{'='*60}\n")


def build_poller(settings: Settings) -> ReplyPoller:
    return ReplyPoller.from_settings(settings)


def build_filer(poller: ReplyPoller) -> SentItemFiler:
    """Build a sent-RFQ filer sharing the poller's mailbox session."""
    return SentItemFiler.from_pipeline(poller.pipeline, poller.settings)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rfq-reply-router",
        description="RFQ Reply Router - file supplier replies by material code",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s watch                         Poll the inbox until interrupted
  %(prog)s poll --verbose                Run one cycle with detailed output
  %(prog)s init-folders MAT-12345        Create the folders of a material
  %(prog)s file-sent --subject "RFQ for MAT-12345" --recipient sales@acme.com --material MAT-12345
        """,
    )

    parser.add_argument(
        "--account-username",
        type=str,
        default=None,
        help=(
            "Outlook account username to select from the MSAL token cache. "
            "Overrides OUTLOOK_ACCOUNT_USERNAME when provided."
        ),
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose output")
    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (defaults to LOG_LEVEL)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    watch = subparsers.add_parser("watch", help="Poll the inbox until interrupted")
    watch.add_argument("--max-ticks", type=int, default=None, help="Stop after N polls")

    subparsers.add_parser("poll", help="Run one polling cycle")
    subparsers.add_parser("recheck", help="Forget processed messages and poll once")

    file_sent = subparsers.add_parser("file-sent", help="File a just-sent RFQ")
    file_sent.add_argument("--subject", required=True)
    file_sent.add_argument("--recipient", required=True)
    file_sent.add_argument("--material", required=True, help="Material code, e.g. MAT-12345")
    file_sent.add_argument("--rfq-id", default=None)
    file_sent.add_argument("--supplier-id", default=None)
    file_sent.add_argument("--supplier-name", default="")

    init_folders = subparsers.add_parser("init-folders", help="Create a material folder tree")
    init_folders.add_argument("material", help="Material code, e.g. MAT-12345")
    init_folders.add_argument(
        "--dry-run",
        "-d",
        action="store_true",
        help="Print the folder structure without touching the mailbox",
    )

    serve = subparsers.add_parser("serve", help="Run the operator web API")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8080)

    return parser


def main(args: Optional[list[str]] = None) -> int:
    """
    Main CLI entry point.

    This function is structured to be testable: pass an explicit ``args`` list
    instead of relying on ``sys.argv``.

    Args:
        args: Command line arguments (uses sys.argv if None).

    Returns:
        int: Exit code (0 for success, 1 for error).
    """
    parsed_args = _build_parser().parse_args(args)

    try:
        settings = get_settings()
    except ValidationError as e:
        print(f"\n❌ Configuration error: {e}\n")
        return 1

    if parsed_args.verbose:
        log_level = "DEBUG"
    else:
        log_level = parsed_args.log_level or settings.log_level
    setup_logging(log_level)

    if parsed_args.account_username:
        settings.outlook_account_username = parsed_args.account_username

    command = parsed_args.command

    if command == "init-folders" and parsed_args.dry_run:
        material = parsed_args.material.upper()
        print(f"\nFolder structure for {material}:")
        for folder in FolderManager.folder_structure(material):
            print(f"  📁 {folder['path']:<45} {folder['description']}")
        return 0

    if command == "serve":
        import uvicorn

        from .webapp import create_app

        uvicorn.run(create_app(), host=parsed_args.host, port=parsed_args.port)
        return 0

    try:
        poller = build_poller(settings)

        if command == "watch":
            try:
                poller.run_forever(max_ticks=parsed_args.max_ticks)
            except KeyboardInterrupt:
                poller.stop()
                print("\nStopped.")
            return 0

        if command == "init-folders":
            material = parsed_args.material.upper()
            root = poller.pipeline.folder_manager.initialize_material_folders(material)
            print(f"\n✅ Folder structure ready for {material} (root id {root.id[:20]}...)\n")
            return 0

        if command == "file-sent":
            lookup = build_filer(poller).file_sent_rfq(
                subject=parsed_args.subject,
                recipient=parsed_args.recipient,
                material_code=parsed_args.material,
                rfq_id=parsed_args.rfq_id,
                supplier_id=parsed_args.supplier_id,
                supplier_name=parsed_args.supplier_name,
            )
            if not lookup.found:
                print(f"\n⚠️  Sent item not found after {lookup.attempts} attempt(s)\n")
                return 1
            print(f"\n✅ Filed in {lookup.filed_folder} (matched by {lookup.matched_by})\n")
            return 0

        if command == "recheck":
            results = poller.force_recheck()
        else:
            results = poller.tick()

        print_results(results, verbose=parsed_args.verbose)
        failed = sum(1 for r in results if not r.success)
        return 1 if failed > 0 else 0

    except Exception as e:
        logger.exception("Fatal error")
        print(f"\n❌ Error: {e}\n")
        return 1


if __name__ == "__main__":
    sys.exit(main())
