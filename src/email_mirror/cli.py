"""Command-line interface for Email Mirror.

This module provides the main entry point for the CLI application.
"""

from __future__ import annotations

import argparse
import logging
import sys

import structlog
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from email_mirror import __version__
from email_mirror.cache import OfflineCache
from email_mirror.config import INBOX, Settings, get_settings
from email_mirror.exceptions import ConfigurationError, MailDeliveryError
from email_mirror.models import EmailPreview, SendEmailRequest
from email_mirror.service import MailboxService

logger = structlog.get_logger()


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="email-mirror", description="Offline IMAP mailbox mirror")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("init-db", help="Create or upgrade the offline cache schema")

    sync_parser = subparsers.add_parser("sync", help="Pull recent messages into the offline cache")
    sync_parser.add_argument("--folder", default=INBOX, help="Folder to sync (default: INBOX)")

    list_parser = subparsers.add_parser("list", help="List message previews")
    list_parser.add_argument("view", choices=["inbox", "sent", "trash"], help="Which view to list")

    show_parser = subparsers.add_parser("show", help="Show one message")
    show_parser.add_argument("id", help="Message UID")

    for name, help_text in (
        ("trash", "Move a message to the trash"),
        ("restore", "Move a message from the trash back to the inbox"),
        ("purge", "Permanently delete a trashed message"),
        ("delete", "Delete a message without going through the trash view"),
    ):
        p = subparsers.add_parser(name, help=help_text)
        p.add_argument("id", help="Message UID")

    send_parser = subparsers.add_parser("send", help="Send a plain-text message over SMTP")
    send_parser.add_argument("--to", required=True, help="Recipient address")
    send_parser.add_argument("--cc", action="append", default=[], help="Cc address (repeatable)")
    send_parser.add_argument("--bcc", action="append", default=[], help="Bcc address (repeatable)")
    send_parser.add_argument("--subject", required=True, help="Subject line")
    send_parser.add_argument("--body", required=True, help="Message body")

    return parser


def _print_previews(previews: list[EmailPreview]) -> None:
    for p in previews:
        unread = "UNREAD" if p.unread else "READ"
        date_part = p.received_at.isoformat() if p.received_at else "(no date)"
        print(f"{p.id}\t{unread}\t{date_part}\t{p.sender}\t{p.subject or ''}")


def _cmd_init_db(settings: Settings) -> int:
    try:
        cache = OfflineCache.from_url(settings.database_url, preview_limit=settings.preview_limit)
        cache.initialize()
    except SQLAlchemyError as exc:
        logger.error("cache_init_failed", database_url=settings.database_url, error=str(exc))
        print(f"Cannot initialise the offline cache: {exc}", file=sys.stderr)
        return 1
    print(f"Offline cache ready at {settings.database_url}")
    return 0


def _cmd_sync(service: MailboxService, args: argparse.Namespace) -> int:
    if not service.refresh(args.folder):
        print(f"Sync of {args.folder} failed", file=sys.stderr)
        return 1
    print(f"Synced {args.folder}")
    return 0


def _cmd_list(service: MailboxService, args: argparse.Namespace) -> int:
    if args.view == "inbox":
        previews = service.list_inbox()
    elif args.view == "sent":
        previews = service.list_sent()
    else:
        previews = service.list_trash()
    _print_previews(previews)
    return 0


def _cmd_show(service: MailboxService, args: argparse.Namespace) -> int:
    detail = service.get_detail(args.id)
    if detail is None:
        print(f"Message {args.id} not found", file=sys.stderr)
        return 1

    print(f"From: {detail.sender}")
    if detail.to:
        print(f"To: {', '.join(detail.to)}")
    if detail.cc:
        print(f"Cc: {', '.join(detail.cc)}")
    print(f"Subject: {detail.subject or ''}")
    if detail.received_at:
        print(f"Date: {detail.received_at.isoformat()}")
    print()
    print(detail.body)
    return 0


def _cmd_move(service: MailboxService, args: argparse.Namespace) -> int:
    action = service.trash if args.command == "trash" else service.restore
    result = action(args.id)
    if not result.success:
        print(f"{args.command.capitalize()} of {args.id} failed", file=sys.stderr)
        return 1
    done = "Trashed" if args.command == "trash" else "Restored"
    note = "" if result.reconciled else " (not confirmed on server)"
    print(f"{done} {args.id} -> {result.message_id}{note}")
    return 0


def _cmd_remove(service: MailboxService, args: argparse.Namespace) -> int:
    if args.command == "purge":
        ok = service.permanently_delete(args.id)
    else:
        ok = service.delete(args.id)
    if not ok:
        print(f"{args.command.capitalize()} of {args.id} failed", file=sys.stderr)
        return 1
    print(f"Deleted {args.id}")
    return 0


def _cmd_send(service: MailboxService, args: argparse.Namespace) -> int:
    try:
        request = SendEmailRequest(
            to=args.to,
            cc=args.cc,
            bcc=args.bcc,
            subject=args.subject,
            body=args.body,
        )
    except ValidationError as exc:
        print(f"Invalid message: {exc}", file=sys.stderr)
        return 2

    try:
        service.send_email(request)
    except MailDeliveryError as exc:
        print(str(exc), file=sys.stderr)
        return 1
    print(f"Sent to {request.to}")
    return 0


_SERVICE_COMMANDS = {
    "sync": _cmd_sync,
    "list": _cmd_list,
    "show": _cmd_show,
    "trash": _cmd_move,
    "restore": _cmd_move,
    "purge": _cmd_remove,
    "delete": _cmd_remove,
    "send": _cmd_send,
}


def main(args: list[str] | None = None) -> int:
    """Main entry point for the Email Mirror CLI.

    Args:
        args: Command-line arguments. If None, uses sys.argv.

    Returns:
        Exit code (0 for success, 1 for a failed operation, 2 for usage or
        configuration errors).
    """
    if args is None:
        args = sys.argv[1:]

    settings = get_settings()

    # Configure logging
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, settings.log_level.upper(), logging.INFO)
        ),
    )

    logger.info("email_mirror_started", version=__version__, debug=settings.debug)

    parser = _build_parser()
    parsed = parser.parse_args(args)

    if parsed.command == "init-db":
        return _cmd_init_db(settings)

    handler = _SERVICE_COMMANDS.get(parsed.command)
    if handler is None:
        logger.error("unknown_command", command=parsed.command)
        return 2

    try:
        service = MailboxService.from_settings(settings)
        service.cache.initialize()
        return handler(service, parsed)
    except ConfigurationError as exc:
        logger.error("configuration_error", error=str(exc))
        print(str(exc), file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
