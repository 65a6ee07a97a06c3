"""
Command-line front end for the consult engine.

Usage:
    consult-engine submit visit.m4a --name "Consulta 12/03"
    consult-engine record --name "Consulta 12/03"
    consult-engine list
    consult-engine show 42
    consult-engine delete 42 --yes
    consult-engine pdf 42 -o consulta-42.pdf
    consult-engine login --email doctor@example.com
"""

from __future__ import annotations

import argparse
import asyncio
import getpass
import logging
import sys
from pathlib import Path

from consult_engine.core.config import get_settings
from consult_engine.core.exceptions import ConsultEngineError
from consult_engine.core.models import AudioBlob, ConsultationDetails, StateChange
from consult_engine.services.api_client import ConsultsAPIClient
from consult_engine.services.audio import RecordingSession, load_audio_file
from consult_engine.services.auth import SessionCredentials
from consult_engine.services.finalize import FinalizePolicy
from consult_engine.services.orchestrator import SubmissionEngine


# ------------------------------------------------------------------
# Output helpers
# ------------------------------------------------------------------


async def _print_state(change: StateChange) -> None:
    suffix = f" ({change.job_id})" if change.job_id else ""
    print(f"  ... {change.state}{suffix}", file=sys.stderr)


def _print_details(details: ConsultationDetails) -> None:
    print(f"Consultation {details.id}: {details.display_name or '(unnamed)'}")
    if details.created_at:
        print(f"Created: {details.created_at:%Y-%m-%d %H:%M}")
    print()
    print("Transcript:")
    print(details.transcript or "(no transcript available)")
    print()
    print("Summary:")
    print(details.summary or "(no summary available)")


def _confirm(prompt: str) -> bool:
    return input(f"{prompt} [y/N] ").strip().lower() in ("y", "yes")


# ------------------------------------------------------------------
# Commands
# ------------------------------------------------------------------


async def _submit(blob: AudioBlob, args: argparse.Namespace) -> int:
    policy = FinalizePolicy.from_settings()
    async with ConsultsAPIClient() as api:
        engine = SubmissionEngine(api, policy=policy, notify=_print_state)
        result = await engine.submit(blob, args.name, deadline=args.deadline)

    _print_details(result.details)
    for error in (result.details_error, result.refresh_error):
        if error is not None:
            print(f"Warning: {error.detail}", file=sys.stderr)
    if result.recent is not None:
        print()
        print("Recent consultations:")
        for item in result.recent:
            print(f"  {item.id:>8}  {item.display_name}")
    return 0


async def _list(args: argparse.Namespace) -> int:
    async with ConsultsAPIClient() as api:
        consultations = await api.list_consultations()
    if not consultations:
        print("No consultations yet.")
    for item in consultations:
        created = f"{item.created_at:%Y-%m-%d %H:%M}" if item.created_at else ""
        print(f"{item.id:>8}  {created:16}  {item.display_name}")
    return 0


async def _show(args: argparse.Namespace) -> int:
    async with ConsultsAPIClient() as api:
        details = await api.get_details(args.id)
    _print_details(details)
    return 0


async def _delete(args: argparse.Namespace) -> int:
    confirm = (lambda _prompt: True) if args.yes else _confirm
    async with ConsultsAPIClient() as api:
        engine = SubmissionEngine(api)
        remaining = await engine.delete_consultation(args.id, confirm)
    if remaining is None:
        print("Nothing deleted.")
    else:
        print(f"Deleted consultation {args.id}.")
    return 0


async def _pdf(args: argparse.Namespace) -> int:
    async with ConsultsAPIClient() as api:
        content = await api.download_pdf(args.id)
    out = Path(args.output or f"consulta-{args.id}.pdf")
    out.write_bytes(content)
    print(f"Saved {out} ({len(content)} bytes)")
    return 0


async def _profile(args: argparse.Namespace) -> int:
    async with ConsultsAPIClient() as api:
        profile = await api.get_profile()
        stats = await api.get_stats()
    for key, value in {**profile, **stats}.items():
        print(f"{key}: {value}")
    return 0


async def _login(args: argparse.Namespace) -> int:
    password = getpass.getpass("Password: ")
    async with ConsultsAPIClient(credentials=SessionCredentials()) as api:
        token = await api.login(args.email, password)
    print("Logged in. Export this token to authenticate further commands:")
    print(f"API_TOKEN={token}")
    return 0


def _record(args: argparse.Namespace) -> AudioBlob:
    session = RecordingSession()
    session.start(args.name)
    try:
        input("Recording... press Enter to stop.")
    finally:
        session.stop()
    return session.take_blob()


# ------------------------------------------------------------------
# Entry point
# ------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="consult-engine",
        description="Upload consultation audio and fetch its transcript and summary.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    submit = sub.add_parser("submit", help="Upload an audio file and wait for the result")
    submit.add_argument("file", help="Audio or video file (.wav, .mp3, .m4a, .webm, ...)")
    submit.add_argument("--name", required=True, help="Display name of the consultation")
    submit.add_argument("--deadline", type=float, default=None, help="Seconds to wait")

    record = sub.add_parser("record", help="Record from the microphone, then submit")
    record.add_argument("--name", required=True, help="Display name of the consultation")
    record.add_argument("--deadline", type=float, default=None, help="Seconds to wait")

    sub.add_parser("list", help="List consultations")

    show = sub.add_parser("show", help="Show transcript and summary of a consultation")
    show.add_argument("id")

    delete = sub.add_parser("delete", help="Delete a consultation")
    delete.add_argument("id")
    delete.add_argument("-y", "--yes", action="store_true", help="Do not ask for confirmation")

    pdf = sub.add_parser("pdf", help="Download the PDF report of a consultation")
    pdf.add_argument("id")
    pdf.add_argument("-o", "--output", default=None)

    sub.add_parser("profile", help="Show the logged-in user's profile and stats")

    login = sub.add_parser("login", help="Log in and print a bearer token")
    login.add_argument("--email", required=True)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Parse arguments, run the command, return the process exit code."""
    args = build_parser().parse_args(argv)
    settings = get_settings()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    commands = {
        "list": _list,
        "show": _show,
        "delete": _delete,
        "pdf": _pdf,
        "profile": _profile,
        "login": _login,
    }
    try:
        if args.command == "submit":
            return asyncio.run(_submit(load_audio_file(args.file), args))
        if args.command == "record":
            return asyncio.run(_submit(_record(args), args))
        return asyncio.run(commands[args.command](args))
    except ConsultEngineError as exc:
        print(f"Error: {exc.detail}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("Interrupted.", file=sys.stderr)
        return 130


if __name__ == "__main__":
    sys.exit(main())
