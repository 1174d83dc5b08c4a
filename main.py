# Main File

import argparse
import asyncio
import json
import logging
import sys
from datetime import datetime
from pathlib import Path

import dotenv

from callbrain.constructor import ServerManagerType, ServicesManagerType
from callbrain.context import Context
from callbrain.server.constructor import construct_server_manager
from callbrain.services.common.models import SpeakerAssignment
from callbrain.services.constructor import construct_services_manager

# Configure Python's built-in logging for server initialization
# (before AsyncLoggingService is available)
logs_dir = Path("logs")
logs_dir.mkdir(parents=True, exist_ok=True)
timestamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
log_file = logs_dir / f"app_{timestamp}.log"

logging.basicConfig(
    level=logging.INFO,
    format="[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    handlers=[
        logging.StreamHandler(sys.stderr),
        logging.FileHandler(log_file, mode="a", encoding="utf-8"),
    ],
    force=True,
)

dotenv.load_dotenv(dotenv_path=".env.local")


# -------------------------------------------------------------- #
# Argument Parsing
# -------------------------------------------------------------- #


def parse_speaker(raw: str) -> SpeakerAssignment:
    """Parse ``SLOT`` or ``SLOT:CONTACT_ID``."""
    slot, _, contact_id = raw.partition(":")
    try:
        speaker_slot = int(slot)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"invalid speaker slot: {raw!r}") from e
    return SpeakerAssignment(
        recording_id="", speaker_slot=speaker_slot, contact_id=contact_id or None
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="callbrain",
        description="Turn recorded calls into transcripts, summaries and tasks, and ask questions about them.",
    )
    parser.add_argument(
        "--contacts",
        type=Path,
        default=None,
        help="JSON file mapping contact id to display name",
    )
    parser.add_argument("--log-dir", default="logs", help="Directory for service logs")

    subparsers = parser.add_subparsers(dest="command", required=True)

    process = subparsers.add_parser("process", help="Register a recording and process it")
    process.add_argument("audio_path", help="Microphone track (device owner)")
    process.add_argument("--system-audio", default=None, help="System audio track (counterpart)")
    process.add_argument(
        "--speaker",
        action="append",
        type=parse_speaker,
        default=[],
        help="Speaker slot, optionally with a contact id: 2:contact-id (repeatable)",
    )
    process.add_argument("--context", default=None, help="Extra context for the summary")
    process.add_argument("--template-id", default=None, help="Prompt template id")
    process.add_argument("--duration", type=float, default=0.0, help="Duration in seconds")

    subparsers.add_parser("resume", help="Resume recordings interrupted mid-pipeline")

    failed = subparsers.add_parser("failed", help="List failed recordings")
    failed.add_argument("--all", action="store_true", help="Include dismissed recordings")

    retry = subparsers.add_parser("retry", help="Retry a failed recording")
    retry.add_argument("recording_id")

    dismiss = subparsers.add_parser("dismiss", help="Dismiss a failed recording")
    dismiss.add_argument("recording_id")

    ask = subparsers.add_parser("ask", help="Ask a question about your conversations")
    ask.add_argument("query")

    subparsers.add_parser("health", help="Report the health of every backend")

    return parser


def load_contacts(path: Path | None) -> dict[str, str]:
    if path is None:
        return {}
    with path.open("r", encoding="utf-8") as f:
        contacts = json.load(f)
    if not isinstance(contacts, dict):
        raise ValueError(f"{path} must contain a JSON object of contact id to name")
    return {str(key): str(value) for key, value in contacts.items()}


# -------------------------------------------------------------- #
# Commands
# -------------------------------------------------------------- #


async def run_command(args: argparse.Namespace, context: Context) -> int:
    services = context.services_manager

    if args.command == "process":
        recording_id = await services.sql_recording_service_manager.create_recording(
            file_path=args.audio_path,
            duration_seconds=args.duration,
            speakers=args.speaker,
            system_audio_path=args.system_audio,
            prompt_template_id=args.template_id,
            context=args.context,
        )
        job = await services.processing_queue.enqueue(recording_id)
        status = await job.wait() if job else None
        recording = await services.sql_recording_service_manager.get_recording(recording_id)
        print(f"{recording_id}: {status.value if status else 'not processed'}")
        if recording and recording.error_message:
            print(f"  error: {recording.error_message}")
        return 0 if status and status.value == "complete" else 1

    if args.command == "resume":
        resumed = await services.processing_queue.resume_pending()
        for job in resumed:
            status = await job.wait()
            print(f"{job.recording_id}: {status.value if status else 'not processed'}")
        if not resumed:
            print("Nothing to resume.")
        return 0

    if args.command == "failed":
        recordings = await services.failure_surface.list_failed(include_dismissed=args.all)
        for recording in recordings:
            dismissed = " (dismissed)" if recording.dismissed_at else ""
            print(
                f"{recording.id}{dismissed} retries={recording.retry_count} "
                f"{recording.file_path}: {recording.error_message}"
            )
        if not recordings:
            print("No failed recordings.")
        return 0

    if args.command == "retry":
        job = await services.failure_surface.retry(args.recording_id)
        status = await job.wait() if job else None
        print(f"{args.recording_id}: {status.value if status else 'not processed'}")
        return 0 if status and status.value == "complete" else 1

    if args.command == "dismiss":
        dismissed = await services.failure_surface.dismiss(args.recording_id)
        print(f"{args.recording_id}: {'dismissed' if dismissed else 'not dismissed'}")
        return 0 if dismissed else 1

    if args.command == "ask":
        result = await services.retrieval_engine.answer(args.query)
        if not result.ok:
            print(f"Cannot answer ({result.reason.value}): {result.message}")
            return 1
        print(result.text)
        return 0

    if args.command == "health":
        summary = await context.server_manager.health_summary()
        for entry in summary:
            state = "ok" if entry.healthy else "down"
            line = f"{entry.key} ({entry.role}): {state}"
            if entry.error:
                line += f" [{entry.error}]"
            print(line)
        return 0 if all(entry.healthy for entry in summary) else 1

    raise ValueError(f"Unknown command: {args.command}")


# -------------------------------------------------------------- #
# Run
# -------------------------------------------------------------- #


async def main(argv: list[str] | None = None) -> int:
    """Connect servers, start services, run one command, shut down."""
    args = build_parser().parse_args(argv)

    context = Context()

    servers_manager = construct_server_manager(ServerManagerType.PRODUCTION, context)
    context.set_server_manager(servers_manager)
    await servers_manager.connect_all()
    logging.info("[OK] Connected all servers.")

    services_manager = construct_services_manager(
        ServicesManagerType.PRODUCTION,
        context=context,
        default_logging_path=args.log_dir,
        contacts=load_contacts(args.contacts),
    )
    context.set_services_manager(services_manager)
    await services_manager.initialize_all()
    await services_manager.logging_service.info("Initialized services manager")

    try:
        return await run_command(args, context)
    finally:
        await services_manager.shutdown_all(timeout=60.0)


def cli() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
