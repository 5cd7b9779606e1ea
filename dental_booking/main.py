"""CLI entry point for exercising the tool webhook locally.

Each input line is a tool name followed by its JSON arguments, exactly
as the voice platform would send them, e.g.::

    findAppointmentType {"patientRequest": "I need a cleaning"}
    checkAvailableSlots {"timeBucket": "Morning"}

Usage:
    python -m dental_booking.main --practice-id P1            # quiet
    python -m dental_booking.main --practice-id P1 --debug    # show HTTP calls
"""

from __future__ import annotations

import argparse
import logging
import uuid

from dotenv import load_dotenv

from dental_booking.config import DATABASE_URL
from dental_booking.orchestrator import create_orchestrator

logger = logging.getLogger(__name__)


def _configure_logging(debug: bool = False) -> None:
    """Set up logging: WARNING by default, DEBUG when --debug is passed."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(asctime)s %(levelname)-8s %(name)s - %(message)s",
    )

    if not debug:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)

    logging.getLogger("dental_booking").setLevel(logging.DEBUG if debug else logging.INFO)


def parse_line(line: str) -> tuple[str, str]:
    """Split ``<toolName> <json-args>``; the arguments part may be empty."""
    name, _, arguments = line.strip().partition(" ")
    return name, arguments.strip()


def main():
    """Run the interactive tool-call loop."""
    parser = argparse.ArgumentParser(description="Dental booking tool-call CLI")
    parser.add_argument("--practice-id", required=True, help="Practice to book against")
    parser.add_argument("--call-id", help="Resume an existing call (default: new call)")
    parser.add_argument(
        "--init-db", action="store_true",
        help="Only create the database tables, then exit",
    )
    parser.add_argument(
        "--debug", action="store_true",
        help="Show all log messages including HTTP requests",
    )
    args = parser.parse_args()

    load_dotenv()
    _configure_logging(debug=args.debug)

    orchestrator = create_orchestrator(DATABASE_URL)
    if args.init_db:
        print(f"Database ready at {DATABASE_URL}")
        return

    call_id = args.call_id or f"cli-{uuid.uuid4()}"
    logger.info("Call %s against practice %s", call_id, args.practice_id)

    print("\n" + "=" * 60)
    print("  Dental Booking - tool-call console")
    print("=" * 60)
    print(f"  Call id: {call_id}")
    print("  Enter: <toolName> <json-args>   ('quit' to exit)")
    print("=" * 60 + "\n")

    turn = 0
    while True:
        try:
            line = input("tool> ").strip()
        except (KeyboardInterrupt, EOFError):
            print("\n\nGoodbye!")
            break

        if not line:
            continue
        if line.lower() in ("exit", "quit", "q"):
            print("\nGoodbye!")
            break

        turn += 1
        tool_name, arguments = parse_line(line)
        reply = orchestrator.handle_tool_call(
            call_id, args.practice_id, f"cli-{turn}", tool_name, arguments,
        )
        if reply.error is not None:
            print(f"\n[error] {reply.error}\n")
        else:
            print(f"\nAssistant: {reply.result}\n")


if __name__ == "__main__":
    main()
