"""
    wonderelo serve [--host H] [--port P] [--reload]
    wonderelo follow --token T --round R --participant P

`follow` reads commands from stdin: confirm | decline | checkin CODE | met |
report | noshow PARTICIPANT_ID [NOTES...] | share PARTNER_ID=yes|no ... |
skip | back | dismiss | refresh | quit
"""

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

import uvicorn

from .client import WondereloClient, short_token
from .config import get_settings
from .flow import FlowState, ParticipantFlow
from .views import render

logger = logging.getLogger(__name__)


def _parse_preferences(words: List[str]) -> dict:
    preferences = {}
    for word in words:
        partner_id, _, answer = word.partition("=")
        preferences[partner_id] = answer.lower() in ("y", "yes", "1", "true")
    return preferences


async def _dispatch(flow: ParticipantFlow, line: str) -> bool:
    words = line.split()
    if not words:
        return True
    command, args = words[0].lower(), words[1:]

    if command in ("quit", "exit", "q"):
        return False
    if command == "confirm":
        await flow.confirm_attendance()
    elif command == "decline":
        await flow.decline()
    elif command == "checkin":
        if args:
            await flow.check_in(args[0])
        else:
            flow.open_check_in()
    elif command == "met":
        await flow.confirm_meet()
    elif command == "report":
        flow.open_no_show_report()
    elif command == "noshow" and args:
        await flow.report_no_show(args[0], " ".join(args[1:]))
    elif command == "share":
        await flow.submit_contact_sharing(_parse_preferences(args))
    elif command == "skip":
        await flow.skip_contact_sharing()
    elif command in ("back", "cancel"):
        flow.close_overlay()
    elif command == "dismiss":
        flow.dismiss_error()
    elif command == "refresh":
        await flow.refresh()
    else:
        print(f"Unknown command: {line.strip()}")
    return True


async def follow(token: str, round_id: str, participant_id: str) -> None:
    settings = get_settings()
    client = WondereloClient(token=token)
    flow = ParticipantFlow(
        client,
        round_id,
        participant_id,
        interval=settings.poll_interval,
        max_attempts=settings.poll_max_attempts,
    )

    last = {"text": None}

    def show(state: FlowState) -> None:
        text = render(state).as_text()
        if text != last["text"]:
            last["text"] = text
            print("\n" + text, flush=True)

    logger.info("following round %s as %s (token %s)", round_id, participant_id, short_token(token))
    unsubscribe = flow.subscribe(show)
    await flow.start()
    try:
        while True:
            line = await asyncio.to_thread(sys.stdin.readline)
            if not line:
                break
            if not await _dispatch(flow, line):
                break
    finally:
        unsubscribe()
        await flow.stop()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="wonderelo", description="Wonderelo networking rounds")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="run the API server")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    serve.add_argument("--reload", action="store_true")

    follow_cmd = sub.add_parser("follow", help="follow a round as a participant")
    follow_cmd.add_argument("--token", required=True)
    follow_cmd.add_argument("--round", dest="round_id", required=True)
    follow_cmd.add_argument("--participant", dest="participant_id", required=True)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "serve":
        uvicorn.run("wonderelo.main:app", host=args.host, port=args.port, reload=args.reload)
        return 0

    try:
        asyncio.run(follow(args.token, args.round_id, args.participant_id))
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    sys.exit(main())
