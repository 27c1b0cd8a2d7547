"""Command line entry point: join a call room and optionally call someone.

    python -m callroom.client --url ws://localhost:8000/api/rtc/signaling --username bot --call alice
"""
from __future__ import annotations

import argparse
import asyncio
import logging

from ..schemas.signaling import SignalEvent
from .room import RoomClient
from .transport import SignalingClient

logger = logging.getLogger("callroom.client")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Headless call room participant")
    parser.add_argument("--url", default="ws://localhost:8000/api/rtc/signaling", help="signaling websocket URL")
    parser.add_argument("--username", required=True)
    parser.add_argument("--call", dest="callee", help="username to call once joined")
    parser.add_argument("--media", help="capture device or file for local audio/video")
    parser.add_argument("--media-format", help="ffmpeg input format, e.g. v4l2 or avfoundation")
    parser.add_argument("--youtube", help="YouTube URL to share with the room after joining")
    parser.add_argument("--verbose", action="store_true")
    return parser


async def run(args: argparse.Namespace) -> None:
    async with SignalingClient(args.url) as transport:
        room = RoomClient(transport, args.username)
        if args.media:
            await room.peers.acquire_local_media(args.media, media_format=args.media_format)
        await room.join()
        while args.username not in room.directory:
            await transport.wait_for(SignalEvent.JOINED, timeout=10)
        logger.info("Joined as %s; in the room: %s", args.username, ", ".join(room.participants))

        if args.youtube:
            await room.media.load_youtube(args.youtube)
        if args.callee:
            await room.call(args.callee)

        try:
            await asyncio.Future()
        finally:
            await room.peers.close()


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        asyncio.run(run(args))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
