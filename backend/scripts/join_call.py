"""Join a telehealth call room from the command line.

Runs one call participant with aiortc: local media comes from the configured
capture devices or from a media file, signaling goes through the relay.
Notices, chat messages and quality changes are printed until the call ends
or Ctrl-C is pressed.

Usage:
    cd backend
    python scripts/join_call.py --room room-1700000000000-ab12cd --user doctor-1 --role doctor
    python scripts/join_call.py --room room-1 --user patient-1 --source consult.mp4 --chat "Hello"

Environment variables:
- SIGNALING_URL: relay URL (default ws://localhost:8000/ws/signaling)
- SIGNALING_TOKEN: access token for the relay
- VIDEO_DEVICE / AUDIO_DEVICE (+ _FORMAT): capture devices when --source is omitted
"""

import asyncio
import argparse
import logging
from pathlib import Path

from dotenv import load_dotenv

load_dotenv(Path(__file__).parent.parent / "config" / ".env")

from telehealth.webrtc import CallNotice, LocalMedia, MediaAcquisitionError, VideoCall

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def print_notice(notice: CallNotice):
    marker = "!" if notice.destructive else "*"
    print(f"[{marker}] {notice.title}: {notice.description}")


def print_chat(sender_id: str, message: str, timestamp: str):
    print(f"[chat {timestamp}] {sender_id}: {message}")


async def run_call(args: argparse.Namespace) -> int:
    call = VideoCall(
        args.room,
        args.user,
        user_name=args.name or args.user,
        signaling_url=args.url,
        token=args.token,
        role=args.role,
        media=LocalMedia(source=args.source, source_format=args.format),
    )
    call.on_notice = print_notice
    call.on_chat_message = print_chat
    call.on_quality_change = lambda quality: print(f"[quality] {quality}")
    call.on_remote_state = lambda connected: print(f"[peer] {'connected' if connected else 'disconnected'}")
    call.on_remote_screen_share = lambda user_id, active: print(
        f"[screen] {user_id} {'started' if active else 'stopped'} sharing"
    )

    try:
        await call.start()
    except MediaAcquisitionError:
        return 1
    except Exception as e:
        logger.error(f"Failed to join call: {e}")
        return 1

    try:
        if args.chat:
            await call.send_chat(args.chat)
        await call.wait_closed()
    finally:
        await call.end_call()
    return 0


def main():
    parser = argparse.ArgumentParser(description="Join a telehealth call room")
    parser.add_argument("--room", required=True, help="Call room id")
    parser.add_argument("--user", required=True, help="Participant id")
    parser.add_argument("--name", help="Display name")
    parser.add_argument("--role", choices=["doctor", "patient"], help="Participant role")
    parser.add_argument("--source", help="Media file or device URL instead of the configured devices")
    parser.add_argument("--format", help="ffmpeg input format for --source")
    parser.add_argument("--url", help="Signaling relay URL")
    parser.add_argument("--token", help="Relay access token")
    parser.add_argument("--chat", help="Chat message to send after joining")
    args = parser.parse_args()

    try:
        raise SystemExit(asyncio.run(run_call(args)))
    except KeyboardInterrupt:
        logger.info("Call ended by user")


if __name__ == "__main__":
    main()
