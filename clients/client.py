# clients/client.py
import argparse, asyncio, json, os, sys

import urllib3
import websockets
import websockets.exceptions

from .conversation import (
    Conversation, Joined, TextReceived, FileReceived, MessageAcked,
    MessageRead, PresenceChanged, Unreadable, RoomUnavailable, ChannelError,
)
from .crypto import DecryptionFailure
from .keystore import KeyStore, get_client_dirs, CREATOR
from .session import RelayAPI, SessionBroker, RoomNotFound

# Gleiche Variable wie beim Relay
MAX_FRAME_BYTES = int(os.environ.get("RELAY_MAX_FRAME_BYTES", 1024 * 1024))


def safe_filename(name: str) -> str:
    # SECURITY: Nur Basename, keine Path-Traversal-Reste
    name = os.path.basename(name.replace("\\", "/"))
    name = name.replace("..", "").replace("\0", "")
    if not name or name in (".", ".."):
        name = "received.bin"
    return name


def render(event, received_dir: str) -> None:
    if isinstance(event, Joined):
        print("✓ Joined chat, waiting for peer...")
    elif isinstance(event, TextReceived):
        print(f"peer> {event.text}")
    elif isinstance(event, FileReceived):
        os.makedirs(received_dir, exist_ok=True)
        out_path = os.path.join(received_dir, safe_filename(event.name))
        with open(out_path, "wb") as f:
            f.write(event.data)
        print(f"✓ File received: {out_path} ({len(event.data)} bytes)")
    elif isinstance(event, MessageAcked):
        pass
    elif isinstance(event, MessageRead):
        print(f"  (message {event.ref} read)")
    elif isinstance(event, PresenceChanged):
        print("● peer online" if event.online else "○ peer offline")
    elif isinstance(event, Unreadable):
        print("❌ cannot read message")
    elif isinstance(event, RoomUnavailable):
        print("❌ room unavailable")
    elif isinstance(event, ChannelError):
        print(f"❌ {event.message}")


async def run_chat(ws_url: str, conv: Conversation, received_dir: str, lines=None,
                   max_frame: int = MAX_FRAME_BYTES) -> None:
    """
    Runs one chat session until stdin closes or '/quit' is entered.

    '/file <path>' sends a file; any other line is sent as text.
    """
    async with websockets.connect(ws_url, max_size=max_frame) as ws:
        async def send_all(frames):
            for frame in frames:
                await ws.send(json.dumps(frame, separators=(",", ":")))

        async def reader():
            async for raw in ws:
                try:
                    frame = json.loads(raw)
                except json.JSONDecodeError:
                    continue
                reaction = conv.handle(frame)
                await send_all(reaction.outgoing)
                for event in reaction.events:
                    render(event, received_dir)

        async def ticker():
            while True:
                await asyncio.sleep(1)
                for event in conv.tick().events:
                    render(event, received_dir)

        async def writer():
            loop = asyncio.get_running_loop()
            while True:
                if lines is not None:
                    line = next(lines, "")
                else:
                    line = await loop.run_in_executor(None, sys.stdin.readline)
                if not line:
                    return
                line = line.rstrip("\n")
                if line == "/quit":
                    return
                if line.startswith("/file "):
                    path = line[len("/file "):].strip()
                    try:
                        with open(path, "rb") as f:
                            data = f.read()
                    except OSError as e:
                        print(f"❌ Error reading {path}: {e}")
                        continue
                    ref, frames = conv.send_file(os.path.basename(path), data)
                    print(f"✓ Sending {os.path.basename(path)} in {len(frames)} chunk(s) [#{ref}]")
                elif line:
                    ref, frames = conv.send_text(line)
                else:
                    continue
                await send_all(frames)

        await send_all([conv.join_frame()])
        background = [asyncio.ensure_future(reader()), asyncio.ensure_future(ticker())]
        try:
            await writer()
        finally:
            for task in background:
                task.cancel()
            await asyncio.gather(*background, return_exceptions=True)
    conv.on_channel_close()


def main(argv=None):
    ap = argparse.ArgumentParser()
    ap.add_argument("--server", default="http://127.0.0.1:10359",
                    help="Relay HTTP URL (default: http://127.0.0.1:10359)")
    ap.add_argument("--ws", default="ws://127.0.0.1:10360",
                    help="Relay WebSocket URL (default: ws://127.0.0.1:10360)")
    ap.add_argument("--profile", default="default",
                    help="Local key store profile under ./.tmp/")
    ap.add_argument("--no-verify-ssl", action="store_true",
                    help="Disable SSL verification (for self-signed certs)")
    sub = ap.add_subparsers(dest="cmd", required=True)

    sub.add_parser("create")
    joinp = sub.add_parser("join")
    joinp.add_argument("--room", required=True)
    chatp = sub.add_parser("chat")
    chatp.add_argument("--room", required=True)
    chatp.add_argument("--participant", required=True)
    chatp.add_argument("--max-frame", type=int, default=MAX_FRAME_BYTES,
                       help="Largest inbound frame in bytes, must match the relay")

    args = ap.parse_args(argv)

    verify_ssl = not args.no_verify_ssl
    if not verify_ssl:
        urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)
        print("⚠️  SSL verification disabled (self-signed cert mode)")

    dirs = get_client_dirs(args.profile)
    for dir_path in dirs.values():
        os.makedirs(dir_path, exist_ok=True)
    keystore = KeyStore(dirs["keys"])
    broker = SessionBroker(RelayAPI(args.server, verify=verify_ssl), keystore)

    if args.cmd == "create":
        created = broker.create_room()
        print(f"✓ Room created: {created.room_id}")
        print(f"  Invite: {args.server.rstrip('/')}/{created.room_id}")
        return 0

    if args.cmd == "join":
        try:
            joined = broker.join(args.room)
        except RoomNotFound:
            print("❌ room unavailable")
            return 1
        print(f"✓ Joined room {joined.room_id} as {joined.participant_id}")
        print(f"  Chat: {args.server.rstrip('/')}{joined.chat_url}")
        return 0

    if args.cmd == "chat":
        identity = keystore.load(args.room, args.participant)
        if identity is None:
            print("❌ No keys for this room in this profile")
            return 1
        peer_pub = identity.peer_public_key
        if identity.role == CREATOR and peer_pub is None:
            try:
                peer_pub = broker.peer_public_key(args.room, args.participant,
                                                  identity.key_pair.private_key)
            except RoomNotFound:
                print("❌ room unavailable")
                return 1
            except DecryptionFailure:
                print("❌ cannot read participant key")
                return 1
        conv = Conversation(args.room, args.participant, identity.key_pair.private_key, peer_pub)
        try:
            asyncio.run(run_chat(args.ws, conv, dirs["received"], max_frame=args.max_frame))
        except (OSError, websockets.exceptions.WebSocketException) as e:
            print(f"❌ Channel error: {e}")
            return 1
        return 0


if __name__ == "__main__":
    sys.exit(main())
