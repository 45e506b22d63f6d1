# clients/conversation.py
"""
One encrypted conversation between two parties of a room.

Outgoing text and file chunks are each wrapped independently under the peer's
public key. Inbound frames from the relay are turned into events; the caller
sends whatever frames the returned Reaction lists.
"""
from dataclasses import dataclass, field
from typing import List, Optional
import itertools, json, logging

from .chunks import ChunkAssembler, FileChunk, split_file, DEFAULT_CHUNK_SIZE
from .crypto import Envelope, DecryptionFailure, KeyFormatError, wrap, unwrap, b64encode, b64decode
from .presence import PresenceTracker

log = logging.getLogger(__name__)

KIND_TEXT = "text"
KIND_FILE_CHUNK = "file-chunk"


# --- Events an die Oberfläche ---
@dataclass(frozen=True)
class Joined:
    pass

@dataclass(frozen=True)
class TextReceived:
    text: str
    timestamp: Optional[int]

@dataclass(frozen=True)
class FileReceived:
    name: str
    data: bytes
    timestamp: Optional[int]

@dataclass(frozen=True)
class MessageAcked:
    ref: Optional[str]
    timestamp: int

@dataclass(frozen=True)
class MessageRead:
    ref: str

@dataclass(frozen=True)
class PresenceChanged:
    online: bool

@dataclass(frozen=True)
class Unreadable:
    """Shown as 'cannot read message'. Carries no detail."""
    pass

@dataclass(frozen=True)
class RoomUnavailable:
    pass

@dataclass(frozen=True)
class ChannelError:
    message: str


@dataclass
class Reaction:
    outgoing: List[dict] = field(default_factory=list)
    events: List[object] = field(default_factory=list)


class Conversation:
    def __init__(self, room_id: str, participant_id: str, own_private_key, peer_public_key,
                 presence: Optional[PresenceTracker] = None,
                 max_chunk_size: int = DEFAULT_CHUNK_SIZE):
        self.room_id = room_id
        self.participant_id = participant_id
        self._private_key = own_private_key
        self._peer_public_key = peer_public_key
        self.presence = presence or PresenceTracker()
        self.assembler = ChunkAssembler()
        self.max_chunk_size = max_chunk_size
        self._refs = itertools.count(1)

    # --- Frames bauen ---
    def _ids(self) -> dict:
        return {"roomId": self.room_id, "participantId": self.participant_id}

    def join_frame(self) -> dict:
        return {"event": "join-room", "data": self._ids()}

    def heartbeat_frame(self, echo: bool = False) -> dict:
        return {"event": "heartbeat", "data": {**self._ids(), "echo": echo}}

    def _message_frame(self, content: dict, ref: str) -> dict:
        plaintext = json.dumps(content, separators=(",", ":")).encode("utf-8")
        env = wrap(plaintext, self._peer_public_key)
        return {"event": "send-message", "data": {**self._ids(), **env.to_wire(), "ref": ref}}

    def send_text(self, text: str, now: Optional[float] = None):
        """Returns (message_ref, [frame])."""
        ref = str(next(self._refs))
        frame = self._message_frame({"kind": KIND_TEXT, "text": text}, ref)
        self.presence.on_message_sent(ref, now)
        return ref, [frame]

    def send_file(self, name: str, data: bytes, now: Optional[float] = None):
        """Returns (message_ref, frames), one frame per chunk, in index order."""
        ref = str(next(self._refs))
        frames = [
            self._message_frame({
                "kind": KIND_FILE_CHUNK,
                "name": c.file_name,
                "size": c.file_size,
                "index": c.index,
                "total": c.total,
                "data": b64encode(c.data),
            }, f"{ref}.{c.index}")
            for c in split_file(name, data, self.max_chunk_size)
        ]
        self.presence.on_message_sent(ref, now)
        return ref, frames

    # --- Frames verarbeiten ---
    def handle(self, frame: dict, now: Optional[float] = None) -> Reaction:
        reaction = Reaction()
        if not isinstance(frame, dict):
            frame = {}
        name = frame.get("event")
        data = frame.get("data")
        if not isinstance(data, dict):
            data = {}

        if name == "joined":
            reaction.events.append(Joined())
            if self.presence.on_channel_open():
                reaction.outgoing.append(self.heartbeat_frame())

        elif name == "peer-heartbeat":
            outcome = self.presence.on_peer_heartbeat(bool(data.get("echo", False)), now)
            if outcome.state_changed:
                reaction.events.append(PresenceChanged(online=True))
            if outcome.read_ref is not None:
                reaction.events.append(MessageRead(outcome.read_ref))
            if outcome.send_echo:
                reaction.outgoing.append(self.heartbeat_frame(echo=True))

        elif name == "peer-online":
            outcome = self.presence.on_peer_online(now)
            if outcome.state_changed:
                reaction.events.append(PresenceChanged(online=True))
            # Als Echo, damit der Neue nicht erneut antwortet
            if outcome.send_echo:
                reaction.outgoing.append(self.heartbeat_frame(echo=True))

        elif name == "new-message":
            event = self._open(data)
            # Zwischen-Chunks lösen keinen Heartbeat aus
            if event is not None:
                reaction.events.append(event)
                if self.presence.on_message_received():
                    reaction.outgoing.append(self.heartbeat_frame())

        elif name == "message-ack":
            reaction.events.append(MessageAcked(data.get("ref"), data.get("timestamp")))

        elif name == "error":
            message = data.get("message", "")
            if message == "room unavailable":
                reaction.events.append(RoomUnavailable())
            else:
                reaction.events.append(ChannelError(message))

        else:
            log.warning(f"Ignoring unknown frame {name!r}")
        return reaction

    def _open(self, data: dict):
        try:
            env = Envelope.from_wire(data)
            content = json.loads(unwrap(env, self._private_key).decode("utf-8"))
        except (KeyFormatError, DecryptionFailure, UnicodeDecodeError, json.JSONDecodeError, RecursionError):
            return Unreadable()
        if not isinstance(content, dict):
            return Unreadable()

        kind = content.get("kind")
        if kind == KIND_TEXT and isinstance(content.get("text"), str):
            return TextReceived(content["text"], env.timestamp)
        if kind == KIND_FILE_CHUNK:
            return self._ingest(content, env.timestamp)
        return Unreadable()

    def _ingest(self, content: dict, timestamp):
        try:
            fields = [content["size"], content["index"], content["total"]]
            # Keine Koerzierung: Floats, Bools und Strings sind ungültig
            if not all(isinstance(v, int) and not isinstance(v, bool) for v in fields):
                raise TypeError("chunk header must be integers")
            chunk = FileChunk(
                file_name=str(content["name"]),
                file_size=fields[0],
                index=fields[1],
                total=fields[2],
                data=b64decode(content["data"]),
            )
            payload = self.assembler.ingest(chunk)
        except (KeyError, TypeError, ValueError, OverflowError):
            # ChunkError und KeyFormatError sind ValueErrors
            log.warning("Dropped malformed file chunk")
            return Unreadable()
        if payload is None:
            return None
        return FileReceived(chunk.file_name, payload, timestamp)

    def tick(self, now: Optional[float] = None) -> Reaction:
        reaction = Reaction()
        if self.presence.tick(now):
            reaction.events.append(PresenceChanged(online=False))
        return reaction

    def on_foreground(self) -> Reaction:
        reaction = Reaction()
        if self.presence.on_foreground():
            reaction.outgoing.append(self.heartbeat_frame())
        return reaction

    def on_background(self) -> None:
        self.presence.on_background()

    def on_channel_close(self) -> None:
        self.presence.on_channel_close()
