# server/events.py
"""
Channel events. Each frame on the wire is {"event": <name>, "data": {...}}.

Inbound events are parsed into one dataclass per kind with a fixed field set;
anything else is rejected with ValidationError before it reaches the hub.
"""
import json
from dataclasses import dataclass
from typing import Optional, Union

from . import config
from .validation import (
    ValidationError, validate_id, validate_b64_field,
    MAX_WRAPPED_KEY_B64, MAX_WRAPPED_PAYLOAD_B64,
)

MAX_REF_LENGTH = 64

JOIN_ROOM = "join-room"
HEARTBEAT = "heartbeat"
SEND_MESSAGE = "send-message"

JOINED = "joined"
PEER_HEARTBEAT = "peer-heartbeat"
PEER_ONLINE = "peer-online"
NEW_MESSAGE = "new-message"
MESSAGE_ACK = "message-ack"
ERROR = "error"


# --- inbound ---
@dataclass(frozen=True)
class JoinRoom:
    room_id: str
    participant_id: str


@dataclass(frozen=True)
class Heartbeat:
    room_id: str
    participant_id: str
    echo: bool = False


@dataclass(frozen=True)
class SendMessage:
    room_id: str
    participant_id: str
    wrapped_symmetric_key: str  # Base64, wird unverändert weitergereicht
    wrapped_payload: str
    ref: Optional[str] = None


InboundEvent = Union[JoinRoom, Heartbeat, SendMessage]


# --- outbound ---
@dataclass(frozen=True)
class Joined:
    room_id: str
    participant_id: str

    def to_frame(self) -> dict:
        return {"event": JOINED, "data": {"success": True, "roomId": self.room_id,
                                          "participantId": self.participant_id}}


@dataclass(frozen=True)
class PeerOnline:
    room_id: str
    participant_id: str

    def to_frame(self) -> dict:
        return {"event": PEER_ONLINE, "data": {"roomId": self.room_id,
                                               "participantId": self.participant_id}}


@dataclass(frozen=True)
class PeerHeartbeat:
    room_id: str
    participant_id: str
    echo: bool

    def to_frame(self) -> dict:
        return {"event": PEER_HEARTBEAT, "data": {"roomId": self.room_id,
                                                  "participantId": self.participant_id,
                                                  "echo": self.echo}}


@dataclass(frozen=True)
class NewMessage:
    wrapped_symmetric_key: str
    wrapped_payload: str
    timestamp: int

    def to_frame(self) -> dict:
        return {"event": NEW_MESSAGE, "data": {"wrappedSymmetricKey": self.wrapped_symmetric_key,
                                               "wrappedPayload": self.wrapped_payload,
                                               "timestamp": self.timestamp}}


@dataclass(frozen=True)
class MessageAck:
    ref: Optional[str]
    timestamp: int

    def to_frame(self) -> dict:
        return {"event": MESSAGE_ACK, "data": {"ref": self.ref, "timestamp": self.timestamp}}


@dataclass(frozen=True)
class ErrorEvent:
    message: str

    def to_frame(self) -> dict:
        return {"event": ERROR, "data": {"message": self.message}}


# --- parsing ---
def _ids(data: dict):
    return validate_id(data.get("roomId")), validate_id(data.get("participantId"))


def parse_event(frame: dict) -> InboundEvent:
    if not isinstance(frame, dict):
        raise ValidationError("Frame must be a JSON object")
    name = frame.get("event")
    data = frame.get("data")
    if not isinstance(data, dict):
        raise ValidationError("Frame data must be a JSON object")

    if name == JOIN_ROOM:
        return JoinRoom(*_ids(data))

    if name == HEARTBEAT:
        echo = data.get("echo", False)
        if not isinstance(echo, bool):
            raise ValidationError("echo must be a boolean")
        return Heartbeat(*_ids(data), echo=echo)

    if name == SEND_MESSAGE:
        room_id, participant_id = _ids(data)
        # Nur Form prüfen, Inhalt bleibt opak
        validate_b64_field(data, "wrappedSymmetricKey", MAX_WRAPPED_KEY_B64)
        validate_b64_field(data, "wrappedPayload", MAX_WRAPPED_PAYLOAD_B64)
        ref = data.get("ref")
        if ref is not None and (not isinstance(ref, str) or len(ref) > MAX_REF_LENGTH):
            raise ValidationError("ref must be a short string")
        return SendMessage(room_id, participant_id,
                           data["wrappedSymmetricKey"], data["wrappedPayload"], ref)

    raise ValidationError("Unknown event")


def decode_frame(raw) -> InboundEvent:
    """Parses one raw text frame. Raises ValidationError on any defect."""
    if isinstance(raw, bytes):
        if len(raw) > config.MAX_FRAME_BYTES:
            raise ValidationError("Frame too large")
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError:
            raise ValidationError("Frame is not UTF-8") from None
    if len(raw) > config.MAX_FRAME_BYTES:
        raise ValidationError("Frame too large")
    try:
        frame = json.loads(raw)
    except json.JSONDecodeError:
        raise ValidationError("Invalid JSON frame") from None
    return parse_event(frame)


def encode_frame(event) -> str:
    return json.dumps(event.to_frame(), separators=(",", ":"))
