# server/channel.py
"""
Room-scoped relay for channel events.

The hub never looks inside an envelope. It forwards heartbeats and
send-message payloads to the other connections of the same
"<roomId>-<participantId>" group and answers the sender with an ack.

A connection is any object with an ``async send(text)`` method. Its room and
participant are fixed by its first accepted join-room and cannot change
afterwards.
"""
import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional, Set

from .events import (
    JoinRoom, Heartbeat, SendMessage,
    Joined, PeerOnline, PeerHeartbeat, NewMessage, MessageAck, ErrorEvent,
    decode_frame, encode_frame,
)
from .storage import RoomRegistry
from .validation import ValidationError

log = logging.getLogger(__name__)

ROOM_UNAVAILABLE = "room unavailable"
MALFORMED_FRAME = "malformed frame"
NOT_JOINED = "not joined"


def now_ms() -> int:
    return int(time.time() * 1000)


def group_key(room_id: str, participant_id: str) -> str:
    return f"{room_id}-{participant_id}"


@dataclass(frozen=True)
class ConnectionRecord:
    room_id: str
    participant_id: str

    @property
    def group(self) -> str:
        return group_key(self.room_id, self.participant_id)


class ChannelHub:
    def __init__(self, registry: RoomRegistry, clock_ms=now_ms):
        self.registry = registry
        self._clock_ms = clock_ms
        self._records: Dict[Any, Optional[ConnectionRecord]] = {}
        self._groups: Dict[str, Set[Any]] = {}

    # --- Verbindungen ---
    def connect(self, conn) -> None:
        self._records[conn] = None

    def disconnect(self, conn) -> None:
        """Drops the connection's record. Does not touch the room."""
        record = self._records.pop(conn, None)
        if record is None:
            return
        members = self._groups.get(record.group)
        if members is not None:
            members.discard(conn)
            if not members:
                del self._groups[record.group]

    def record(self, conn) -> Optional[ConnectionRecord]:
        return self._records.get(conn)

    def members(self, room_id: str, participant_id: str) -> Set[Any]:
        return set(self._groups.get(group_key(room_id, participant_id), ()))

    def __len__(self):
        return len(self._records)

    # --- Senden ---
    async def _send(self, conn, event) -> None:
        await conn.send(encode_frame(event))

    async def _broadcast(self, group: str, event, exclude) -> int:
        peers = [c for c in self._groups.get(group, ()) if c is not exclude]
        if peers:
            text = encode_frame(event)
            await asyncio.gather(*(c.send(text) for c in peers))
        return len(peers)

    # --- Empfang ---
    async def receive(self, conn, raw) -> None:
        try:
            event = decode_frame(raw)
        except ValidationError as e:
            log.warning(f"Rejected frame: {e}")
            await self._send(conn, ErrorEvent(MALFORMED_FRAME))
            return
        await self.dispatch(conn, event)

    async def dispatch(self, conn, event) -> None:
        if conn not in self._records:
            raise KeyError("connection was never registered with connect()")

        if isinstance(event, JoinRoom):
            await self._join(conn, event)
            return

        record = self._records[conn]
        if record is None or record != ConnectionRecord(event.room_id, event.participant_id):
            await self._send(conn, ErrorEvent(NOT_JOINED))
            return
        if not self.registry.touch(event.room_id):
            await self._send(conn, ErrorEvent(ROOM_UNAVAILABLE))
            return

        if isinstance(event, Heartbeat):
            await self._broadcast(record.group,
                                  PeerHeartbeat(event.room_id, event.participant_id, event.echo),
                                  exclude=conn)
        elif isinstance(event, SendMessage):
            ts = self._clock_ms()
            await self._broadcast(record.group,
                                  NewMessage(event.wrapped_symmetric_key, event.wrapped_payload, ts),
                                  exclude=conn)
            await self._send(conn, MessageAck(event.ref, ts))

    async def _join(self, conn, event: JoinRoom) -> None:
        wanted = ConnectionRecord(event.room_id, event.participant_id)
        current = self._records[conn]
        if current is not None and current != wanted:
            log.warning("Connection tried to switch rooms after join")
            await self._send(conn, ErrorEvent(NOT_JOINED))
            return
        # Gleiche Antwort für unbekannten Raum und unbekannten Teilnehmer
        if self.registry.get_participant_record(event.room_id, event.participant_id) is None:
            await self._send(conn, ErrorEvent(ROOM_UNAVAILABLE))
            return
        self._records[conn] = wanted
        self._groups.setdefault(wanted.group, set()).add(conn)
        await self._send(conn, Joined(event.room_id, event.participant_id))
        await self._broadcast(wanted.group, PeerOnline(event.room_id, event.participant_id), exclude=conn)
