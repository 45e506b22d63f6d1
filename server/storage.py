# server/storage.py
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional
import logging, secrets, string, threading, time

from . import config
from .expiry import ExpiryScheduler

log = logging.getLogger(__name__)

ID_ALPHABET = string.ascii_letters + string.digits + "_-"  # nanoid URL-Alphabet


def generate_id(length: int) -> str:
    return "".join(secrets.choice(ID_ALPHABET) for _ in range(length))


@dataclass(frozen=True)
class ParticipantRecord:
    wrapped_symmetric_key: bytes  # RSA-OAEP(creator_pub, aes_key)
    wrapped_public_key: bytes     # AES-GCM(aes_key, participant_pub)


@dataclass
class Room:
    id: str
    creator_public_key: bytes
    participants: Dict[str, ParticipantRecord] = field(default_factory=dict)
    last_activity: float = 0.0
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)


class RoomRegistry:
    """
    In-memory rooms with a sliding TTL.

    Every successful call resets the room's deadline. None/False is the
    not-found answer for unknown and expired rooms alike; nothing here raises
    for a missing room. Operations on one room serialize on that room's lock,
    the map lock only covers inserting and deleting entries. Deleting takes
    the map lock and then the room lock, so an operation that already holds
    the room lock rechecks that its room is still in the map.
    """

    def __init__(self, ttl: float = config.ROOM_TTL_SECONDS,
                 clock: Callable[[], float] = time.monotonic,
                 new_id: Callable[[int], str] = generate_id):
        self.clock = clock
        self._new_id = new_id
        self._rooms: Dict[str, Room] = {}
        self._map_lock = threading.Lock()
        self._expiry = ExpiryScheduler(ttl, clock)

    # --- intern ---
    def _live_room(self, room_id: str) -> Optional[Room]:
        room = self._rooms.get(room_id)
        if room is None:
            return None
        # Reaper war noch nicht dran
        if self._expiry.is_due(room_id) and self._delete_expired(room_id):
            return None
        return room

    def _current(self, room: Room) -> bool:
        """Call with room.lock held. False once the room left the map."""
        return self._rooms.get(room.id) is room

    def _refresh(self, room: Room) -> None:
        room.last_activity = self.clock()
        self._expiry.schedule(room.id)

    def _delete_expired(self, room_id: str) -> bool:
        # Reihenfolge: Map-Lock, dann Raum-Lock
        with self._map_lock:
            room = self._rooms.get(room_id)
            if room is None:
                return False
            with room.lock:
                deadline = self._expiry.deadline(room_id)
                if deadline is not None and not self._expiry.is_due(room_id):
                    return False
                del self._rooms[room_id]
                self._expiry.cancel(room_id)
        log.info(f"Room {room_id} expired, removed with {len(room.participants)} participant(s)")
        return True

    # --- API ---
    def create_room(self, creator_public_key: bytes) -> str:
        with self._map_lock:
            room_id = self._new_id(config.ROOM_ID_LENGTH)
            while room_id in self._rooms:
                room_id = self._new_id(config.ROOM_ID_LENGTH)
            room = Room(id=room_id, creator_public_key=bytes(creator_public_key))
            self._rooms[room_id] = room
            self._refresh(room)
        log.info(f"Created room {room_id}")
        return room_id

    def get_creator_key(self, room_id: str) -> Optional[bytes]:
        room = self._live_room(room_id)
        if room is None:
            return None
        with room.lock:
            if not self._current(room):
                return None
            self._refresh(room)
            return room.creator_public_key

    def join(self, room_id: str, wrapped_symmetric_key: bytes, wrapped_public_key: bytes) -> Optional[str]:
        room = self._live_room(room_id)
        if room is None:
            return None
        with room.lock:
            if not self._current(room):
                return None
            participant_id = self._new_id(config.PARTICIPANT_ID_LENGTH)
            while participant_id in room.participants:
                participant_id = self._new_id(config.PARTICIPANT_ID_LENGTH)
            room.participants[participant_id] = ParticipantRecord(
                wrapped_symmetric_key=bytes(wrapped_symmetric_key),
                wrapped_public_key=bytes(wrapped_public_key),
            )
            self._refresh(room)
        log.info(f"Participant {participant_id} joined room {room_id}")
        return participant_id

    def get_participant_record(self, room_id: str, participant_id: str) -> Optional[ParticipantRecord]:
        room = self._live_room(room_id)
        if room is None:
            return None
        with room.lock:
            if not self._current(room):
                return None
            record = room.participants.get(participant_id)
            if record is not None:
                self._refresh(room)
            return record

    def touch(self, room_id: str) -> bool:
        room = self._live_room(room_id)
        if room is None:
            return False
        with room.lock:
            if not self._current(room):
                return False
            self._refresh(room)
        return True

    def reap(self, now: Optional[float] = None) -> List[str]:
        """Deletes every room whose deadline has passed. Returns their ids."""
        expired = []
        for rid in self._expiry.pop_due(now):
            # Zwischenzeitlich neu geplant -> bleibt
            if self._delete_expired(rid):
                expired.append(rid)
        return expired

    def deadline(self, room_id: str) -> Optional[float]:
        return self._expiry.deadline(room_id)

    def clear(self) -> None:
        with self._map_lock:
            for room in list(self._rooms.values()):
                with room.lock:
                    del self._rooms[room.id]
            self._expiry.clear()

    def __contains__(self, room_id):
        return self._live_room(room_id) is not None

    def __len__(self):
        return len(self._rooms)
