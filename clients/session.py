# clients/session.py
"""
Join handshake between a room creator and a participant.

The relay only ever sees the creator's public key and the participant's
public key wrapped under it. The creator unwraps that record once and caches
the result, so its private key is touched a single time per participant.
"""
from dataclasses import dataclass
from typing import Dict, Optional, Tuple
import logging

import requests

from .crypto import (
    KeyPair, Envelope, generate_keypair, wrap, unwrap,
    b64encode, b64decode, encode_public_key, decode_public_key,
    public_key_to_bytes, public_key_from_bytes, RSA_KEY_BITS,
)
from .keystore import KeyStore

log = logging.getLogger(__name__)


class RoomNotFound(LookupError):
    """Room or participant is unknown or expired. Shown as 'room unavailable'."""

    def __init__(self, room_id: str = ""):
        super().__init__("room unavailable")
        self.room_id = room_id


class RelayAPI:
    """Thin requests wrapper around the relay's HTTP endpoints. None means 404."""

    def __init__(self, base_url: str, session=None, verify=True, timeout: float = 10):
        self.base = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.verify = verify
        self.timeout = timeout

    def _get(self, path: str) -> Optional[dict]:
        r = self.session.get(f"{self.base}{path}", verify=self.verify, timeout=self.timeout)
        if r.status_code == 404:
            return None
        r.raise_for_status()
        return r.json()

    def _post(self, path: str, body: dict) -> Optional[dict]:
        r = self.session.post(f"{self.base}{path}", json=body, verify=self.verify, timeout=self.timeout)
        if r.status_code == 404:
            return None
        r.raise_for_status()
        return r.json()

    def create_room(self, public_key_b64: str) -> str:
        data = self._post("/api/create-room", {"publicKey": public_key_b64})
        if data is None:
            raise requests.HTTPError("create-room endpoint missing")
        return data["roomId"]

    def creator_key(self, room_id: str) -> Optional[str]:
        data = self._get(f"/api/room/{room_id}/creator-key")
        return data["publicKey"] if data else None

    def join(self, room_id: str, wrapped_symmetric_key: str, wrapped_public_key: str) -> Optional[dict]:
        return self._post(f"/api/room/{room_id}/join", {
            "wrappedSymmetricKey": wrapped_symmetric_key,
            "wrappedPublicKey": wrapped_public_key,
        })

    def participant_record(self, room_id: str, participant_id: str) -> Optional[dict]:
        return self._get(f"/api/room/{room_id}/participant/{participant_id}")


@dataclass(frozen=True)
class CreatedRoom:
    room_id: str
    key_pair: KeyPair


@dataclass(frozen=True)
class JoinedRoom:
    room_id: str
    participant_id: str
    key_pair: KeyPair
    peer_public_key: object
    chat_url: str


class SessionBroker:
    def __init__(self, api: RelayAPI, keystore: Optional[KeyStore] = None, key_bits: int = RSA_KEY_BITS):
        self.api = api
        self.keystore = keystore
        self.key_bits = key_bits
        self._peer_keys: Dict[Tuple[str, str], object] = {}

    def create_room(self) -> CreatedRoom:
        key_pair = generate_keypair(self.key_bits)
        room_id = self.api.create_room(encode_public_key(key_pair.public_key))
        if self.keystore:
            self.keystore.save_creator(room_id, key_pair)
        log.info(f"Created room {room_id}")
        return CreatedRoom(room_id=room_id, key_pair=key_pair)

    def join(self, room_id: str) -> JoinedRoom:
        """
        Raises:
            RoomNotFound: room unknown or expired (at key fetch or at join)
        """
        creator_key_b64 = self.api.creator_key(room_id)
        if creator_key_b64 is None:
            raise RoomNotFound(room_id)
        creator_pub = decode_public_key(creator_key_b64)

        key_pair = generate_keypair(self.key_bits)
        # Auch der Public Key geht hybrid verschlüsselt raus
        env = wrap(public_key_to_bytes(key_pair.public_key), creator_pub)
        data = self.api.join(room_id, b64encode(env.wrapped_symmetric_key), b64encode(env.wrapped_payload))
        if data is None:
            raise RoomNotFound(room_id)

        participant_id = data["participantId"]
        if self.keystore:
            self.keystore.save_participant(room_id, participant_id, key_pair, creator_pub)
        log.info(f"Joined room {room_id} as {participant_id}")
        return JoinedRoom(
            room_id=room_id,
            participant_id=participant_id,
            key_pair=key_pair,
            peer_public_key=creator_pub,
            chat_url=data.get("chatRoomUrl", f"/{room_id}/{participant_id}"),
        )

    def peer_public_key(self, room_id: str, participant_id: str, creator_private_key):
        """
        Creator side: the participant's public key, unwrapped on first use.

        Raises:
            RoomNotFound: record unknown or expired
            DecryptionFailure: record was not wrapped for this creator
        """
        cache_key = (room_id, participant_id)
        if cache_key in self._peer_keys:
            return self._peer_keys[cache_key]

        pub = self.keystore.load_peer_key(room_id, participant_id) if self.keystore else None
        if pub is None:
            record = self.api.participant_record(room_id, participant_id)
            if record is None:
                raise RoomNotFound(room_id)
            env = Envelope(b64decode(record["wrappedSymmetricKey"]), b64decode(record["wrappedPublicKey"]))
            pub = public_key_from_bytes(unwrap(env, creator_private_key))
            if self.keystore:
                self.keystore.save_peer_key(room_id, participant_id, pub)

        self._peer_keys[cache_key] = pub
        return pub
