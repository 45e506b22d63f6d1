# clients/keystore.py
"""
Local, per-user key storage. Private keys are written here and nowhere else.

Layout under ./.tmp/<profile>/:
    keys/room_<roomId>.json                  creator identity
    keys/chat_<roomId>_<participantId>.json  identity for one conversation
    received/                                reassembled files
"""
from dataclasses import dataclass
from typing import Optional
import json, os, re

from .crypto import (
    KeyPair, encode_public_key, decode_public_key,
    encode_private_key, decode_private_key,
)

CREATOR = "creator"
PARTICIPANT = "participant"

_SAFE_ID = re.compile(r'[A-Za-z0-9_-]{1,64}')


def get_client_dirs(profile: str):
    """Get organized directory structure for a profile."""
    base = f"./.tmp/{profile}"
    return {
        "base": base,
        "keys": f"{base}/keys",
        "received": f"{base}/received"
    }


@dataclass
class Identity:
    role: str
    room_id: str
    key_pair: KeyPair
    participant_id: Optional[str] = None
    peer_public_key: Optional[object] = None


class KeyStore:
    def __init__(self, keys_dir: str):
        self.keys_dir = keys_dir

    def _path(self, room_id: str, participant_id: Optional[str] = None) -> str:
        # SECURITY: IDs landen im Dateinamen, kein Path Traversal
        for value in (room_id, participant_id):
            if value is not None and not _SAFE_ID.fullmatch(value):
                raise ValueError(f"unsafe identifier: {value!r}")
        if participant_id is None:
            return os.path.join(self.keys_dir, f"room_{room_id}.json")
        return os.path.join(self.keys_dir, f"chat_{room_id}_{participant_id}.json")

    def _write(self, path: str, record: dict) -> None:
        os.makedirs(self.keys_dir, exist_ok=True)
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w") as f:
            json.dump(record, f)

    def _read(self, path: str) -> Optional[dict]:
        try:
            with open(path) as f:
                return json.load(f)
        except FileNotFoundError:
            return None

    def save_creator(self, room_id: str, key_pair: KeyPair) -> str:
        path = self._path(room_id)
        self._write(path, {
            "role": CREATOR,
            "roomId": room_id,
            "publicKey": encode_public_key(key_pair.public_key),
            "privateKey": encode_private_key(key_pair.private_key),
        })
        return path

    def save_participant(self, room_id: str, participant_id: str, key_pair: KeyPair, peer_public_key) -> str:
        path = self._path(room_id, participant_id)
        self._write(path, {
            "role": PARTICIPANT,
            "roomId": room_id,
            "participantId": participant_id,
            "publicKey": encode_public_key(key_pair.public_key),
            "privateKey": encode_private_key(key_pair.private_key),
            "peerPublicKey": encode_public_key(peer_public_key),
        })
        return path

    def save_peer_key(self, room_id: str, participant_id: str, peer_public_key) -> str:
        """Creator-side cache of a participant's unwrapped public key."""
        path = self._path(room_id, participant_id)
        self._write(path, {
            "role": CREATOR,
            "roomId": room_id,
            "participantId": participant_id,
            "peerPublicKey": encode_public_key(peer_public_key),
        })
        return path

    def load_peer_key(self, room_id: str, participant_id: str):
        record = self._read(self._path(room_id, participant_id))
        if not record or record.get("role") != CREATOR or "peerPublicKey" not in record:
            return None
        return decode_public_key(record["peerPublicKey"])

    def load(self, room_id: str, participant_id: Optional[str] = None) -> Optional[Identity]:
        """
        Loads the identity for a conversation.

        The participant's own file wins; otherwise the creator identity of the
        room is returned together with any cached peer key.
        """
        if participant_id is not None:
            record = self._read(self._path(room_id, participant_id))
            if record and record.get("role") == PARTICIPANT:
                return Identity(
                    role=PARTICIPANT,
                    room_id=room_id,
                    participant_id=participant_id,
                    key_pair=KeyPair(decode_public_key(record["publicKey"]),
                                     decode_private_key(record["privateKey"])),
                    peer_public_key=decode_public_key(record["peerPublicKey"]),
                )

        record = self._read(self._path(room_id))
        if not record:
            return None
        return Identity(
            role=CREATOR,
            room_id=room_id,
            participant_id=participant_id,
            key_pair=KeyPair(decode_public_key(record["publicKey"]),
                             decode_private_key(record["privateKey"])),
            peer_public_key=self.load_peer_key(room_id, participant_id) if participant_id else None,
        )
