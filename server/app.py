# server/app.py
from flask import Flask, request, jsonify
import base64, logging

from . import config
from .storage import RoomRegistry
from .validation import (
    validate_id,
    validate_public_key,
    validate_wrapped_key_material,
    ValidationError
)

app = Flask(__name__)
app.config["MAX_CONTENT_LENGTH"] = 2 * config.MAX_FRAME_BYTES
REGISTRY = RoomRegistry()

logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s %(message)s")
log = logging.getLogger(__name__)


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")

def room_unavailable():
    # Unbekannt, abgelaufen oder falsche ID: absichtlich nicht unterscheidbar
    return jsonify({"error": "room_unavailable"}), 404

def _valid_id(value: str) -> bool:
    try:
        validate_id(value)
        return True
    except ValidationError:
        return False


@app.post("/api/create-room")
def create_room():
    """
    Body: { "publicKey": "<base64 SPKI DER>" }
    Response: { "roomId": "..." }
    """
    try:
        public_key = validate_public_key(request.get_json(silent=True))
    except ValidationError as e:
        log.warning(f"Validation error in create_room: {e}")
        return jsonify({"error": "validation_failed", "detail": str(e)}), 400

    room_id = REGISTRY.create_room(public_key)
    return jsonify({"roomId": room_id})

@app.get("/api/room/<room_id>/creator-key")
def creator_key(room_id: str):
    if not _valid_id(room_id):
        return room_unavailable()
    key = REGISTRY.get_creator_key(room_id)
    if key is None:
        return room_unavailable()
    return jsonify({"publicKey": _b64(key)})

@app.post("/api/room/<room_id>/join")
def join(room_id: str):
    """
    Body: {
      "wrappedSymmetricKey": "...",  # RSA-OAEP(creator_pub, aes_key)
      "wrappedPublicKey": "..."      # AES-GCM(aes_key, participant_pub)
    }
    Response: { "participantId": "...", "chatRoomUrl": "/<roomId>/<participantId>" }
    """
    if not _valid_id(room_id):
        return room_unavailable()
    try:
        wrapped_key, wrapped_pub = validate_wrapped_key_material(request.get_json(silent=True))
    except ValidationError as e:
        log.warning(f"Validation error in join: {e}")
        return jsonify({"error": "validation_failed", "detail": str(e)}), 400

    participant_id = REGISTRY.join(room_id, wrapped_key, wrapped_pub)
    if participant_id is None:
        return room_unavailable()
    return jsonify({"participantId": participant_id,
                    "chatRoomUrl": f"/{room_id}/{participant_id}"})

@app.get("/api/room/<room_id>/participant/<participant_id>")
def participant(room_id: str, participant_id: str):
    if not (_valid_id(room_id) and _valid_id(participant_id)):
        return room_unavailable()
    record = REGISTRY.get_participant_record(room_id, participant_id)
    if record is None:
        return room_unavailable()
    return jsonify({"wrappedSymmetricKey": _b64(record.wrapped_symmetric_key),
                    "wrappedPublicKey": _b64(record.wrapped_public_key)})

@app.errorhandler(413)
def too_large(_e):
    return jsonify({"error": "validation_failed", "detail": "Request body too large"}), 413


def main():
    from .channel import ChannelHub
    from .expiry import Reaper
    from .ws import run_in_thread

    reaper = Reaper(REGISTRY.reap, config.REAP_INTERVAL_SECONDS)
    reaper.start()
    run_in_thread(ChannelHub(REGISTRY), config.HOST, config.WS_PORT)
    log.info(f"HTTP API on http://{config.HOST}:{config.HTTP_PORT}")
    try:
        app.run(debug=False, host=config.HOST, port=config.HTTP_PORT)
    finally:
        reaper.stop()
        REGISTRY.clear()


if __name__ == "__main__":
    main()
