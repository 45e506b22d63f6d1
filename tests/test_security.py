"""
Security Tests - Testet gegen bekannte Angriffsvektoren.

Diese Tests validieren die Sicherheitsmaßnahmen gegen:
- Path Traversal (IDs und Dateinamen)
- Input Validation Bypasses
- Memory Exhaustion (DoS)
- Orakel auf Raum-Existenz
"""
import pytest
import base64
import json
from server.validation import (
    validate_id,
    validate_b64_field,
    validate_public_key,
    validate_wrapped_key_material,
    ValidationError,
    MAX_ID_LENGTH,
    MAX_PUBLIC_KEY_B64,
    MAX_WRAPPED_KEY_B64,
)
from server.events import decode_frame, JoinRoom
from server import config
from clients.keystore import KeyStore
from clients.client import safe_filename


def b64(data: bytes) -> str:
    return base64.b64encode(data).decode()


class TestIdValidation:
    """Tests für Room-/Participant-IDs"""

    def test_valid_ids(self):
        for value in ["abc1234567", "V1StGXR8_Z", "a-b_c", "x"]:
            assert validate_id(value) == value

    def test_malicious_ids_blocked(self):
        """SECURITY: Path Traversal und Injection in IDs"""
        for value in ["../../etc", "room/1", "room id", "room\nid", "room\x00", "<script>", "räum"]:
            with pytest.raises(ValidationError):
                validate_id(value)

    def test_length_limit(self):
        """SECURITY: Verhindert DoS durch extrem lange IDs"""
        with pytest.raises(ValidationError, match="too long"):
            validate_id("a" * (MAX_ID_LENGTH + 1))

    @pytest.mark.parametrize("value", [None, "", 123, ["a"]])
    def test_missing_or_wrong_type(self, value):
        with pytest.raises(ValidationError):
            validate_id(value)


class TestBase64Fields:
    """Tests für Base64-Felder in Requests"""

    def test_decodes_valid_field(self):
        assert validate_b64_field({"k": b64(b"data")}, "k", 100) == b"data"

    def test_non_alphabet_rejected(self):
        """SECURITY: Striktes Alphabet, keine stillen Korrekturen"""
        with pytest.raises(ValidationError, match="base64"):
            validate_b64_field({"k": "abc$def"}, "k", 100)

    def test_non_ascii_rejected(self):
        with pytest.raises(ValidationError, match="base64"):
            validate_b64_field({"k": "äöü="}, "k", 100)

    def test_length_checked_before_decoding(self):
        """SECURITY: Memory Exhaustion wird vor dem Dekodieren abgefangen"""
        with pytest.raises(ValidationError, match="too large"):
            validate_b64_field({"k": "A" * 101}, "k", 100)

    def test_body_must_be_object(self):
        with pytest.raises(ValidationError, match="JSON object"):
            validate_b64_field(["k"], "k", 100)

    def test_public_key_limit(self):
        with pytest.raises(ValidationError):
            validate_public_key({"publicKey": "A" * (MAX_PUBLIC_KEY_B64 + 4)})

    def test_wrapped_key_material_requires_both(self):
        """Fehlende Felder werden vor jeder Krypto-Operation abgelehnt"""
        with pytest.raises(ValidationError, match="wrappedPublicKey"):
            validate_wrapped_key_material({"wrappedSymmetricKey": b64(b"k")})
        with pytest.raises(ValidationError, match="wrappedSymmetricKey"):
            validate_wrapped_key_material({"wrappedPublicKey": b64(b"p")})

    def test_wrapped_key_limit(self):
        with pytest.raises(ValidationError, match="too large"):
            validate_wrapped_key_material({"wrappedSymmetricKey": "A" * (MAX_WRAPPED_KEY_B64 + 4),
                                           "wrappedPublicKey": b64(b"p")})


class TestFrameLimits:
    """Tests für WebSocket-Frames"""

    def test_oversized_frame_rejected(self):
        """SECURITY: Frames über dem Limit werden nicht geparst"""
        raw = "x" * (config.MAX_FRAME_BYTES + 1)
        with pytest.raises(ValidationError, match="too large"):
            decode_frame(raw)

    def test_invalid_utf8_rejected(self):
        with pytest.raises(ValidationError, match="UTF-8"):
            decode_frame(b"\xff\xfe\xfd")

    def test_unknown_fields_dropped(self):
        raw = json.dumps({"event": "join-room", "data": {
            "roomId": "r", "participantId": "p", "__class__": "x"}})
        assert decode_frame(raw) == JoinRoom("r", "p")

    def test_trailing_newline_in_id_rejected(self):
        with pytest.raises(ValidationError):
            validate_id("room\n")


class TestRoomExistenceOracle:
    """SECURITY: Unbekannt, abgelaufen und ungültig sehen gleich aus"""

    def test_same_response_for_all_not_found_cases(self, client, keypair):
        from clients.crypto import encode_public_key
        room_id = client.post('/api/create-room', json={
            "publicKey": encode_public_key(keypair.public_key)}).get_json()["roomId"]

        responses = [
            client.get('/api/room/neverexist/creator-key'),
            client.get('/api/room/bad.id/creator-key'),
            client.get(f'/api/room/{room_id}/participant/nobody12'),
            client.get('/api/room/neverexist/participant/nobody12'),
        ]
        for resp in responses:
            assert resp.status_code == 404
            assert resp.get_json() == {"error": "room_unavailable"}

    def test_oversized_body_rejected(self, client):
        """SECURITY: Request-Body über dem Limit"""
        body = json.dumps({"publicKey": "A" * (2 * config.MAX_FRAME_BYTES + 10)})
        resp = client.post('/api/create-room', data=body, content_type="application/json")
        assert resp.status_code == 413


class TestLocalFiles:
    """Tests für lokale Schlüssel- und Empfangsdateien"""

    def test_keystore_rejects_traversal_ids(self, temp_dir, keypair):
        """SECURITY: IDs aus dem Netz landen nicht als Pfad im Dateisystem"""
        store = KeyStore(str(temp_dir))
        for bad in ["../evil", "a/b", "..", ""]:
            with pytest.raises(ValueError):
                store.save_creator(bad, keypair)

    def test_private_key_file_permissions(self, temp_dir, keypair):
        """SECURITY: Private Keys nur für den Besitzer lesbar"""
        import os
        import stat
        path = KeyStore(str(temp_dir)).save_creator("abc1234567", keypair)
        assert stat.S_IMODE(os.stat(path).st_mode) == 0o600

    @pytest.mark.parametrize("name,expected", [
        ("../../etc/passwd", "passwd"),
        ("..\\..\\windows\\win.ini", "win.ini"),
        ("/home/user/secret.txt", "secret.txt"),
        ("..", "received.bin"),
        ("", "received.bin"),
    ])
    def test_received_filename_sanitized(self, name, expected):
        assert safe_filename(name) == expected

    def test_null_byte_removed(self):
        assert "\x00" not in safe_filename("safe.txt\x00evil.exe")
