# tests/test_server.py
import base64
import pytest
from clients.crypto import encode_public_key, wrap, b64encode, public_key_to_bytes


def b64(data: bytes) -> str:
    return base64.b64encode(data).decode()


def create_room(client, keypair):
    resp = client.post('/api/create-room', json={"publicKey": encode_public_key(keypair.public_key)})
    assert resp.status_code == 200
    return resp.get_json()["roomId"]


class TestCreateRoomEndpoint:
    """Tests für /api/create-room"""

    def test_create_room_returns_id(self, client, keypair):
        room_id = create_room(client, keypair)
        assert isinstance(room_id, str)
        assert len(room_id) == 10

    def test_create_room_ids_differ(self, client, keypair):
        assert create_room(client, keypair) != create_room(client, keypair)

    def test_missing_public_key(self, client):
        """Testet fehlenden Public Key"""
        resp = client.post('/api/create-room', json={})
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "validation_failed"

    def test_invalid_base64(self, client):
        resp = client.post('/api/create-room', json={"publicKey": "not base64!!"})
        assert resp.status_code == 400

    def test_non_json_body(self, client):
        resp = client.post('/api/create-room', data="garbage", content_type="text/plain")
        assert resp.status_code == 400

    def test_oversized_key_rejected(self, client):
        resp = client.post('/api/create-room', json={"publicKey": "A" * 8192})
        assert resp.status_code == 400


class TestCreatorKeyEndpoint:
    """Tests für /api/room/<id>/creator-key"""

    def test_returns_stored_key(self, client, keypair):
        room_id = create_room(client, keypair)
        resp = client.get(f'/api/room/{room_id}/creator-key')
        assert resp.status_code == 200
        assert resp.get_json()["publicKey"] == encode_public_key(keypair.public_key)

    def test_unknown_room(self, client):
        resp = client.get('/api/room/doesnotexist/creator-key')
        assert resp.status_code == 404
        assert resp.get_json() == {"error": "room_unavailable"}

    def test_invalid_room_id_looks_like_unknown(self, client):
        """Ungültige ID ist nicht von unbekannter ID unterscheidbar"""
        resp = client.get('/api/room/bad$id/creator-key')
        assert resp.status_code == 404
        assert resp.get_json() == {"error": "room_unavailable"}


class TestJoinEndpoint:
    """Tests für /api/room/<id>/join"""

    def test_join_success(self, client, keypair, other_keypair):
        room_id = create_room(client, keypair)
        env = wrap(public_key_to_bytes(other_keypair.public_key), keypair.public_key)

        resp = client.post(f'/api/room/{room_id}/join', json={
            "wrappedSymmetricKey": b64encode(env.wrapped_symmetric_key),
            "wrappedPublicKey": b64encode(env.wrapped_payload),
        })
        assert resp.status_code == 200
        data = resp.get_json()
        assert len(data["participantId"]) == 8
        assert data["chatRoomUrl"] == f"/{room_id}/{data['participantId']}"

    def test_join_unknown_room(self, client):
        resp = client.post('/api/room/unknown123/join', json={
            "wrappedSymmetricKey": b64(b"k"), "wrappedPublicKey": b64(b"p")})
        assert resp.status_code == 404

    @pytest.mark.parametrize("body", [
        {},
        {"wrappedSymmetricKey": b64(b"k")},
        {"wrappedPublicKey": b64(b"p")},
        {"wrappedSymmetricKey": "", "wrappedPublicKey": b64(b"p")},
        {"wrappedSymmetricKey": 123, "wrappedPublicKey": b64(b"p")},
    ])
    def test_join_missing_fields(self, client, keypair, body):
        """Fehlende Felder werden vor jeder Verarbeitung abgelehnt"""
        room_id = create_room(client, keypair)
        resp = client.post(f'/api/room/{room_id}/join', json=body)
        assert resp.status_code == 400

    def test_rejected_join_stores_nothing(self, client, keypair):
        import server.app
        room_id = create_room(client, keypair)
        client.post(f'/api/room/{room_id}/join', json={"wrappedSymmetricKey": b64(b"k")})
        assert server.app.REGISTRY._rooms[room_id].participants == {}


class TestParticipantEndpoint:
    """Tests für /api/room/<id>/participant/<pid>"""

    def test_returns_submitted_material(self, client, keypair):
        room_id = create_room(client, keypair)
        body = {"wrappedSymmetricKey": b64(b"wrapped-key"), "wrappedPublicKey": b64(b"wrapped-pub")}
        pid = client.post(f'/api/room/{room_id}/join', json=body).get_json()["participantId"]

        resp = client.get(f'/api/room/{room_id}/participant/{pid}')
        assert resp.status_code == 200
        assert resp.get_json() == body

    def test_unknown_participant(self, client, keypair):
        room_id = create_room(client, keypair)
        resp = client.get(f'/api/room/{room_id}/participant/nobody12')
        assert resp.status_code == 404
        assert resp.get_json() == {"error": "room_unavailable"}

    def test_unknown_room(self, client):
        resp = client.get('/api/room/unknown123/participant/nobody12')
        assert resp.status_code == 404


class TestExpiredRoom:
    """Tests für abgelaufene Räume über HTTP"""

    def test_expired_room_is_404(self, client, keypair, clock):
        import server.app
        from server.storage import RoomRegistry
        server.app.REGISTRY = RoomRegistry(ttl=60, clock=clock)
        room_id = create_room(client, keypair)
        clock.advance(61)
        resp = client.get(f'/api/room/{room_id}/creator-key')
        assert resp.status_code == 404
        assert resp.get_json() == {"error": "room_unavailable"}
