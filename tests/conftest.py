# tests/conftest.py
import pytest
import os
import tempfile
from pathlib import Path
from clients.crypto import generate_keypair
from server.storage import RoomRegistry


class FakeClock:
    """Manuell vorgestellte Uhr für TTL- und Presence-Tests"""

    def __init__(self, start=0.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeConnection:
    """Sammelt alles, was der Hub an eine Verbindung schickt"""

    def __init__(self, name="conn"):
        self.name = name
        self.sent = []

    async def send(self, text):
        self.sent.append(text)

    def frames(self):
        import json
        return [json.loads(t) for t in self.sent]

    def events(self):
        return [f["event"] for f in self.frames()]


class _Response:
    """requests-kompatible Antwort über Flask Test-Response"""

    def __init__(self, resp):
        self.status_code = resp.status_code
        self._resp = resp

    def json(self):
        return self._resp.get_json()

    def raise_for_status(self):
        import requests
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code}")


class FlaskSession:
    """Adapter, damit RelayAPI direkt gegen den Flask Test-Client läuft"""

    def __init__(self, test_client):
        self.client = test_client

    def get(self, url, **kwargs):
        return _Response(self.client.get(url))

    def post(self, url, json=None, **kwargs):
        return _Response(self.client.post(url, json=json))


@pytest.fixture
def temp_dir():
    """Temporäres Verzeichnis für Tests"""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture(scope="session")
def keypair():
    """RSA-Schlüsselpaar (2048 Bit) für Tests"""
    return generate_keypair(bits=2048)


@pytest.fixture(scope="session")
def other_keypair():
    """Zweites, unabhängiges Schlüsselpaar"""
    return generate_keypair(bits=2048)


@pytest.fixture
def aes_key():
    """Generiert einen zufälligen AES-256 Key"""
    return os.urandom(32)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_conn():
    return FakeConnection


@pytest.fixture
def make_clock():
    return FakeClock


@pytest.fixture
def registry(clock):
    """Frische Registry mit manueller Uhr"""
    return RoomRegistry(ttl=15 * 60, clock=clock)


@pytest.fixture
def app():
    """Flask Test-App mit frischer Registry"""
    from server.app import app as flask_app
    import server.app

    flask_app.config['TESTING'] = True
    # Reset Registry für jeden Test
    server.app.REGISTRY = RoomRegistry()
    return flask_app


@pytest.fixture
def client(app):
    """Flask Test-Client"""
    return app.test_client()


@pytest.fixture
def relay_api(client):
    """RelayAPI, die über den Flask Test-Client spricht"""
    from clients.session import RelayAPI
    return RelayAPI("", session=FlaskSession(client))
