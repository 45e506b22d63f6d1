# server/config.py
"""Relay settings. Every value can be overridden through the environment."""
import os

HOST = os.environ.get("RELAY_HOST", "127.0.0.1")  # Nur localhost, Reverse-Proxy davor
HTTP_PORT = int(os.environ.get("RELAY_HTTP_PORT", "10359"))
WS_PORT = int(os.environ.get("RELAY_WS_PORT", "10360"))

ROOM_TTL_SECONDS = float(os.environ.get("RELAY_ROOM_TTL_SECONDS", 15 * 60))
REAP_INTERVAL_SECONDS = float(os.environ.get("RELAY_REAP_INTERVAL_SECONDS", "5"))

ROOM_ID_LENGTH = 10
PARTICIPANT_ID_LENGTH = 8

# Obergrenze pro WebSocket-Frame und HTTP-Body
MAX_FRAME_BYTES = int(os.environ.get("RELAY_MAX_FRAME_BYTES", 1024 * 1024))

LOG_LEVEL = os.environ.get("RELAY_LOG_LEVEL", "INFO").upper()
