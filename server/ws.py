# server/ws.py
"""WebSocket transport for the ChannelHub, one asyncio task per connection."""
import asyncio
import logging
import threading

import websockets
import websockets.exceptions

from . import config
from .channel import ChannelHub

log = logging.getLogger(__name__)


class WebSocketConnection:
    """Adapts a websockets connection to the hub's send(text) interface."""

    def __init__(self, websocket):
        self.websocket = websocket

    @property
    def remote_address(self):
        return getattr(self.websocket, "remote_address", None)

    async def send(self, text: str) -> None:
        try:
            await self.websocket.send(text)
        except websockets.exceptions.ConnectionClosed:
            # Peer ist weg, Transport kümmert sich um Reconnect
            log.warning(f"Dropped frame for closed connection {self.remote_address}")


async def handle_connection(hub: ChannelHub, websocket) -> None:
    conn = WebSocketConnection(websocket)
    hub.connect(conn)
    log.info(f"Channel opened: {conn.remote_address}")
    try:
        async for raw in websocket:
            await hub.receive(conn, raw)
    except websockets.exceptions.ConnectionClosedError as e:
        log.warning(f"Channel {conn.remote_address} closed abnormally: {e}")
    finally:
        hub.disconnect(conn)
        log.info(f"Channel closed: {conn.remote_address}")


async def serve(hub: ChannelHub, host: str = config.HOST, port: int = config.WS_PORT,
                stop: asyncio.Event = None) -> None:
    async def handler(websocket):
        await handle_connection(hub, websocket)

    async with websockets.serve(handler, host, port, max_size=config.MAX_FRAME_BYTES):
        log.info(f"Channel relay listening on ws://{host}:{port}")
        await (stop.wait() if stop is not None else asyncio.Future())


def run_in_thread(hub: ChannelHub, host: str = config.HOST, port: int = config.WS_PORT) -> threading.Thread:
    """Starts the relay on its own event loop in a daemon thread."""
    thread = threading.Thread(target=lambda: asyncio.run(serve(hub, host, port)),
                              name="channel-relay", daemon=True)
    thread.start()
    return thread
