# clients/presence.py
"""
Peer liveness and read-receipt inference from heartbeat frames.

Heartbeats travel over the same relay as messages. A side sends one heartbeat
when it connects and when it comes to the foreground, answers every plain
heartbeat with exactly one echo, and never answers an echo.

The read receipt is a heuristic: a peer heartbeat within
READ_RECEIPT_WINDOW_SECONDS of our last send is taken to mean the peer saw
that message. It is approximate and not a delivery acknowledgment.
"""
import enum
import time
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

HEARTBEAT_TIMEOUT_SECONDS = 5.0
READ_RECEIPT_WINDOW_SECONDS = 3.0


class PresenceState(enum.Enum):
    CONNECTING = "connecting"
    CONNECTED_ALONE = "connected_alone"
    CONNECTED_WITH_PEER = "connected_with_peer"


@dataclass(frozen=True)
class HeartbeatOutcome:
    send_echo: bool
    read_ref: Optional[str] = None
    state_changed: bool = False


class PresenceTracker:
    def __init__(self, clock: Callable[[], float] = time.monotonic,
                 timeout: float = HEARTBEAT_TIMEOUT_SECONDS,
                 read_window: float = READ_RECEIPT_WINDOW_SECONDS):
        self._clock = clock
        self.timeout = timeout
        self.read_window = read_window
        self.state = PresenceState.CONNECTING
        self.foreground = True
        self.last_heartbeat: Optional[float] = None
        self._silence_deadline: Optional[float] = None
        self._pending_read: Optional[Tuple[str, float]] = None

    @property
    def online(self) -> bool:
        return self.state is PresenceState.CONNECTED_WITH_PEER

    def _now(self, now):
        return self._clock() if now is None else now

    # --- Kanal ---
    def on_channel_open(self) -> bool:
        """Returns True if a heartbeat should be sent now."""
        self.state = PresenceState.CONNECTED_ALONE
        return self.foreground

    def on_channel_close(self) -> None:
        # Nichts wird nach Reconnect nachgeholt
        self.state = PresenceState.CONNECTING
        self.last_heartbeat = None
        self._silence_deadline = None
        self._pending_read = None

    # --- Sichtbarkeit ---
    def on_foreground(self) -> bool:
        self.foreground = True
        return self.state is not PresenceState.CONNECTING

    def on_background(self) -> None:
        self.foreground = False

    # --- Nachrichten ---
    def on_message_sent(self, message_ref: str, now: Optional[float] = None) -> None:
        self._pending_read = (message_ref, self._now(now))

    def on_message_received(self) -> bool:
        """A foregrounded reader announces itself so the sender can infer 'read'."""
        return self.foreground and self.state is not PresenceState.CONNECTING

    def _mark_alive(self, now: float) -> bool:
        changed = self.state is not PresenceState.CONNECTED_WITH_PEER
        self.state = PresenceState.CONNECTED_WITH_PEER
        self.last_heartbeat = now
        self._silence_deadline = now + self.timeout
        return changed

    def on_peer_online(self, now: Optional[float] = None) -> HeartbeatOutcome:
        """The relay saw the peer join. Liveness only, never a read mark."""
        changed = self._mark_alive(self._now(now))
        return HeartbeatOutcome(send_echo=self.foreground, state_changed=changed)

    def on_peer_heartbeat(self, echo: bool = False, now: Optional[float] = None) -> HeartbeatOutcome:
        now = self._now(now)
        changed = self._mark_alive(now)

        read_ref = None
        if self._pending_read is not None:
            ref, sent_at = self._pending_read
            self._pending_read = None
            if 0 <= now - sent_at <= self.read_window:
                read_ref = ref

        return HeartbeatOutcome(
            send_echo=not echo and self.foreground,
            read_ref=read_ref,
            state_changed=changed,
        )

    def tick(self, now: Optional[float] = None) -> bool:
        """Applies the silence timeout. Returns True if the peer went offline."""
        now = self._now(now)
        if (self.state is PresenceState.CONNECTED_WITH_PEER
                and self._silence_deadline is not None
                and now >= self._silence_deadline):
            self.state = PresenceState.CONNECTED_ALONE
            self._silence_deadline = None
            return True
        return False
