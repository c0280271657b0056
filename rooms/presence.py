"""In-memory connection and call state for the room coordinator."""
from dataclasses import dataclass
from typing import Dict, List, Optional


@dataclass(frozen=True)
class Presence:
    room_code: str
    user_id: str
    username: str


@dataclass(frozen=True)
class ActiveCall:
    call_type: Optional[str]
    initiator_id: str


class PresenceTable:
    """Live connections and the room identity each one joined as."""

    def __init__(self) -> None:
        self._entries: Dict[str, Presence] = {}

    def register(self, connection_id: str, presence: Presence) -> Optional[Presence]:
        """Bind a connection to a room identity, returning the entry it replaced."""
        previous = self._entries.get(connection_id)
        self._entries[connection_id] = presence
        return previous

    def get(self, connection_id: str) -> Optional[Presence]:
        return self._entries.get(connection_id)

    def remove(self, connection_id: str) -> Optional[Presence]:
        return self._entries.pop(connection_id, None)

    def connections_in(self, room_code: str, exclude: Optional[str] = None) -> List[str]:
        return [
            connection_id
            for connection_id, presence in self._entries.items()
            if presence.room_code == room_code and connection_id != exclude
        ]

    def __contains__(self, connection_id: str) -> bool:
        return connection_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)


class CallTracker:
    """The call believed active in each room. Last offer wins."""

    def __init__(self) -> None:
        self._calls: Dict[str, ActiveCall] = {}

    def start(self, room_code: str, call_type: Optional[str], initiator_id: str) -> ActiveCall:
        call = ActiveCall(call_type=call_type, initiator_id=initiator_id)
        self._calls[room_code] = call
        return call

    def get(self, room_code: str) -> Optional[ActiveCall]:
        return self._calls.get(room_code)

    def clear(self, room_code: str) -> Optional[ActiveCall]:
        return self._calls.pop(room_code, None)
