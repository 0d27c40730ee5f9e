from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from mautrix.api import Method, Path
from mautrix.client import Client
from mautrix.errors import MNotFound
from mautrix.types import EventType, RoomID, UserID

from .errors import MissingStateDefault


def as_level(value: Any) -> Optional[int]:
    # bool is an int subclass, but `true` is not a power level
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True)
class PowerLevelState:
    """Snapshot of the parts of ``m.room.power_levels`` that gate state changes.

    ``users_default`` and ``state_default`` stay ``None`` when the room content
    does not carry them, so callers can tell "absent" from "zero".
    """

    users: Dict[str, int] = field(default_factory=dict)
    users_default: Optional[int] = None
    state_default: Optional[int] = None

    @classmethod
    def from_content(cls, content: Dict[str, Any]) -> "PowerLevelState":
        users: Dict[str, int] = {}
        raw_users = content.get("users")
        if isinstance(raw_users, dict):
            for user, value in raw_users.items():
                level = as_level(value)
                if level is not None:
                    users[str(user)] = level
        return cls(
            users=users,
            users_default=as_level(content.get("users_default")),
            state_default=as_level(content.get("state_default")),
        )

    def user_level(self, user: UserID) -> int:
        level = self.users.get(str(user))
        if level is None:
            level = self.users_default
        if level is None:
            level = 0
        return level

    def can_send_state(self, user: UserID) -> bool:
        if self.state_default is None:
            raise MissingStateDefault("state_default missing from power levels")
        return self.user_level(user) >= self.state_default


class RoomStateReader:
    """Reads power levels as raw content.

    The typed ``PowerLevelStateEventContent`` fills in protocol defaults for
    missing keys, which would hide a room without ``state_default``.
    """

    def __init__(self, client: Client) -> None:
        self.client = client

    @property
    def user_id(self) -> UserID:
        return self.client.mxid

    async def get_power_levels(self, room_id: RoomID) -> Optional[PowerLevelState]:
        path = Path.v3.rooms[room_id].state[str(EventType.ROOM_POWER_LEVELS)]
        try:
            content = await self.client.api.request(Method.GET, path)
        except MNotFound:
            return None
        if not isinstance(content, dict) or not content:
            return None
        return PowerLevelState.from_content(content)
