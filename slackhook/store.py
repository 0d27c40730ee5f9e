import time, secrets
from dataclasses import dataclass
from typing import Optional, Dict, Any, List

from mautrix.types import RoomID, UserID
from mautrix.util.async_db import Database

from .errors import WebhookNotFound

# ---------------- utils ----------------

def now_ms() -> int:
    return int(time.time() * 1000)

def new_hook_id() -> str:
    return secrets.token_urlsafe(24)

# ---------------- model ----------------

@dataclass(frozen=True)
class Webhook:
    id: str
    room_id: RoomID
    user_id: UserID
    created_ts: int
    label: Optional[str] = None

    @classmethod
    def from_row(cls, row) -> "Webhook":
        return cls(
            id=row["id"],
            room_id=RoomID(row["room_id"]),
            user_id=UserID(row["user_id"]),
            created_ts=int(row["created_ts"]),
            label=row["label"],
        )

    def serialize(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "roomId": str(self.room_id),
            "userId": str(self.user_id),
            "label": self.label,
            "createdTs": self.created_ts,
        }

# ---------------- store ----------------

class WebhookStore:
    """Persistent webhook records, keyed by id and scoped to a room."""

    max_id_attempts = 5

    def __init__(self, db: Database) -> None:
        self.db = db

    async def _id_taken(self, hook_id: str) -> bool:
        # deleted rows count too
        row = await self.db.fetchrow("SELECT 1 FROM webhooks WHERE id=$1", hook_id)
        return row is not None

    async def _mint_id(self) -> str:
        for _ in range(self.max_id_attempts):
            hook_id = new_hook_id()
            if not await self._id_taken(hook_id):
                return hook_id
        raise RuntimeError("Could not generate an unused webhook id")

    async def create_webhook(self, room_id: RoomID, user_id: UserID,
                             label: Optional[str] = None) -> Webhook:
        hook = Webhook(
            id=await self._mint_id(),
            room_id=room_id,
            user_id=user_id,
            created_ts=now_ms(),
            label=label or None,
        )
        await self.db.execute("""
            INSERT INTO webhooks (id, room_id, user_id, label, created_ts)
            VALUES ($1, $2, $3, $4, $5)
        """, hook.id, str(hook.room_id), str(hook.user_id), hook.label, hook.created_ts)
        return hook

    async def list_webhooks(self, room_id: RoomID) -> List[Webhook]:
        rows = await self.db.fetch("""
            SELECT id, room_id, user_id, label, created_ts
              FROM webhooks
             WHERE room_id=$1 AND deleted_ts IS NULL
             ORDER BY created_ts, id
        """, str(room_id))
        return [Webhook.from_row(r) for r in rows]

    async def get_webhook(self, hook_id: str) -> Optional[Webhook]:
        row = await self.db.fetchrow("""
            SELECT id, room_id, user_id, label, created_ts
              FROM webhooks
             WHERE id=$1 AND deleted_ts IS NULL
        """, hook_id)
        return Webhook.from_row(row) if row else None

    async def delete_webhook(self, room_id: RoomID, hook_id: str) -> None:
        row = await self.db.fetchrow(
            "SELECT deleted_ts FROM webhooks WHERE id=$1 AND room_id=$2", hook_id, str(room_id)
        )
        if not row or row["deleted_ts"] is not None:
            raise WebhookNotFound(room_id, hook_id)
        await self.db.execute(
            "UPDATE webhooks SET deleted_ts=$1 WHERE id=$2 AND room_id=$3",
            now_ms(), hook_id, str(room_id)
        )
