import logging
from typing import List, Optional

from aiohttp import ClientError
from mautrix.errors import MatrixRequestError
from mautrix.types import RoomID, UserID

from .errors import (
    AuthorizationFailure,
    InsufficientPowerLevel,
    NoPowerLevels,
    NoSessionBound,
    PERMISSION_ERROR_MESSAGE,
    PowerLevelReadFailed,
    WebhookPermissionError,
)
from .power_levels import RoomStateReader
from .store import Webhook, WebhookStore


class ProvisioningService:
    """Create, list and delete a room's webhooks on behalf of a user.

    Every operation checks that the user may send state events in the room
    before the store is touched. The check and the store call are separate
    awaits; power levels can change between them and nothing here prevents
    that.
    """

    PERMISSION_ERROR_MESSAGE = PERMISSION_ERROR_MESSAGE

    def __init__(self, store: WebhookStore, reader: RoomStateReader,
                 log: Optional[logging.Logger] = None) -> None:
        self.store = store
        self.log = log or logging.getLogger("maubot.slackhook.provisioning")
        self._reader: Optional[RoomStateReader] = None
        self.set_client(reader)

    def set_client(self, reader: RoomStateReader) -> None:
        """Bind the room-state reader used for permission checks. Last call wins."""
        if reader is None:
            raise NoSessionBound("A room state reader is required for permission checks")
        self.log.debug(f"Received room state reader. Using account {getattr(reader, 'user_id', None)}")
        self._reader = reader

    async def create_webhook(self, room_id: RoomID, user_id: UserID,
                             label: Optional[str] = None) -> Webhook:
        self.log.info(f"Processing create hook request for {room_id} by {user_id}")
        await self._authorize(user_id, room_id)
        return await self.store.create_webhook(room_id, user_id, label)

    async def get_webhooks(self, room_id: RoomID, user_id: UserID) -> List[Webhook]:
        self.log.info(f"Processing list hooks request for {room_id} by {user_id}")
        await self._authorize(user_id, room_id)
        return await self.store.list_webhooks(room_id)

    async def delete_webhook(self, room_id: RoomID, user_id: UserID, hook_id: str) -> None:
        self.log.info(f"Processing delete hook ({hook_id}) request for {room_id} by {user_id}")
        await self._authorize(user_id, room_id)
        await self.store.delete_webhook(room_id, hook_id)

    async def _authorize(self, user_id: UserID, room_id: RoomID) -> None:
        try:
            await self.has_permission(user_id, room_id)
        except AuthorizationFailure:
            raise WebhookPermissionError(self.PERMISSION_ERROR_MESSAGE) from None

    async def has_permission(self, user_id: UserID, room_id: RoomID) -> None:
        """Return if ``user_id`` may manage webhooks in ``room_id``.

        Raises an :class:`AuthorizationFailure` subclass naming the reason
        otherwise, including when the room state cannot be read.
        """
        self.log.debug(f"Checking permission for {user_id} in {room_id}")
        reader = self._reader
        if reader is None:
            self.log.warning(f"Unable to check permission for {user_id} in {room_id}"
                             " because there is no room state reader bound")
            raise NoSessionBound(room_id)

        try:
            power_levels = await reader.get_power_levels(room_id)
        except (MatrixRequestError, ClientError) as e:
            self.log.warning(f"Unable to check permission for {user_id} in {room_id}"
                             f" because reading power levels failed: {e}")
            raise PowerLevelReadFailed(room_id) from e
        if power_levels is None:
            self.log.warning(f"Unable to check permission for {user_id} in {room_id}"
                             " because there is no power level information in the room")
            raise NoPowerLevels(room_id)

        if power_levels.state_default is None:
            self.log.warning(f"Unable to check permission for {user_id} in {room_id}"
                             " because the power level requirement is missing for state_default")
        allowed = power_levels.can_send_state(user_id)

        self.log.debug(
            f"User {user_id} in room {room_id} has permission? {allowed} "
            f"(required power level = {power_levels.state_default}, "
            f"user power level = {power_levels.user_level(user_id)})"
        )
        if not allowed:
            raise InsufficientPowerLevel(room_id)
