PERMISSION_ERROR_MESSAGE = "User does not have permission to manage webhooks in this room"


class AuthorizationFailure(Exception):
    """Raised by the permission check. Never leaves the provisioning service."""


class NoSessionBound(AuthorizationFailure):
    pass


class NoPowerLevels(AuthorizationFailure):
    pass


class MissingStateDefault(AuthorizationFailure):
    pass


class InsufficientPowerLevel(AuthorizationFailure):
    pass


class PowerLevelReadFailed(AuthorizationFailure):
    pass


class WebhookPermissionError(Exception):
    """The only authorization error callers of the provisioning service see."""

    def __init__(self, message: str = PERMISSION_ERROR_MESSAGE) -> None:
        super().__init__(message)
        self.message = message


class WebhookNotFound(Exception):
    def __init__(self, room_id: str, hook_id: str) -> None:
        super().__init__(f"No webhook {hook_id} in {room_id}")
        self.room_id = room_id
        self.hook_id = hook_id


class PayloadError(ValueError):
    pass
