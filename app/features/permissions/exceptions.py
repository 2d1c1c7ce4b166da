"""
Errors raised by the override administration path.

Decision functions never raise; only malformed administrative input does.
"""


class InvalidGrant(ValueError):
    """An override write was rejected."""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.message = message
        self.field = field


class UnknownPrincipalError(InvalidGrant):
    def __init__(self, principal_id: str):
        super().__init__(f"Unknown principal: {principal_id}", field="principal_id")
        self.principal_id = principal_id


class UnknownPermissionError(InvalidGrant):
    def __init__(self, permission_name: str):
        super().__init__(f"Unknown permission: {permission_name}", field="permission_name")
        self.permission_name = permission_name


class InvalidExpiryError(InvalidGrant):
    def __init__(self, message: str = "expires_at must be in the future"):
        super().__init__(message, field="expires_at")
