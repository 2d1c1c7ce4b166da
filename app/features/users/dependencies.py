"""
FastAPI dependencies for obtaining the authenticated principal.
"""
from typing import Optional
from fastapi import Request
from pydantic import ValidationError

from app.core import config
from app.features.users.schemas import Principal
from app.utils import get_logger


log = get_logger(__name__)


async def get_current_principal(request: Request) -> Optional[Principal]:
    """
    Get the principal for the current request, or None.

    The authentication layer places a Principal on request.state.principal.
    Behind a trusted gateway (TRUST_PRINCIPAL_HEADERS=1) the principal is
    read from the gateway headers instead.

    Never raises: a missing principal is reported as None so the guards can
    answer "unauthenticated" rather than "denied".
    """
    principal = getattr(request.state, "principal", None)
    if isinstance(principal, Principal):
        return principal
    if principal is not None:
        try:
            return Principal.model_validate(principal, from_attributes=True)
        except ValidationError:
            log.warning("Ignoring malformed principal on request state")
            return None

    if not config.TRUST_PRINCIPAL_HEADERS:
        return None

    principal_id = request.headers.get(config.PRINCIPAL_ID_HEADER)
    role = request.headers.get(config.PRINCIPAL_ROLE_HEADER)
    if not principal_id or role is None:
        return None
    try:
        return Principal(id=principal_id, role=role)
    except ValidationError:
        log.warning("Ignoring malformed principal headers")
        return None


def get_rate_limit_key(request: Request) -> str:
    """
    Key for rate limiting.
    Used with slowapi Limiter.
    """
    principal_id = request.headers.get(config.PRINCIPAL_ID_HEADER)
    if principal_id:
        return f"principal:{principal_id}"
    auth = request.headers.get("Authorization", "")
    return auth or "anonymous"
