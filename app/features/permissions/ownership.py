"""
Resource ownership checks.
"""
import inspect
from typing import Any, Awaitable, Callable, Optional, Union

from app.utils import get_logger


log = get_logger(__name__)

OwnerId = Union[str, int]

# Takes the in-flight request/operation context, returns the owner id
# directly or as an awaitable.
ResourceOwnerResolver = Callable[[Any], Union[Optional[OwnerId], Awaitable[Optional[OwnerId]]]]


def canonical_id(value: Any) -> Optional[str]:
    """
    Canonical string form of an identifier, or None when absent.

    42, "42" and " 42 " all map to "42". Booleans are not identifiers.
    """
    if value is None or isinstance(value, bool):
        return None
    text = str(value).strip()
    return text or None


def is_owner(principal_id: Any, resource_owner_id: Any) -> bool:
    """True iff both ids are present and equal in canonical form."""
    principal = canonical_id(principal_id)
    owner = canonical_id(resource_owner_id)
    return principal is not None and owner is not None and principal == owner


async def resolve_owner(resolver: ResourceOwnerResolver, context: Any) -> Optional[str]:
    """
    Run an owner resolver and return the owner id in canonical form.

    A resolver that raises, or whose awaitable raises, is treated as
    "no owner" so the caller denies instead of crashing.
    """
    try:
        owner = resolver(context)
        if inspect.isawaitable(owner):
            owner = await owner
    except Exception:
        log.warning("Resource owner resolution failed, treating as no owner", exc_info=True)
        return None
    return canonical_id(owner)
