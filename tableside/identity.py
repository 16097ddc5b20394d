"""
Identity — resolving who is asking and granting the staff claim.
"""

from __future__ import annotations

import logging
import uuid

from kungfu import Error, Ok, Result

from tableside.domain import Actor
from tableside.errors import NotFound, Unauthorized
from tableside.store import Identities, StoreError

logger = logging.getLogger(__name__)


def require_staff(actor: Actor, action: str) -> Result[Actor, Unauthorized]:
    if actor.is_staff:
        return Ok(actor)
    return Error(Unauthorized(actor.user_id, action))


async def resolve_actor(
    identities: Identities, user_id: str, email: str = ""
) -> Result[Actor, StoreError]:
    """
    Actor for a request.

    Unknown users are customers; the staff claim only ever comes from the
    identity store.
    """
    match await identities.get(user_id):
        case Error(e):
            return Error(e)
        case Ok(None):
            return Ok(Actor(user_id=user_id, email=email))
        case Ok(actor):
            return Ok(actor)


async def grant_staff(
    identities: Identities, email: str, *, create: bool = False
) -> Result[Actor, NotFound | StoreError]:
    """
    Set the staff claim on the identity with this email.

    With `create=True` an unknown email gets a fresh identity.
    """
    email = email.strip().lower()

    match await identities.by_email(email):
        case Error(e):
            return Error(e)
        case Ok(None) if not create:
            return Error(NotFound("user", email))
        case Ok(None):
            actor = Actor(user_id=f"usr_{uuid.uuid4().hex[:12]}", email=email, is_staff=True)
        case Ok(existing):
            actor = Actor(user_id=existing.user_id, email=existing.email, is_staff=True)

    match await identities.put(actor):
        case Error(e):
            return Error(e)
        case Ok(_):
            logger.info("granted staff claim to %s (%s)", actor.email, actor.user_id)
            return Ok(actor)


__all__ = (
    "require_staff",
    "resolve_actor",
    "grant_staff",
)
