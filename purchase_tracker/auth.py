"""
Acting-user resolution. Authentication happens upstream; the gateway forwards the
signed-in email in X-User-Email. Here we only turn that email into Permissions.
"""
from fastapi import Depends, Header, HTTPException

from purchase_tracker import db
from purchase_tracker.config import settings
from purchase_tracker.status import Permissions


def is_primary_admin_email(email: str) -> bool:
    wanted = email.strip().lower()
    return any(wanted == e.strip().lower() for e in settings.primary_admin_emails)


async def resolve_permissions(email: str, name: str | None = None) -> Permissions:
    """Primary admins from settings, other admins from admin_users, everyone else gets nothing."""
    if is_primary_admin_email(email):
        return Permissions.primary(email=email, name=name or email)
    pool = await db.get_pool()
    user = await db.get_admin_user(pool, email)
    if user is None:
        return Permissions(email=email, name=name or email)
    return Permissions.restricted(
        user.allowed_statuses,
        email=email,
        name=user.name or name or email,
        can_manage_users=user.can_manage_users,
    )


async def get_actor(
    x_user_email: str | None = Header(default=None),
    x_user_name: str | None = Header(default=None),
) -> Permissions:
    if not x_user_email:
        raise HTTPException(status_code=401, detail="missing X-User-Email")
    return await resolve_permissions(x_user_email, x_user_name)


async def get_optional_actor(
    x_user_email: str | None = Header(default=None),
    x_user_name: str | None = Header(default=None),
) -> Permissions | None:
    """For the public submission form: anonymous requesters are fine."""
    if not x_user_email:
        return None
    return await resolve_permissions(x_user_email, x_user_name)


async def require_admin(actor: Permissions = Depends(get_actor)) -> Permissions:
    if not actor.is_admin:
        raise HTTPException(status_code=403, detail="admin account required")
    return actor


async def require_user_manager(actor: Permissions = Depends(get_actor)) -> Permissions:
    if not (actor.is_primary_admin or actor.can_manage_users):
        raise HTTPException(status_code=403, detail="user management not allowed")
    return actor


async def require_primary_admin(actor: Permissions = Depends(get_actor)) -> Permissions:
    if not actor.is_primary_admin:
        raise HTTPException(status_code=403, detail="primary admin only")
    return actor
