from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from purchase_tracker import db
from purchase_tracker.auth import get_actor, is_primary_admin_email, require_user_manager
from purchase_tracker.status import Permissions, Status, can_set_status

router = APIRouter(prefix="/admin", tags=["admin"])


class AdminUserBody(BaseModel):
    name: str = ""
    allowed_statuses: list[Status] = Field(default_factory=list, description="Statuses this admin may set")
    can_manage_users: bool = False


@router.get("/me")
async def me(actor: Permissions = Depends(get_actor)) -> JSONResponse:
    """What the acting user may ever set, regardless of an order's current status."""
    return JSONResponse(
        status_code=200,
        content={
            "email": actor.email,
            "name": actor.name,
            "is_admin": actor.is_admin,
            "is_primary_admin": actor.is_primary_admin,
            "can_manage_users": actor.can_manage_users,
            "settable_statuses": [s.value for s in Status if can_set_status(actor, s)],
        },
    )


@router.get("/users")
async def list_users(actor: Permissions = Depends(require_user_manager)) -> JSONResponse:
    pool = await db.get_pool()
    users = await db.list_admin_users(pool)
    return JSONResponse(status_code=200, content={"users": [u.model_dump(mode="json") for u in users]})


@router.put("/users/{email}")
async def save_user(
    email: str,
    body: AdminUserBody,
    actor: Permissions = Depends(require_user_manager),
) -> JSONResponse:
    """Create or update an admin's allow-list. Primary admins are configured, not stored."""
    if is_primary_admin_email(email):
        return JSONResponse(status_code=409, content={"status": "conflict", "detail": "primary admins are not editable"})
    pool = await db.get_pool()
    user = await db.upsert_admin_user(pool, db.AdminUser(email=email, **body.model_dump()))
    return JSONResponse(status_code=200, content=user.model_dump(mode="json"))


@router.delete("/users/{email}")
async def delete_user(email: str, actor: Permissions = Depends(require_user_manager)) -> JSONResponse:
    pool = await db.get_pool()
    await db.delete_admin_user(pool, email)
    return JSONResponse(status_code=200, content={"status": "deleted", "email": email})
