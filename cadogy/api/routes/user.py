from typing import Literal, Optional
from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field, field_validator
from sqlalchemy.orm import Session
from cadogy.api.dependencies import get_current_user, get_session_claims
from cadogy.core.database import get_db
from cadogy.core.exceptions import Forbidden
from cadogy.models.user import User, ROLE_ADMIN
from cadogy.services.token_service import token_service
from cadogy.services.user_service import user_service

router = APIRouter(prefix="/user", tags=["user"])


class ProfileUpdate(BaseModel):
    name: str
    image: Optional[str] = None

    @field_validator("name")
    @classmethod
    def name_length(cls, value: str) -> str:
        value = value.strip()
        if len(value) < 2:
            raise ValueError("Name must be at least 2 characters")
        return value


class TokenAction(BaseModel):
    action: Literal["add", "use", "set"]
    amount: int = Field(gt=0)
    user_id: Optional[int] = Field(default=None, alias="userId")

    model_config = ConfigDict(populate_by_name=True)


@router.put("/profile")
async def update_profile(
    data: ProfileUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    user = user_service.update_name(db, current_user, data.name, data.image)
    return {
        "message": "Profile updated successfully",
        "user": {"id": user.id, "name": user.name, "email": user.email, "image": user.image},
    }


@router.get("/tokens")
async def get_token_balance(current_user: User = Depends(get_current_user)):
    return {"balance": current_user.token_balance or 0}


@router.post("/tokens")
async def update_token_balance(
    data: TokenAction,
    claims: dict = Depends(get_session_claims),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Spend or (for admins) grant tokens.

    Regular users may only "use" their own tokens. Adding, setting and
    acting on another user's balance are admin operations.
    """
    is_admin = claims.get("role") == ROLE_ADMIN
    target_id = data.user_id if data.user_id is not None else current_user.id
    if not is_admin and (data.action != "use" or target_id != current_user.id):
        raise Forbidden("Only administrators can perform this token operation")

    admin_id = current_user.id if is_admin and data.action != "use" else None
    transaction = token_service.apply(
        db,
        target_id,
        data.action,
        data.amount,
        reason="Token usage" if data.action == "use" else f"Admin {data.action}",
        admin_id=admin_id,
    )
    return {"success": True, "balance": transaction.new_balance}
