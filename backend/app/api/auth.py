from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from app.api.deps import get_current_user
from app.db.models import User

router = APIRouter()


class UserResponse(BaseModel):
    id: int
    username: str
    email: str
    full_name: Optional[str]
    avatar_url: Optional[str]

    class Config:
        from_attributes = True


@router.get("/me", response_model=UserResponse)
async def me(user: User = Depends(get_current_user)):
    """Profile of the token's subject. Sign-in happens at the identity provider."""
    return user
