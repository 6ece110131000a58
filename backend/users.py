import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, EmailStr, Field

from database import get_db, utcnow
from security import get_current_user, public_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/user", tags=["user"])


class UpdateProfilePayload(BaseModel):
    name: Optional[str] = Field(None, min_length=2, max_length=50)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(None, pattern=r"^[+]?[1-9]\d{9,14}$")
    avatar: Optional[str] = None


@router.get("/me")
def get_me(user: dict = Depends(get_current_user)):
    logger.info("User %s requested their profile", user["id"])
    return {"message": "User profile fetched successfully", "data": public_user(user)}


@router.put("/profile")
def update_profile(body: UpdateProfilePayload, user: dict = Depends(get_current_user), db=Depends(get_db)):
    logger.info("User %s updating their profile", user["id"])
    changes = body.model_dump(exclude_unset=True, exclude_none=True)
    if "email" in changes:
        changes["email"] = changes["email"].lower()
        if changes["email"] != user["email"]:
            taken = db["user"].find_one({"email": changes["email"], "_id": {"$ne": user["_id"]}})
            if taken:
                raise HTTPException(409, "Email is already taken by another user")

    if changes:
        changes["updated_at"] = utcnow()
        db["user"].update_one({"_id": user["_id"]}, {"$set": changes})
    updated = db["user"].find_one({"_id": user["_id"]})
    return {"message": "User profile updated successfully", "data": public_user(updated)}
