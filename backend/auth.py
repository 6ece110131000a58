import logging
import os

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, EmailStr, Field
from pymongo.errors import DuplicateKeyError, PyMongoError

from database import create_document, get_db
from schemas import Role, User as UserSchema
from security import hash_password, issue_token, public_user, verify_password

logger = logging.getLogger(__name__)

ADMIN_EMAILS = {e.strip().lower() for e in os.getenv("ADMIN_EMAILS", "").split(",") if e.strip()}

router = APIRouter(prefix="/api/auth", tags=["auth"])


class RegisterPayload(BaseModel):
    name: str = Field(min_length=2, max_length=50)
    email: EmailStr
    password: str = Field(min_length=6)


class LoginPayload(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1)


@router.post("/register", status_code=201)
def register(body: RegisterPayload, db=Depends(get_db)):
    email = body.email.lower()
    try:
        if db["user"].find_one({"email": email}):
            raise HTTPException(409, "User with this email already exists")
        if db["user"].find_one({"name": body.name}):
            raise HTTPException(409, "Username is already taken")

        role = Role.ADMIN if email in ADMIN_EMAILS else Role.USER
        user = UserSchema(email=email, password_hash=hash_password(body.password), name=body.name, role=role)
        uid = create_document(db, "user", user)
    except HTTPException:
        raise
    except DuplicateKeyError:
        raise HTTPException(409, "User with this email already exists")
    except PyMongoError:
        logger.exception("Registration failed for %s", email)
        raise HTTPException(400, "Failed to register user. Please try again.")

    logger.info("Registered user %s", uid)
    created = db["user"].find_one({"email": email})
    return {
        "message": "User registered successfully",
        "user": public_user(created),
        "access_token": issue_token(uid, created["role"]),
    }


@router.post("/login")
def login(body: LoginPayload, db=Depends(get_db)):
    u = db["user"].find_one({"email": body.email.lower()})
    if not u:
        raise HTTPException(401, "Invalid email or password")
    if not u.get("password_hash"):
        raise HTTPException(401, "Please sign in with Google or reset your password")
    if not verify_password(body.password, u["password_hash"]):
        raise HTTPException(401, "Invalid email or password")

    uid = str(u["_id"])
    logger.info("User %s logged in", uid)
    return {
        "message": "Login successful",
        "user": public_user(u),
        "access_token": issue_token(uid, u.get("role", Role.USER.value)),
    }
