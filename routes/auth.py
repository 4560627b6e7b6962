import hashlib
import logging
import secrets
from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, EmailStr
from pymongo.database import Database

import mailer
import ratelimit
import settings
from database import as_utc, create_document, get_db, now_utc
from routes.common import public_user
from schemas import User
from security import create_access_token, get_current_user, get_password_hash, verify_password
from usernames import UsernameError, generate_username, is_username_available, validate_username

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])

MIN_PASSWORD_LENGTH = 8


class RegisterRequest(BaseModel):
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    password: Optional[str] = None
    confirm_password: Optional[str] = None
    username: Optional[str] = None


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


class ForgotPasswordRequest(BaseModel):
    email: Optional[EmailStr] = None


class TokenRequest(BaseModel):
    token: Optional[str] = None


class ResetPasswordRequest(BaseModel):
    token: Optional[str] = None
    password: Optional[str] = None


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


def _user_for_reset_token(db: Database, token: Optional[str]) -> dict:
    if not token:
        raise HTTPException(status_code=400, detail="Reset token is required")
    user = db["user"].find_one({"reset_password_token": hash_token(token)})
    expires = as_utc(user.get("reset_password_expire")) if user else None
    if not user or not expires or expires <= now_utc():
        raise HTTPException(status_code=400, detail="Invalid or expired reset token")
    return user


@router.post("/register", status_code=201, dependencies=[Depends(ratelimit.limit("auth"))])
async def register(payload: RegisterRequest, db: Database = Depends(get_db)):
    if not payload.name or not payload.email or not payload.password or not payload.confirm_password:
        raise HTTPException(status_code=400, detail="All fields are required")
    name = payload.name.strip()
    if len(name) > 60:
        raise HTTPException(status_code=400, detail="Name cannot exceed 60 characters")
    if payload.password != payload.confirm_password:
        raise HTTPException(status_code=400, detail="Passwords do not match")
    if len(payload.password) < MIN_PASSWORD_LENGTH:
        raise HTTPException(status_code=400, detail="Password must be at least 8 characters long")

    email = payload.email.lower()
    if db["user"].find_one({"email": email}, {"_id": 1}):
        raise HTTPException(status_code=409, detail="User with this email already exists")

    if payload.username:
        username = payload.username.strip().lower()
        valid, error = validate_username(username)
        if not valid:
            raise HTTPException(status_code=400, detail=error)
        if not is_username_available(db, username):
            raise HTTPException(status_code=409, detail="Username is already taken")
    else:
        try:
            username = generate_username(db, name)
        except UsernameError as e:
            raise HTTPException(status_code=400, detail=str(e))

    role = "author"
    if email in settings.INITIAL_ADMIN_EMAILS and not db["user"].find_one({"role": "admin"}, {"_id": 1}):
        role = "admin"

    user = User(
        name=name,
        email=email,
        username=username,
        password_hash=get_password_hash(payload.password),
        role=role,
    ).model_dump()
    create_document(db, "user", user)
    logger.info("Registered %s (%s) as %s", username, email, role)

    return {
        "message": "User registered successfully",
        "user": public_user(user),
        "access_token": create_access_token({"sub": str(user["_id"])}),
        "token_type": "bearer",
    }


@router.post("/login", response_model=TokenResponse, dependencies=[Depends(ratelimit.limit("auth"))])
async def login(payload: LoginRequest, db: Database = Depends(get_db)):
    user = db["user"].find_one({"email": payload.email.lower()})
    if not user or not verify_password(payload.password, user.get("password_hash", "")):
        raise HTTPException(status_code=401, detail="Invalid email or password")
    if not user.get("is_active", True):
        raise HTTPException(status_code=403, detail="Account is deactivated")

    db["user"].update_one({"_id": user["_id"]}, {"$set": {"last_login_at": now_utc()}})
    return TokenResponse(access_token=create_access_token({"sub": str(user["_id"])}))


@router.get("/me")
async def me(current_user: dict = Depends(get_current_user)):
    return public_user(current_user)


@router.get("/check-rate-limit")
async def check_rate_limit(request: Request):
    result = ratelimit.limiters["auth"].peek(ratelimit.client_id(request))
    return {
        "allowed": result.success,
        "limit": result.limit,
        "remaining": result.remaining,
        "reset": int(result.reset),
    }


@router.post("/forgot-password", dependencies=[Depends(ratelimit.limit("auth"))])
def forgot_password(payload: ForgotPasswordRequest, db: Database = Depends(get_db)):
    if not payload.email:
        raise HTTPException(status_code=400, detail="Email is required")

    user = db["user"].find_one({"email": payload.email.lower()})
    if not user:
        raise HTTPException(status_code=404, detail="No account found with this email address")
    if not user.get("is_active", True):
        raise HTTPException(status_code=403, detail="This account has been deactivated")

    token = secrets.token_hex(32)
    db["user"].update_one(
        {"_id": user["_id"]},
        {
            "$set": {
                "reset_password_token": hash_token(token),
                "reset_password_expire": now_utc() + timedelta(minutes=settings.RESET_TOKEN_EXPIRE_MINUTES),
            }
        },
    )
    reset_url = f"{settings.SITE_URL}/reset-password?token={token}"

    response = {"message": "Password reset link has been generated"}
    if settings.is_development():
        response["reset_url"] = reset_url
    else:
        result = mailer.send_password_reset_email(user["email"], user.get("name"), reset_url)
        if not result["success"]:
            logger.error("Password reset email to %s failed: %s", user["email"], result.get("error"))
        response["message"] = "Password reset link has been sent to your email"
    return response


@router.post("/verify-reset-token")
async def verify_reset_token(payload: TokenRequest, db: Database = Depends(get_db)):
    user = _user_for_reset_token(db, payload.token)
    return {"valid": True, "email": user["email"]}


@router.post("/reset-password", dependencies=[Depends(ratelimit.limit("auth"))])
async def reset_password(payload: ResetPasswordRequest, db: Database = Depends(get_db)):
    if not payload.token or not payload.password:
        raise HTTPException(status_code=400, detail="Token and password are required")
    if len(payload.password) < MIN_PASSWORD_LENGTH:
        raise HTTPException(status_code=400, detail="Password must be at least 8 characters long")

    user = _user_for_reset_token(db, payload.token)
    if verify_password(payload.password, user.get("password_hash", "")):
        raise HTTPException(status_code=400, detail="New password must be different from your current password")

    db["user"].update_one(
        {"_id": user["_id"]},
        {
            "$set": {"password_hash": get_password_hash(payload.password), "updated_at": now_utc()},
            "$unset": {"reset_password_token": "", "reset_password_expire": ""},
        },
    )
    logger.info("Password reset for user %s", user["_id"])
    return {"message": "Password has been reset successfully"}
