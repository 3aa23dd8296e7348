from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
import logging

from ..database import get_db
from ..models.user import User
from ..utils.jwt import create_access_token
from ..utils.security import hash_password, verify_password
from ..utils.validation import validate_email, validate_password, validate_role
from ..utils.error_handlers import get_error_message, handle_database_error

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Auth"])


class SignupRequest(BaseModel):
    email: str
    password: str
    role: str  # admin / recruiter
    name: str | None = None


class LoginRequest(BaseModel):
    email: str
    password: str
    role: str | None = None  # optional role gate (frontend-selected role)


@router.post("/signup")
def signup(payload: SignupRequest, db: Session = Depends(get_db)):
    # Validate input
    try:
        email = validate_email(payload.email)
        validate_password(payload.password)
        role = validate_role(payload.role)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Validation error in signup: {e}")
        raise HTTPException(status_code=400, detail=get_error_message("validation_error"))

    # Check if email already exists
    try:
        existing = db.query(User).filter(User.email == email).first()
        if existing:
            raise HTTPException(
                status_code=400,
                detail=get_error_message("email_exists")
            )
        # Only the first admin can self-register; later admins are promoted by an admin.
        admin_exists = role == "admin" and db.query(User).filter(User.role == "admin").first() is not None
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Database error checking existing user: {e}")
        raise handle_database_error(e, "checking existing user")

    if admin_exists:
        raise HTTPException(status_code=403, detail="Admin accounts can only be created by an existing admin")

    # Hash password
    try:
        hashed = hash_password(payload.password)
    except ValueError:
        raise HTTPException(
            status_code=400,
            detail=get_error_message("weak_password")
        )
    except Exception as e:
        logger.error(f"Password hashing error: {e}")
        raise HTTPException(status_code=500, detail=get_error_message("server_error"))

    user = User(
        name=payload.name,
        email=email,
        password=hashed,
        role=role,
    )
    try:
        db.add(user)
        db.commit()
        db.refresh(user)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Database error creating user: {e}")
        raise handle_database_error(e, "creating user")

    # Create access token
    try:
        token = create_access_token({"sub": str(user.id), "role": user.role})
    except Exception as e:
        logger.error(f"Token creation error: {e}")
        raise HTTPException(status_code=500, detail=get_error_message("server_error"))

    return {
        "message": "User created successfully",
        "user": user.to_public(),
        "access_token": token,
        "token_type": "bearer",
    }


@router.post("/login")
def login(payload: LoginRequest, db: Session = Depends(get_db)):
    # Validate input
    try:
        email = validate_email(payload.email)
        if not payload.password:
            raise HTTPException(status_code=400, detail="Password is required")
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Validation error in login: {e}")
        raise HTTPException(status_code=400, detail=get_error_message("validation_error"))

    # Find user
    try:
        user = db.query(User).filter(User.email == email).first()
    except Exception as e:
        logger.error(f"Database error during login: {e}")
        raise handle_database_error(e, "login")

    # Verify credentials
    if not user or not verify_password(payload.password, user.password):
        raise HTTPException(
            status_code=401,
            detail=get_error_message("invalid_credentials")
        )

    # Check role match if provided
    if payload.role and user.role != payload.role:
        raise HTTPException(
            status_code=403,
            detail="Role mismatch. Please select the correct account type.",
        )

    user.last_login_at = datetime.now(timezone.utc)
    db.commit()

    try:
        token = create_access_token(
            {"sub": str(user.id), "role": user.role}
        )
    except Exception as e:
        logger.error(f"Token creation error during login: {e}")
        raise HTTPException(status_code=500, detail=get_error_message("server_error"))

    return {
        "access_token": token,
        "token_type": "bearer",
        "user": user.to_public(),
    }


@router.post("/logout")
def logout():
    return {"message": "Logged out successfully"}
