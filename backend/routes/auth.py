from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from typing import Optional
from pydantic import BaseModel, EmailStr
from database.db import get_db
from models.user import User
from utils.security import (
    hash_password,
    verify_password,
    create_access_token,
    get_current_user
)
import logging

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["authentication"])

# ============ Request/Response Models ============

class LoginRequest(BaseModel):
    """Login request model"""
    username: str
    password: str

    class Config:
        json_schema_extra = {
            "example": {
                "username": "candidate",
                "password": "secure_password"
            }
        }

class RegisterRequest(BaseModel):
    """User registration request model"""
    username: str
    email: EmailStr
    password: str
    full_name: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "username": "candidate",
                "email": "candidate@example.com",
                "password": "secure_password",
                "full_name": "Jane Doe"
            }
        }

class TokenResponse(BaseModel):
    """Token response model"""
    access_token: str
    token_type: str = "bearer"
    user_id: str
    username: str

class UserResponse(BaseModel):
    """User response model"""
    id: str
    username: str
    email: str
    full_name: Optional[str] = None
    is_active: bool

    class Config:
        from_attributes = True

# ============ Login Endpoint ============

@router.post("/login", response_model=TokenResponse)
async def login(
    request: LoginRequest,
    db: Session = Depends(get_db)
):
    """
    User login endpoint.

    Authenticates user with username and password.
    Returns JWT access token if credentials are valid.

    Raises:
        HTTPException 401: Invalid credentials
        HTTPException 403: User account is inactive
    """
    try:
        user = db.query(User).filter(User.username == request.username).first()

        if not user or not verify_password(request.password, user.hashed_password):
            logger.warning(f"Login failed: {request.username}")
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid username or password"
            )

        if not user.is_active:
            logger.warning(f"Login failed: User inactive - {request.username}")
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="User account is inactive"
            )

        access_token = create_access_token(data={"sub": user.id})

        logger.info(f"User logged in successfully: {request.username}")

        return TokenResponse(
            access_token=access_token,
            user_id=user.id,
            username=user.username
        )

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Login error: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Login failed"
        )

# ============ Register Endpoint ============

@router.post("/register", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
async def register(
    request: RegisterRequest,
    db: Session = Depends(get_db)
):
    """
    User registration endpoint.

    Creates new user account and returns a JWT access token immediately.

    Raises:
        HTTPException 400: Username or email already exists
        HTTPException 500: Registration failed
    """
    try:
        existing_user = db.query(User).filter(
            (User.username == request.username) | (User.email == request.email)
        ).first()
        if existing_user:
            logger.warning(f"Registration failed: Account already exists - {request.username}")
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Username or email already exists"
            )

        new_user = User(
            username=request.username,
            email=request.email,
            hashed_password=hash_password(request.password),
            full_name=request.full_name
        )

        db.add(new_user)
        db.commit()
        db.refresh(new_user)

        logger.info(f"New user registered: {request.username}")

        access_token = create_access_token(data={"sub": new_user.id})

        return TokenResponse(
            access_token=access_token,
            user_id=new_user.id,
            username=new_user.username
        )

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Registration error: {str(e)}")
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Registration failed"
        )

# ============ Get Current User Profile ============

@router.get("/me", response_model=UserResponse)
async def get_me(
    current_user: User = Depends(get_current_user)
):
    """Get current authenticated user's profile."""
    return current_user
