from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordRequestForm
from passlib.context import CryptContext
from pymongo.errors import DuplicateKeyError
from jose import jwt
from datetime import datetime, timedelta, timezone
import logging

import config
import models
from database import get_db
from models import Principal
from utils.dependencies import get_current_user

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
router = APIRouter(prefix="/auth", tags=["Auth"])

def hash_password(password: str):
    return pwd_context.hash(password)

def verify_password(plain, hashed):
    return pwd_context.verify(plain, hashed)

def create_access_token(data: dict, expires_delta: timedelta = None):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=15))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, config.SECRET_KEY, algorithm=config.ALGORITHM)

@router.post("/register", response_model=models.UserResponse, status_code=status.HTTP_201_CREATED)
async def register(user: models.UserCreate, db=Depends(get_db)):
    existing = await db.users.find_one({"$or": [{"email": user.email}, {"username": user.username}]})
    if existing:
        raise HTTPException(status_code=400, detail="User already exists with this email or username")

    new_user = {
        "username": user.username,
        "email": user.email,
        "password": hash_password(user.password),
        "role": user.role.value,
        "is_active": True,
        "created_at": models.utcnow(),
    }
    try:
        result = await db.users.insert_one(new_user)
    except DuplicateKeyError:
        raise HTTPException(status_code=400, detail="User already exists with this email or username")
    logger.info("Registered user %s (%s)", user.username, user.role.value)
    return models.UserResponse(id=str(result.inserted_id), username=user.username, email=user.email, role=user.role)

@router.post("/login", response_model=models.Token)
async def login(form_data: OAuth2PasswordRequestForm = Depends(), db=Depends(get_db)):
    user = await db.users.find_one({
        "$or": [{"email": form_data.username}, {"username": form_data.username}]
        })

    if not user or not verify_password(form_data.password, user["password"]):
        raise HTTPException(status_code=401, detail="Invalid credentials")

    if not user.get("is_active", True):
        raise HTTPException(status_code=403, detail="Your account has been deactivated. Please contact support.")

    token = create_access_token(
        {"sub": str(user["_id"]), "role": user["role"]},
        timedelta(minutes=config.ACCESS_TOKEN_EXPIRE_MINUTES),
    )
    return models.Token(access_token=token)

@router.get("/me", response_model=models.UserResponse)
async def get_current_user_info(current_user: Principal = Depends(get_current_user)):
    """Get current user information"""
    return models.UserResponse(
        id=current_user.id,
        username=current_user.username,
        email=current_user.email,
        role=current_user.role,
        is_active=current_user.is_active,
    )
