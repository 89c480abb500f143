from functools import lru_cache

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import jwt, JWTError

import config
from database import get_db, to_object_id
from models import Principal
from services.inventory import InventoryService, InventoryStore
from services.ledger import BorrowLedger
from services.lending import LendingService
from services.notifier import build_notifier
from utils.policy import ensure_active, ensure_admin

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="auth/login")


def principal_from_user(user: dict) -> Principal:
    return Principal(
        id=str(user["_id"]),
        role=user.get("role", "member"),
        is_active=user.get("is_active", True),
        username=user.get("username"),
        email=user.get("email"),
    )


async def get_current_user(token: str = Depends(oauth2_scheme), db=Depends(get_db)) -> Principal:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        payload = jwt.decode(token, config.SECRET_KEY, algorithms=[config.ALGORITHM])
        user_id: str = payload.get("sub")
        if user_id is None:
            raise credentials_exception
    except JWTError:
        raise credentials_exception

    user_oid = to_object_id(user_id)
    if user_oid is None:
        raise HTTPException(status_code=401, detail="Invalid user ID format")

    user = await db.users.find_one({"_id": user_oid})
    if user is None:
        raise credentials_exception

    return ensure_active(principal_from_user(user))


async def admin_required(current_user: Principal = Depends(get_current_user)) -> Principal:
    return ensure_admin(current_user)


# --- Service providers ---
def get_inventory_store(db=Depends(get_db)) -> InventoryStore:
    return InventoryStore(db)


def get_ledger(db=Depends(get_db)) -> BorrowLedger:
    return BorrowLedger(db)


def get_inventory_service(
    store: InventoryStore = Depends(get_inventory_store),
    ledger: BorrowLedger = Depends(get_ledger),
) -> InventoryService:
    return InventoryService(store, ledger)


@lru_cache
def get_notifier():
    return build_notifier()


def get_lending_service(
    store: InventoryStore = Depends(get_inventory_store),
    ledger: BorrowLedger = Depends(get_ledger),
    notifier=Depends(get_notifier),
) -> LendingService:
    return LendingService(store, ledger, notifier)
