from fastapi import APIRouter, Depends, HTTPException, Query
from typing import Optional

import models
from database import get_db, obj_to_str, to_object_id
from models import OPEN_STATUSES, Principal, Role
from services.ledger import BorrowLedger
from utils.dependencies import admin_required, get_ledger
from utils.pagination import page_meta, page_window

router = APIRouter(prefix="/users", tags=["Users"])


def _user_response(u: dict) -> models.UserResponse:
    return models.UserResponse(
        id=obj_to_str(u["_id"]),
        username=u["username"],
        email=u["email"],
        role=u.get("role", Role.MEMBER.value),
        is_active=u.get("is_active", True),
    )


async def _find_user(db, user_id: str) -> dict:
    user_obj_id = to_object_id(user_id)
    if user_obj_id is None:
        raise HTTPException(status_code=400, detail="Invalid user ID format")
    user = await db.users.find_one({"_id": user_obj_id})
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


@router.get("/")
async def list_users(
    is_active: Optional[bool] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    admin: Principal = Depends(admin_required),
    db=Depends(get_db),
):
    """Get all users (Admin only)"""
    query = {}
    if is_active is not None:
        query["is_active"] = is_active
    page, limit, skip = page_window(page, limit)
    users = []
    async for u in db.users.find(query).sort("created_at", -1).skip(skip).limit(limit):
        users.append(_user_response(u))
    total = await db.users.count_documents(query)
    return {"data": users, **page_meta(total, page, limit, len(users))}

@router.get("/stats/summary")
async def get_user_stats(admin: Principal = Depends(admin_required), db=Depends(get_db)):
    """Get user statistics summary (Admin only)"""
    open_values = [s.value for s in OPEN_STATUSES]
    total_users = await db.users.count_documents({})
    admin_count = await db.users.count_documents({"role": Role.ADMIN.value})
    member_count = await db.users.count_documents({"role": {"$ne": Role.ADMIN.value}})
    deactivated = await db.users.count_documents({"is_active": False})
    active_borrowers = len(await db.borrow_records.distinct("user_id", {"status": {"$in": open_values}}))

    return {
        "total_users": total_users,
        "admin_count": admin_count,
        "member_count": member_count,
        "deactivated_users": deactivated,
        "active_borrowers": active_borrowers,
    }

@router.get("/{user_id}", response_model=models.UserResponse)
async def get_user(user_id: str, admin: Principal = Depends(admin_required), db=Depends(get_db)):
    """Get a specific user by ID (Admin only)"""
    return _user_response(await _find_user(db, user_id))

@router.delete("/{user_id}")
async def delete_user(
    user_id: str,
    current_admin: Principal = Depends(admin_required),
    db=Depends(get_db),
    ledger: BorrowLedger = Depends(get_ledger),
):
    """Delete a user (Admin only)"""
    user_to_delete = await _find_user(db, user_id)

    # Prevent admin from deleting themselves
    if user_id == current_admin.id:
        raise HTTPException(status_code=400, detail="You cannot delete your own account")

    if await ledger.count_open_for_user(user_id):
        raise HTTPException(
            status_code=400,
            detail="Cannot delete user with active borrows. Please ensure all books are returned first."
        )

    result = await db.users.delete_one({"_id": user_to_delete["_id"]})
    if result.deleted_count == 0:
        raise HTTPException(status_code=404, detail="User not found")

    return {
        "message": f"User '{user_to_delete['username']}' ({user_to_delete['email']}) has been deleted successfully",
        "deleted_user_id": user_id
    }

@router.patch("/{user_id}/role")
async def change_user_role(
    user_id: str,
    new_role: Role,
    current_admin: Principal = Depends(admin_required),
    db=Depends(get_db),
):
    """Change a user's role (Admin only)"""
    user_to_update = await _find_user(db, user_id)

    # Prevent admin from changing their own role (to avoid locking out)
    if user_id == current_admin.id:
        raise HTTPException(status_code=400, detail="You cannot change your own role")

    current_role = user_to_update.get("role", Role.MEMBER.value)
    if current_role == new_role.value:
        raise HTTPException(status_code=400, detail=f"User already has role: {new_role.value}")

    await db.users.update_one({"_id": user_to_update["_id"]}, {"$set": {"role": new_role.value}})

    return {
        "message": f"User '{user_to_update['username']}' role changed from '{current_role}' to '{new_role.value}'",
        "user_id": user_id,
        "old_role": current_role,
        "new_role": new_role.value
    }

async def _set_active(db, user_id: str, current_admin: Principal, active: bool) -> models.UserResponse:
    user = await _find_user(db, user_id)
    if user_id == current_admin.id:
        raise HTTPException(status_code=400, detail="You cannot change your own account status")
    if user.get("is_active", True) == active:
        state = "active" if active else "deactivated"
        raise HTTPException(status_code=400, detail=f"User is already {state}")
    await db.users.update_one({"_id": user["_id"]}, {"$set": {"is_active": active}})
    user["is_active"] = active
    return _user_response(user)

@router.put("/{user_id}/deactivate", response_model=models.UserResponse)
async def deactivate_user(user_id: str, current_admin: Principal = Depends(admin_required), db=Depends(get_db)):
    """Deactivate a user account (Admin only); the user can no longer log in or borrow"""
    return await _set_active(db, user_id, current_admin, False)

@router.put("/{user_id}/activate", response_model=models.UserResponse)
async def activate_user(user_id: str, current_admin: Principal = Depends(admin_required), db=Depends(get_db)):
    """Re-activate a user account (Admin only)"""
    return await _set_active(db, user_id, current_admin, True)

@router.get("/{user_id}/borrows", response_model=list[models.BorrowResponse])
async def get_user_borrows(
    user_id: str,
    open_only: bool = False,
    admin: Principal = Depends(admin_required),
    db=Depends(get_db),
    ledger: BorrowLedger = Depends(get_ledger),
):
    """Get borrow records for a specific user, optionally only open ones (Admin only)"""
    await _find_user(db, user_id)
    records = await ledger.history(user_id, open_only=open_only)
    return await ledger.resolve(records)
