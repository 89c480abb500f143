from fastapi import APIRouter, Depends, Query, status
from typing import Optional

import models
from models import BorrowStatus, Principal
from services.lending import LendingService
from utils.dependencies import get_current_user, admin_required, get_lending_service

router = APIRouter(prefix="/borrow", tags=["Borrow"])

@router.get("/my-history", response_model=list[models.BorrowResponse])
async def get_my_borrows(
    current_user: Principal = Depends(get_current_user),
    service: LendingService = Depends(get_lending_service),
):
    """Current user's borrow records, newest first"""
    return await service.get_history(current_user.id)

@router.post("/check-overdue", response_model=models.SweepResponse)
async def check_overdue_books(
    admin: Principal = Depends(admin_required),
    service: LendingService = Depends(get_lending_service),
):
    """Mark borrowed books past their due date as overdue and notify borrowers (Admin only)"""
    records = await service.sweep_overdue()
    return models.SweepResponse(
        message=f"Found {len(records)} overdue books. Notifications sent.",
        data=records,
    )

@router.get("/", response_model=models.BorrowPage)
async def get_all_borrows(
    status_filter: Optional[BorrowStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    admin: Principal = Depends(admin_required),
    service: LendingService = Depends(get_lending_service),
):
    """All borrow records, optionally filtered by status (Admin only)"""
    return await service.list_records(status_filter, page, limit)

@router.post("/{book_id}", response_model=models.BorrowResponse, status_code=status.HTTP_201_CREATED)
async def borrow_book(
    book_id: int,
    current_user: Principal = Depends(get_current_user),
    service: LendingService = Depends(get_lending_service),
):
    return await service.borrow(current_user.id, book_id)

@router.put("/{record_id}/return", response_model=models.BorrowResponse)
async def return_book(
    record_id: str,
    current_user: Principal = Depends(get_current_user),
    service: LendingService = Depends(get_lending_service),
):
    return await service.return_book(record_id, current_user)

@router.get("/{record_id}", response_model=models.BorrowResponse)
async def get_borrow(
    record_id: str,
    current_user: Principal = Depends(get_current_user),
    service: LendingService = Depends(get_lending_service),
):
    return await service.get_record(record_id, current_user)
