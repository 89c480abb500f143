from fastapi import APIRouter, Depends, Query, status
from typing import Optional

import models
from models import Genre, Principal
from services.inventory import InventoryService
from utils.dependencies import admin_required, get_inventory_service

router = APIRouter(prefix="/books", tags=["Books"])

@router.post("/", response_model=models.BookResponse, status_code=status.HTTP_201_CREATED)
async def add_book(
    book: models.BookCreate,
    admin: Principal = Depends(admin_required),
    service: InventoryService = Depends(get_inventory_service),
):
    created = await service.create_book(book)
    return models.BookResponse.from_book(created)

@router.get("/", response_model=models.BookPage)
async def list_books(
    search: Optional[str] = None,
    genre: Optional[Genre] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    service: InventoryService = Depends(get_inventory_service),
):
    """Search by title, author or ISBN and filter by genre"""
    return await service.search(search, genre, page, limit)

@router.get("/{book_id}", response_model=models.BookResponse)
async def get_book(book_id: int, service: InventoryService = Depends(get_inventory_service)):
    book = await service.get_book(book_id)
    return models.BookResponse.from_book(book)

@router.put("/{book_id}", response_model=models.BookResponse)
async def update_book(
    book_id: int,
    changes: models.BookUpdate,
    admin: Principal = Depends(admin_required),
    service: InventoryService = Depends(get_inventory_service),
):
    """Update a book (Admin only). Changing total_copies keeps borrowed copies on loan."""
    book = await service.update_book(book_id, changes)
    return models.BookResponse.from_book(book)

@router.delete("/{book_id}")
async def delete_book(
    book_id: int,
    admin: Principal = Depends(admin_required),
    service: InventoryService = Depends(get_inventory_service),
):
    """Delete a book (only if no copies are currently borrowed)"""
    book = await service.delete_book(book_id)
    return {"message": f"Book '{book.title}' has been deleted from the library"}
