from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator
from typing import List, Optional
from datetime import datetime, timedelta, timezone
from enum import Enum

import config

LOAN_PERIOD = timedelta(days=config.LOAN_PERIOD_DAYS)


def utcnow() -> datetime:
    """Naive UTC now, truncated to the millisecond precision MongoDB stores."""
    now = datetime.now(timezone.utc).replace(tzinfo=None)
    return now.replace(microsecond=now.microsecond // 1000 * 1000)


class Role(str, Enum):
    MEMBER = "member"
    ADMIN = "admin"


class BorrowStatus(str, Enum):
    BORROWED = "borrowed"
    OVERDUE = "overdue"
    RETURNED = "returned"


OPEN_STATUSES = (BorrowStatus.BORROWED, BorrowStatus.OVERDUE)


class Genre(str, Enum):
    FICTION = "Fiction"
    NON_FICTION = "Non-Fiction"
    SCIENCE = "Science"
    HISTORY = "History"
    BIOGRAPHY = "Biography"
    TECHNOLOGY = "Technology"
    OTHER = "Other"


# ---------- Auth ----------
class UserBase(BaseModel):
    username: str = Field(..., min_length=3, max_length=50)
    email: EmailStr

class UserCreate(UserBase):
    password: str = Field(..., min_length=6)
    role: Role = Role.MEMBER

class UserResponse(UserBase):
    id: str
    role: Role
    is_active: bool = True

class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class Principal(BaseModel):
    """The verified caller, as resolved from a bearer token."""

    model_config = ConfigDict(frozen=True)

    id: str
    role: Role
    is_active: bool = True
    username: Optional[str] = None
    email: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


# ---------- Books ----------
class BookBase(BaseModel):
    title: str = Field(..., min_length=1)
    author: str = Field(..., min_length=1)
    publication_year: int = Field(..., ge=1000)
    genre: Genre
    description: Optional[str] = Field(None, max_length=1000)
    cover_image: Optional[str] = None

    @field_validator("publication_year")
    @classmethod
    def not_in_future(cls, year: int) -> int:
        if year > utcnow().year:
            raise ValueError("Publication year cannot be in future")
        return year

class BookCreate(BookBase):
    isbn: str = Field(..., min_length=1)
    total_copies: int = Field(1, ge=1)  # Number of copies to add
    available_copies: Optional[int] = Field(None, ge=0)  # Defaults to total_copies

class BookUpdate(BaseModel):
    """Partial update; isbn is immutable once the book exists."""

    title: Optional[str] = Field(None, min_length=1)
    author: Optional[str] = Field(None, min_length=1)
    publication_year: Optional[int] = Field(None, ge=1000)
    genre: Optional[Genre] = None
    description: Optional[str] = Field(None, max_length=1000)
    cover_image: Optional[str] = None
    total_copies: Optional[int] = Field(None, ge=1)
    available_copies: Optional[int] = Field(None, ge=0)

    @field_validator("title", "author", "publication_year", "genre", "total_copies")
    @classmethod
    def not_null(cls, value):
        # Omit a field to leave it unchanged; null would blank a required field
        if value is None:
            raise ValueError("Field cannot be null")
        return value

    @field_validator("publication_year")
    @classmethod
    def not_in_future(cls, year: Optional[int]) -> Optional[int]:
        if year is not None and year > utcnow().year:
            raise ValueError("Publication year cannot be in future")
        return year


class Book(BookBase):
    """An inventory unit.  Immutable; changes go through the store."""

    model_config = ConfigDict(frozen=True)

    id: int
    isbn: str
    total_copies: int = Field(..., ge=1)
    available_copies: int = Field(..., ge=0)
    created_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode="before")
    @classmethod
    def default_available(cls, data):
        if isinstance(data, dict) and data.get("available_copies") is None:
            data = {**data, "available_copies": data.get("total_copies")}
        return data

    @model_validator(mode="after")
    def copies_within_total(self):
        if self.available_copies > self.total_copies:
            raise ValueError("available_copies cannot exceed total_copies")
        return self

class BookResponse(Book):
    available: bool
    borrowed_copies: int

    @classmethod
    def from_book(cls, book: Book) -> "BookResponse":
        return cls(
            **book.model_dump(),
            available=book.available_copies > 0,
            borrowed_copies=book.total_copies - book.available_copies,
        )

class BookPage(BaseModel):
    data: List[BookResponse]
    count: int
    total: int
    total_pages: int
    current_page: int


# ---------- Borrow ----------
class BorrowRecord(BaseModel):
    """A lending transaction.  due_date defaults to borrow_date + loan period."""

    model_config = ConfigDict(frozen=True)

    id: Optional[str] = None
    user_id: str
    book_id: int
    borrow_date: datetime
    due_date: datetime
    return_date: Optional[datetime] = None
    status: BorrowStatus = BorrowStatus.BORROWED
    fine: int = Field(0, ge=0)

    @model_validator(mode="before")
    @classmethod
    def default_due_date(cls, data):
        if isinstance(data, dict) and data.get("due_date") is None and data.get("borrow_date"):
            data = {**data, "due_date": data["borrow_date"] + LOAN_PERIOD}
        return data

    @classmethod
    def open(cls, user_id: str, book_id: int, borrow_date: datetime) -> "BorrowRecord":
        return cls(user_id=user_id, book_id=book_id, borrow_date=borrow_date)

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES


class UserSummary(BaseModel):
    id: str
    username: str
    email: str

class BookSummary(BaseModel):
    id: int
    title: str
    author: str
    isbn: str

class BorrowResponse(BorrowRecord):
    id: str
    user: Optional[UserSummary] = None
    book: Optional[BookSummary] = None

class BorrowPage(BaseModel):
    data: List[BorrowResponse]
    count: int
    total: int
    total_pages: int
    current_page: int

class SweepResponse(BaseModel):
    message: str
    data: List[BorrowResponse]


class OverdueNotice(BaseModel):
    username: str
    book_title: str
    due_date: datetime
