"""Request and response models for the HTTP API."""

from pydantic import BaseModel, Field

from .user import Role


# --- Books ---
class BookModel(BaseModel):
    id: int
    title: str
    author: str
    category: str | None = None
    isbn: str | None = None
    publication_year: int
    total_copies: int
    available_copies: int
    shelf_number: str | None = None
    image: str | None = Field(default=None, description="Image reference (URL or path)")
    created_at: str | None = None


class BookCreateModel(BaseModel):
    title: str = Field(..., min_length=1)
    author: str = Field(..., min_length=1)
    publication_year: int
    total_copies: int = Field(..., ge=0)
    category: str | None = None
    isbn: str | None = None
    shelf_number: str | None = None
    image: str | None = None


class BookUpdateModel(BaseModel):
    title: str | None = None
    author: str | None = None
    publication_year: int | None = None
    total_copies: int | None = Field(default=None, ge=0)
    category: str | None = None
    isbn: str | None = None
    shelf_number: str | None = None
    image: str | None = None


class BookCreatedResponse(BaseModel):
    message: str
    id: int


class BookUpdatedResponse(BaseModel):
    message: str
    book: BookModel


# --- Borrows ---
class BorrowRequest(BaseModel):
    book_id: int


class BorrowResponse(BaseModel):
    message: str
    borrow_id: int
    due_date: str


class ReturnResponse(BaseModel):
    message: str
    fine: int


class MyBorrowModel(BaseModel):
    id: int
    book_id: int
    title: str
    borrow_date: str
    due_date: str
    return_date: str | None = None
    status: str
    fine: int = 0


class ActiveBorrowModel(BaseModel):
    id: int
    book_id: int
    title: str
    member_id: int
    member_name: str
    member_email: str
    borrow_date: str
    due_date: str
    is_overdue: bool = False


class BorrowHistoryModel(BaseModel):
    id: int
    book_id: int
    title: str
    member_id: int
    member_name: str
    member_email: str
    borrow_date: str
    due_date: str
    return_date: str
    fine: int


# --- Users ---
class UserSummaryModel(BaseModel):
    id: int
    name: str
    email: str
    role: Role
    wallet: int = 0


class SignupModel(BaseModel):
    name: str
    email: str
    password: str


class LoginModel(BaseModel):
    email: str
    password: str


class LoginResponse(BaseModel):
    message: str
    token: str
    user: UserSummaryModel


class UserCreateModel(BaseModel):
    name: str
    email: str
    password: str
    role: Role = Role.MEMBER


class UserUpdateModel(BaseModel):
    name: str | None = None
    email: str | None = None
    role: Role | None = None


class UserResponse(BaseModel):
    message: str
    user: UserSummaryModel


class WalletResponse(BaseModel):
    wallet: int


# --- Misc ---
class MessageResponse(BaseModel):
    message: str


class CountResponse(BaseModel):
    count: int


class StatsSummaryModel(BaseModel):
    books: int
    members: int
    pending_users: int
    open_borrows: int
    overdue_borrows: int
    total_fines: int


class HealthResponse(BaseModel):
    status: str
    timestamp: str
    db: bool
