"""HTTP API for the library backend.

Run with ``uvicorn library_app.api:create_app --factory`` or ``library-cli serve``.
Authenticated endpoints expect ``Authorization: Bearer <token>`` obtained from
``POST /api/login``.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import Depends, FastAPI, Request, Security, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .borrow import format_timestamp
from .config import Settings, configure_logging
from .container import LibraryServices, build_services
from .database import Database
from .errors import LibraryError, StorageError
from .schemas import (
    ActiveBorrowModel,
    BookCreatedResponse,
    BookCreateModel,
    BookModel,
    BookUpdatedResponse,
    BookUpdateModel,
    BorrowHistoryModel,
    BorrowRequest,
    BorrowResponse,
    CountResponse,
    HealthResponse,
    LoginModel,
    LoginResponse,
    MessageResponse,
    MyBorrowModel,
    ReturnResponse,
    SignupModel,
    StatsSummaryModel,
    UserCreateModel,
    UserResponse,
    UserSummaryModel,
    UserUpdateModel,
    WalletResponse,
)
from .security import Principal, require_admin

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


# --- Dependencies ---
def get_services(request: Request) -> LibraryServices:
    return request.app.state.services


def get_principal(
    credentials: Optional[HTTPAuthorizationCredentials] = Security(bearer_scheme),
    services: LibraryServices = Depends(get_services),
) -> Principal:
    """Resolve the bearer token to the caller's current id and role."""
    token = credentials.credentials if credentials else None
    principal = services.gate.authenticate(token)
    return services.membership.resolve_principal(principal)


def _user_summary(user) -> UserSummaryModel:
    return UserSummaryModel(**user.to_dict())


def _book_model(book) -> BookModel:
    return BookModel(**book.to_dict())


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(StorageError)
    async def storage_error_handler(request: Request, exc: StorageError):
        # details were logged where the failure happened
        return JSONResponse(status_code=500, content={"error": "Internal server error"})

    @app.exception_handler(LibraryError)
    async def library_error_handler(request: Request, exc: LibraryError):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err.get('loc', ()) if p != 'body')}: {err.get('msg')}"
            for err in exc.errors()
        )
        return JSONResponse(status_code=400, content={"error": problems or "Invalid request."})


def _register_routes(app: FastAPI) -> None:
    # --- Health ---
    @app.get("/health", response_model=HealthResponse)
    def health(services: LibraryServices = Depends(get_services)):
        """Lightweight health probe with a quick database round trip."""
        now_iso = datetime.now(timezone.utc).isoformat()
        return HealthResponse(status="healthy", timestamp=now_iso, db=services.database.ping())

    # --- Books ---
    @app.get("/api/public/books", response_model=List[BookModel])
    def list_public_books(services: LibraryServices = Depends(get_services)):
        return [_book_model(b) for b in services.catalog.list_books()]

    @app.get("/api/books", response_model=List[BookModel])
    def list_books(principal: Principal = Depends(get_principal),
                   services: LibraryServices = Depends(get_services)):
        require_admin(principal)
        return [_book_model(b) for b in services.catalog.list_books()]

    @app.get("/api/books/search", response_model=List[BookModel])
    def search_books(q: str = "", principal: Principal = Depends(get_principal),
                     services: LibraryServices = Depends(get_services)):
        return [_book_model(b) for b in services.catalog.search_books(principal, q)]

    @app.get("/api/books/{book_id}", response_model=BookModel)
    def get_book(book_id: int, services: LibraryServices = Depends(get_services)):
        return _book_model(services.catalog.get_book(book_id))

    @app.post("/api/books", response_model=BookCreatedResponse, status_code=status.HTTP_201_CREATED)
    def create_book(payload: BookCreateModel, principal: Principal = Depends(get_principal),
                    services: LibraryServices = Depends(get_services)):
        book = services.catalog.add_book(principal, **payload.model_dump())
        return BookCreatedResponse(message="Book added.", id=book.id)

    @app.put("/api/books/{book_id}", response_model=BookUpdatedResponse)
    def update_book(book_id: int, payload: BookUpdateModel, principal: Principal = Depends(get_principal),
                    services: LibraryServices = Depends(get_services)):
        book = services.catalog.update_book(principal, book_id, **payload.model_dump(exclude_none=True))
        return BookUpdatedResponse(message="Book updated.", book=_book_model(book))

    @app.delete("/api/books/{book_id}", response_model=MessageResponse)
    def delete_book(book_id: int, principal: Principal = Depends(get_principal),
                    services: LibraryServices = Depends(get_services)):
        services.catalog.remove_book(principal, book_id)
        return MessageResponse(message="Book deleted.")

    # --- Borrows ---
    @app.post("/api/borrows", response_model=BorrowResponse, status_code=status.HTTP_201_CREATED)
    def borrow_book(payload: BorrowRequest, principal: Principal = Depends(get_principal),
                    services: LibraryServices = Depends(get_services)):
        borrow = services.circulation.borrow_book(principal, payload.book_id)
        return BorrowResponse(
            message="Book borrowed.",
            borrow_id=borrow.id,
            due_date=format_timestamp(borrow.due_date),
        )

    @app.post("/api/borrows/{borrow_id}/return", response_model=ReturnResponse)
    def return_book(borrow_id: int, principal: Principal = Depends(get_principal),
                    services: LibraryServices = Depends(get_services)):
        fine = services.circulation.return_book(principal, borrow_id)
        message = f"Book returned with a late fine of {fine}." if fine else "Book returned."
        return ReturnResponse(message=message, fine=fine)

    @app.get("/api/borrows/me", response_model=List[MyBorrowModel])
    def my_borrows(principal: Principal = Depends(get_principal),
                   services: LibraryServices = Depends(get_services)):
        return services.circulation.list_member_borrows(principal)

    @app.get("/api/borrows/active", response_model=List[ActiveBorrowModel])
    def active_borrows(principal: Principal = Depends(get_principal),
                       services: LibraryServices = Depends(get_services)):
        return services.circulation.list_active_borrows(principal)

    @app.get("/api/borrows/overdue", response_model=List[ActiveBorrowModel])
    def overdue_borrows(principal: Principal = Depends(get_principal),
                        services: LibraryServices = Depends(get_services)):
        return services.circulation.list_overdue_borrows(principal)

    @app.get("/api/borrows/history", response_model=List[BorrowHistoryModel])
    def borrow_history(principal: Principal = Depends(get_principal),
                       services: LibraryServices = Depends(get_services)):
        return services.circulation.borrow_history(principal)

    # --- Accounts ---
    @app.post("/api/signup", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
    def signup(payload: SignupModel, services: LibraryServices = Depends(get_services)):
        user = services.membership.signup(payload.name, payload.email, payload.password)
        return UserResponse(message="Signed up. Wait for an admin to approve your account.",
                            user=_user_summary(user))

    @app.post("/api/login", response_model=LoginResponse)
    def login(payload: LoginModel, services: LibraryServices = Depends(get_services)):
        token, user = services.membership.login(payload.email, payload.password)
        return LoginResponse(message="Logged in.", token=token, user=_user_summary(user))

    @app.get("/api/me", response_model=UserSummaryModel)
    def me(principal: Principal = Depends(get_principal),
           services: LibraryServices = Depends(get_services)):
        return _user_summary(services.membership.get_profile(principal))

    @app.get("/api/wallet", response_model=WalletResponse)
    def wallet(principal: Principal = Depends(get_principal),
               services: LibraryServices = Depends(get_services)):
        return WalletResponse(wallet=services.membership.wallet_balance(principal))

    # --- User administration ---
    @app.get("/api/users", response_model=List[UserSummaryModel])
    def list_users(principal: Principal = Depends(get_principal),
                   services: LibraryServices = Depends(get_services)):
        return [_user_summary(u) for u in services.membership.list_users(principal)]

    @app.put("/api/users/{user_id}/approve", response_model=UserResponse)
    def approve_user(user_id: int, principal: Principal = Depends(get_principal),
                     services: LibraryServices = Depends(get_services)):
        user = services.membership.approve_user(principal, user_id)
        return UserResponse(message="User approved.", user=_user_summary(user))

    @app.post("/api/admin/users", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
    def admin_create_user(payload: UserCreateModel, principal: Principal = Depends(get_principal),
                          services: LibraryServices = Depends(get_services)):
        user = services.membership.create_user(principal, payload.name, payload.email,
                                               payload.password, payload.role)
        return UserResponse(message="User created.", user=_user_summary(user))

    @app.get("/api/admin/users/{user_id}", response_model=UserSummaryModel)
    def admin_get_user(user_id: int, principal: Principal = Depends(get_principal),
                       services: LibraryServices = Depends(get_services)):
        return _user_summary(services.membership.get_user(principal, user_id))

    @app.put("/api/admin/users/{user_id}", response_model=UserResponse)
    def admin_update_user(user_id: int, payload: UserUpdateModel, principal: Principal = Depends(get_principal),
                          services: LibraryServices = Depends(get_services)):
        user = services.membership.update_user(principal, user_id, **payload.model_dump(exclude_none=True))
        return UserResponse(message="User updated.", user=_user_summary(user))

    @app.delete("/api/admin/users/{user_id}", response_model=MessageResponse)
    def admin_delete_user(user_id: int, principal: Principal = Depends(get_principal),
                          services: LibraryServices = Depends(get_services)):
        services.membership.delete_user(principal, user_id)
        return MessageResponse(message="User deleted.")

    # --- Stats ---
    @app.get("/api/stats/books", response_model=CountResponse)
    def stats_books(principal: Principal = Depends(get_principal),
                    services: LibraryServices = Depends(get_services)):
        return CountResponse(count=services.stats.count_books(principal))

    @app.get("/api/stats/users", response_model=CountResponse)
    def stats_users(principal: Principal = Depends(get_principal),
                    services: LibraryServices = Depends(get_services)):
        return CountResponse(count=services.stats.count_members(principal))

    @app.get("/api/stats/borrows", response_model=CountResponse)
    def stats_borrows(principal: Principal = Depends(get_principal),
                      services: LibraryServices = Depends(get_services)):
        return CountResponse(count=services.stats.count_open_borrows(principal))

    @app.get("/api/stats/summary", response_model=StatsSummaryModel)
    def stats_summary(principal: Principal = Depends(get_principal),
                      services: LibraryServices = Depends(get_services)):
        return StatsSummaryModel(**services.stats.summary(principal))


def create_app(settings: Optional[Settings] = None, database: Optional[Database] = None) -> FastAPI:
    """Build the FastAPI application around a freshly opened database handle."""
    settings = settings or Settings()
    configure_logging(settings.log_level)
    services = build_services(settings, database)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"{settings.app_name} {settings.app_version} started ({settings.environment})")
        try:
            yield
        finally:
            services.close()

    app = FastAPI(title=settings.app_name, version=settings.app_version, debug=settings.debug, lifespan=lifespan)
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def add_security_headers(request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        # Account and borrow data must not be cached by intermediaries
        if request.url.path.startswith("/api/") and not request.url.path.startswith("/api/public/"):
            response.headers["Cache-Control"] = "no-store"
        return response

    _register_error_handlers(app)
    _register_routes(app)
    return app
