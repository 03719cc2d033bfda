import os
from typing import Callable, List, Optional

from fastapi import Depends, FastAPI, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordBearer
from pymongo.database import Database
from pymongo.errors import PyMongoError

import auth
from categories import CategoryRepository
from config import get_settings
from database import get_db, serialize_document, utcnow
from errors import AuthError, FinanceTrackerError, TokenError, ValidationError
from log import configure_logging, get_logger
from mailer import send_password_reset_email
from repositories import ExpenseRepository, LedgerRepository, SavingRepository, parse_datetime
from schemas import (
    CategoryOrderPayload,
    CategoryPayload,
    CategoryUpdatePayload,
    ChangePasswordPayload,
    DeletePayload,
    ExpensePayload,
    ExpenseUpdatePayload,
    ForgotPasswordPayload,
    LedgerPayload,
    LedgerUpdatePayload,
    LoginPayload,
    ResetPasswordPayload,
    SavingPayload,
    SavingUpdatePayload,
    SignupPayload,
)
from stats import (
    daily_comparison,
    expense_summary,
    group_totals,
    ledger_stats,
    monthly_trend,
    period_totals,
    sum_amounts,
    top_n,
)

settings = get_settings()
configure_logging(settings.log_level)
logger = get_logger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="api/auth/login", auto_error=False)


# ---------------------------
# App Init
# ---------------------------
app = FastAPI(title="Expense Tracker API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

if settings.uses_default_secret:
    logger.warning("default_secret_key_in_use")


# ---------------------------
# Error envelope
# ---------------------------
def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "message": message})


@app.exception_handler(FinanceTrackerError)
async def handle_app_error(request: Request, exc: FinanceTrackerError):
    if exc.status_code >= 500:
        logger.error(
            "request_failed",
            method=request.method,
            path=request.url.path,
            error=type(exc).__name__,
            cause=repr(exc.__cause__) if exc.__cause__ else None,
        )
    return _error(exc.status_code, exc.message)


@app.exception_handler(RequestValidationError)
async def handle_request_validation(request: Request, exc: RequestValidationError):
    first = exc.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ()) if part not in ("body", "query"))
    message = f"{location}: {first['msg']}" if location else first["msg"]
    return _error(400, message)


@app.exception_handler(PyMongoError)
async def handle_storage_error(request: Request, exc: PyMongoError):
    logger.error("storage_error", method=request.method, path=request.url.path, exc_info=exc)
    return _error(500, "Something went wrong")


@app.exception_handler(Exception)
async def handle_unexpected_error(request: Request, exc: Exception):
    logger.error("unhandled_error", method=request.method, path=request.url.path, exc_info=exc)
    return _error(500, "Something went wrong")


# ---------------------------
# Session dependencies
# ---------------------------
def get_session_user(
    request: Request,
    bearer: Optional[str] = Depends(oauth2_scheme),
    db: Database = Depends(get_db),
) -> Optional[dict]:
    token = request.cookies.get(settings.session_cookie_name) or bearer
    return auth.get_session(db, token)


def get_current_user(session: Optional[dict] = Depends(get_session_user)) -> dict:
    if not session:
        raise AuthError("Unauthorized")
    return session


def get_owner_id(session: dict = Depends(get_current_user)) -> str:
    if not session["is_enabled"]:
        raise AuthError("Account is disabled")
    return session["user_id"]


def get_mail_sender() -> Callable[[str, str], None]:
    return send_password_reset_email


def _set_session_cookie(response: Response, user: dict) -> None:
    response.set_cookie(
        settings.session_cookie_name,
        auth.create_access_token(user),
        max_age=settings.session_expire_minutes * 60,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="lax",
    )


def _serialize_all(docs: List[dict]) -> List[dict]:
    return [serialize_document(doc) for doc in docs]


def _date_range(start_date: Optional[str], end_date: Optional[str]) -> dict:
    return {
        "start": parse_datetime(start_date, "startDate") if start_date else None,
        "end": parse_datetime(end_date, "endDate", end_of_day=True) if end_date else None,
    }


# ---------------------------
# Basic Routes
# ---------------------------
@app.get("/")
def root():
    return {"name": "Expense Tracker API", "status": "ok"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set",
        "connection_status": "Not Connected",
        "collections": [],
    }
    try:
        db = get_db()
        response["database"] = "✅ Connected"
        response["connection_status"] = "Connected"
        response["collections"] = db.list_collection_names()[:10]
    except PyMongoError as e:
        response["database"] = f"⚠️ {str(e)[:60]}"
    return response


# ---------------------------
# Auth Endpoints
# ---------------------------
@app.post("/api/auth/signup")
def signup(payload: SignupPayload, response: Response, db: Database = Depends(get_db)):
    user = auth.signup(db, payload.name, payload.email, payload.password)
    _set_session_cookie(response, user)
    return {"success": True, "message": "Account created successfully", "user": auth.public_user(user)}


@app.post("/api/auth/login")
def login(payload: LoginPayload, response: Response, db: Database = Depends(get_db)):
    user = auth.login(db, payload.email, payload.password)
    _set_session_cookie(response, user)
    return {"success": True, "message": "Login successful", "user": auth.public_user(user, include_status=True)}


@app.post("/api/auth/logout")
def logout(response: Response):
    response.delete_cookie(settings.session_cookie_name, httponly=True, secure=settings.cookie_secure, samesite="lax")
    return {"success": True, "message": "Logged out"}


@app.get("/api/auth/me")
def me(session: Optional[dict] = Depends(get_session_user)):
    if not session:
        raise AuthError("Not authenticated")
    return {
        "success": True,
        "user": {
            "id": session["user_id"],
            "name": session["name"],
            "email": session["email"],
            "isEnabled": session["is_enabled"],
        },
    }


@app.post("/api/auth/forgot-password")
def forgot_password(
    payload: ForgotPasswordPayload,
    db: Database = Depends(get_db),
    send: Callable[[str, str], None] = Depends(get_mail_sender),
):
    message = auth.request_password_reset(db, payload.email, send)
    return {"success": True, "message": message}


@app.get("/api/auth/reset-password")
def verify_reset_token(token: Optional[str] = None, db: Database = Depends(get_db)):
    if not token:
        raise ValidationError("Token is required")
    if not auth.verify_reset_token(db, token):
        raise TokenError(auth.INVALID_RESET_TOKEN)
    return {"success": True, "message": "Token is valid"}


@app.post("/api/auth/reset-password")
def reset_password(payload: ResetPasswordPayload, db: Database = Depends(get_db)):
    auth.reset_password(db, payload.token, payload.password)
    return {"success": True, "message": "Password has been reset successfully"}


@app.post("/api/auth/change-password")
def change_password(
    payload: ChangePasswordPayload,
    owner_id: str = Depends(get_owner_id),
    db: Database = Depends(get_db),
):
    auth.change_password(db, owner_id, payload.current_password, payload.new_password)
    return {"success": True, "message": "Password changed successfully"}


# ---------------------------
# Expenses
# ---------------------------
@app.get("/api/expense")
def list_expenses(
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    owner_id: str = Depends(get_owner_id),
    db: Database = Depends(get_db),
):
    repo = ExpenseRepository(db)
    span = _date_range(start_date, end_date)
    expenses = repo.list(owner_id, **span)
    everything = expenses if span["start"] is None and span["end"] is None else repo.list(owner_id)
    return {
        "success": True,
        "data": _serialize_all(expenses),
        "total": round(sum_amounts(expenses), 2),
        "totals": period_totals(everything, utcnow()),
    }


@app.get("/api/expense/stats")
def expense_stats(owner_id: str = Depends(get_owner_id), db: Database = Depends(get_db)):
    expenses = ExpenseRepository(db).list(owner_id)
    now = utcnow()
    return {
        "success": True,
        "data": {
            "summary": expense_summary(expenses, now),
            "periods": period_totals(expenses, now),
            "byTitle": group_totals(expenses, "title", n=7),
            "byPaymentMethod": group_totals(expenses, "reason"),
            "weekly": daily_comparison(expenses, now),
            "monthlyTrend": monthly_trend(expenses, now),
            "top": _serialize_all(top_n(expenses, "amount", 5)),
        },
    }


@app.post("/api/expense", status_code=201)
def create_expense(payload: ExpensePayload, owner_id: str = Depends(get_owner_id), db: Database = Depends(get_db)):
    expense = ExpenseRepository(db).create(owner_id, payload.model_dump(exclude_unset=True))
    return {"success": True, "data": serialize_document(expense)}


@app.put("/api/expense")
def update_expense(payload: ExpenseUpdatePayload, owner_id: str = Depends(get_owner_id), db: Database = Depends(get_db)):
    fields = payload.model_dump(exclude_unset=True, exclude={"id"})
    expense = ExpenseRepository(db).update(owner_id, payload.id, fields)
    return {"success": True, "data": serialize_document(expense)}


@app.delete("/api/expense")
def delete_expense(payload: DeletePayload, owner_id: str = Depends(get_owner_id), db: Database = Depends(get_db)):
    ExpenseRepository(db).delete(owner_id, payload.id)
    return {"success": True, "message": "Expense deleted"}


# ---------------------------
# Savings
# ---------------------------
@app.get("/api/saving")
def list_savings(
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    owner_id: str = Depends(get_owner_id),
    db: Database = Depends(get_db),
):
    savings = SavingRepository(db).list(owner_id, **_date_range(start_date, end_date))
    return {"success": True, "data": _serialize_all(savings), "total": round(sum_amounts(savings), 2)}


@app.post("/api/saving", status_code=201)
def create_saving(payload: SavingPayload, owner_id: str = Depends(get_owner_id), db: Database = Depends(get_db)):
    saving = SavingRepository(db).create(owner_id, payload.model_dump(exclude_unset=True))
    return {"success": True, "data": serialize_document(saving)}


@app.put("/api/saving")
def update_saving(payload: SavingUpdatePayload, owner_id: str = Depends(get_owner_id), db: Database = Depends(get_db)):
    fields = payload.model_dump(exclude_unset=True, exclude={"id"})
    saving = SavingRepository(db).update(owner_id, payload.id, fields)
    return {"success": True, "data": serialize_document(saving)}


@app.delete("/api/saving")
def delete_saving(payload: DeletePayload, owner_id: str = Depends(get_owner_id), db: Database = Depends(get_db)):
    SavingRepository(db).delete(owner_id, payload.id)
    return {"success": True, "message": "Saving deleted"}


# ---------------------------
# Ledger
# ---------------------------
@app.get("/api/ledger")
def list_ledger(type: Optional[str] = None, owner_id: str = Depends(get_owner_id), db: Database = Depends(get_db)):
    entries = LedgerRepository(db).list(owner_id, type=type)
    return {"success": True, "data": _serialize_all(entries), "stats": ledger_stats(entries)}


@app.post("/api/ledger", status_code=201)
def create_ledger(payload: LedgerPayload, owner_id: str = Depends(get_owner_id), db: Database = Depends(get_db)):
    entry = LedgerRepository(db).create(owner_id, payload.model_dump(exclude_unset=True))
    return {"success": True, "data": serialize_document(entry)}


@app.put("/api/ledger")
def update_ledger(payload: LedgerUpdatePayload, owner_id: str = Depends(get_owner_id), db: Database = Depends(get_db)):
    fields = payload.model_dump(exclude_unset=True, exclude={"id"})
    entry = LedgerRepository(db).update(owner_id, payload.id, fields)
    return {"success": True, "data": serialize_document(entry)}


@app.delete("/api/ledger")
def delete_ledger(payload: DeletePayload, owner_id: str = Depends(get_owner_id), db: Database = Depends(get_db)):
    LedgerRepository(db).delete(owner_id, payload.id)
    return {"success": True, "message": "Ledger entry deleted"}


# ---------------------------
# Ledger categories
# ---------------------------
@app.get("/api/ledger-category")
def list_categories(owner_id: str = Depends(get_owner_id), db: Database = Depends(get_db)):
    return {"success": True, "data": _serialize_all(CategoryRepository(db).list(owner_id))}


@app.post("/api/ledger-category", status_code=201)
def create_category(payload: CategoryPayload, owner_id: str = Depends(get_owner_id), db: Database = Depends(get_db)):
    category = CategoryRepository(db).create(owner_id, payload.name, payload.color)
    return {"success": True, "data": serialize_document(category)}


@app.put("/api/ledger-category/order")
def reorder_categories(
    payload: CategoryOrderPayload,
    owner_id: str = Depends(get_owner_id),
    db: Database = Depends(get_db),
):
    categories = CategoryRepository(db).reorder(owner_id, payload.ids)
    return {"success": True, "data": _serialize_all(categories)}


@app.put("/api/ledger-category")
def rename_category(
    payload: CategoryUpdatePayload,
    owner_id: str = Depends(get_owner_id),
    db: Database = Depends(get_db),
):
    category = CategoryRepository(db).rename(owner_id, payload.id, payload.name, payload.color)
    return {"success": True, "data": serialize_document(category)}


@app.delete("/api/ledger-category")
def delete_category(payload: DeletePayload, owner_id: str = Depends(get_owner_id), db: Database = Depends(get_db)):
    CategoryRepository(db).delete(owner_id, payload.id)
    return {"success": True, "message": "Category deleted"}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
