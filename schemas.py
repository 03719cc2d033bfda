"""
Database Schemas for the finance tracker

Define MongoDB collection schemas here using Pydantic models.
Each Pydantic model represents a collection in the database.
Collection name is lowercase of the class name.

Request payload models live at the bottom of the module. They accept the
camelCase field names the web client sends and reject unknown fields.
"""

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel

LEDGER_STATUSES = ("active", "partial", "completed")
CATEGORY_COLORS = ("blue", "red", "green", "purple", "orange", "pink", "yellow", "indigo")

LedgerStatus = Literal["active", "partial", "completed"]
CategoryColor = Literal["blue", "red", "green", "purple", "orange", "pink", "yellow", "indigo"]


# Auth/User
class User(BaseModel):
    name: str = Field(..., description="Display name")
    email: EmailStr = Field(..., description="User email, stored lowercase")
    hashed_password: str = Field(..., description="BCrypt hashed password")
    is_enabled: bool = Field(True, description="Disabled accounts keep their session but lose access to data")
    reset_token: Optional[str] = Field(None, description="Single-use password reset token")
    reset_token_expiry: Optional[datetime] = Field(None, description="Reset token expiry (UTC)")


# Day to day spending
class Expense(BaseModel):
    user_id: str = Field(..., description="Owner user id")
    title: str
    amount: float = Field(..., ge=0)
    reason: Optional[str] = Field(None, description="Payment method label, e.g. Cash or Bank")


# Savings deposits
class Saving(BaseModel):
    user_id: str = Field(..., description="Owner user id")
    title: str
    amount: float


# User defined ledger groups; Ledger.type references slug
class LedgerCategory(BaseModel):
    user_id: str
    name: str
    slug: str
    color: CategoryColor = "blue"
    order: int = 0


# Loans given/taken and deposits
class Ledger(BaseModel):
    user_id: str
    type: str = Field(..., description="Slug of a LedgerCategory owned by the same user")
    title: str
    amount: float = Field(..., ge=0)
    person_name: Optional[str] = Field(None, description="Who the loan was given to or taken from")
    interest_rate: float = Field(0, description="Interest rate percentage")
    start_date: Optional[datetime] = None
    due_date: Optional[datetime] = Field(None, description="Loan due date or deposit maturity date")
    status: LedgerStatus = "active"
    paid_amount: float = Field(0, ge=0, description="Amount already paid back or received")
    notes: Optional[str] = None


# ---------------------------
# Request payloads
# ---------------------------
class Payload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


class SignupPayload(Payload):
    name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None


class LoginPayload(Payload):
    email: Optional[str] = None
    password: Optional[str] = None


class ForgotPasswordPayload(Payload):
    email: Optional[str] = None


class ResetPasswordPayload(Payload):
    token: Optional[str] = None
    password: Optional[str] = None


class ChangePasswordPayload(Payload):
    current_password: Optional[str] = None
    new_password: Optional[str] = None


class DeletePayload(Payload):
    id: str


class ExpensePayload(Payload):
    title: Optional[str] = None
    amount: Optional[float] = None
    reason: Optional[str] = None


class ExpenseUpdatePayload(ExpensePayload):
    id: str


class SavingPayload(Payload):
    title: Optional[str] = None
    amount: Optional[float] = None


class SavingUpdatePayload(SavingPayload):
    id: str


class LedgerPayload(Payload):
    type: Optional[str] = None
    title: Optional[str] = None
    amount: Optional[float] = None
    person_name: Optional[str] = None
    interest_rate: Optional[float] = None
    start_date: Optional[datetime] = None
    due_date: Optional[datetime] = None
    status: Optional[LedgerStatus] = None
    paid_amount: Optional[float] = None
    notes: Optional[str] = None


class LedgerUpdatePayload(LedgerPayload):
    id: str


class CategoryPayload(Payload):
    name: Optional[str] = None
    color: Optional[CategoryColor] = None


class CategoryUpdatePayload(CategoryPayload):
    id: str


class CategoryOrderPayload(Payload):
    ids: List[str]
