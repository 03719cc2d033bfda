"""
Owner-scoped repositories for expenses, savings and ledger entries.

Every query filters on ``user_id``; a document that belongs to someone else
is reported exactly like a missing one.
"""

import math
import re
from datetime import datetime, time
from typing import Any, Dict, List, Optional

import pydantic
from pymongo import DESCENDING, ReturnDocument
from pymongo.database import Database

from categories import CategoryRepository
from database import (
    EXPENSES,
    LEDGERS,
    SAVINGS,
    as_naive_utc,
    create_document,
    get_documents,
    to_object_id,
    utcnow,
)
from errors import NotFoundError, ValidationError
from schemas import LEDGER_STATUSES, Expense, Ledger, Saving

_PLAIN_NUMBER = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?$")


def to_number(value: Any, field: str) -> float:
    """Accept ints, floats and plain numeric strings. Currency strings like "Rs 150" are rejected."""
    label = field.replace("_", " ").capitalize()
    if isinstance(value, bool):
        raise ValidationError(f"{label} must be a number")
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str) and _PLAIN_NUMBER.match(value.strip()):
        number = float(value.strip())
    else:
        raise ValidationError(f"{label} must be a number")
    if not math.isfinite(number):
        raise ValidationError(f"{label} must be a number")
    return number


def parse_datetime(value: Any, field: str, end_of_day: bool = False) -> datetime:
    """
    Parse an ISO date or datetime into naive UTC.

    A bare date is the start of that day, or its last instant when
    ``end_of_day`` is set so that ``endDate=2024-05-31`` includes the 31st.
    """
    if isinstance(value, datetime):
        return as_naive_utc(value)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} must be an ISO date")
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO date")
    if end_of_day and len(text) == 10:
        parsed = datetime.combine(parsed.date(), time.max)
    return as_naive_utc(parsed)


class Repository:
    collection_name: str = ""
    schema = None
    required_fields: tuple = ("title", "amount")
    numeric_fields: tuple = ("amount",)
    date_fields: tuple = ()
    mutable_fields: tuple = ()
    not_found_message = "Not found"

    def __init__(self, db: Database):
        self.db = db
        self.collection = db[self.collection_name]

    # ---------------------------
    # Reads
    # ---------------------------
    def query(self, owner_id: str, **filters) -> dict:
        return {"user_id": owner_id}

    def list(self, owner_id: str, **filters) -> List[dict]:
        return get_documents(
            self.db,
            self.collection_name,
            self.query(owner_id, **filters),
            sort=[("created_at", DESCENDING), ("_id", DESCENDING)],
        )

    def get(self, owner_id: str, doc_id: str) -> dict:
        oid = to_object_id(doc_id)
        doc = self.collection.find_one({"_id": oid, "user_id": owner_id}) if oid else None
        if not doc:
            raise NotFoundError(self.not_found_message)
        return doc

    # ---------------------------
    # Writes
    # ---------------------------
    def clean(self, fields: Dict[str, Any], creating: bool) -> Dict[str, Any]:
        unknown = sorted(set(fields) - set(self.mutable_fields))
        if unknown:
            raise ValidationError(f"Unknown field(s): {', '.join(unknown)}")

        if creating:
            missing = [name for name in self.required_fields if fields.get(name) in (None, "")]
            if missing:
                raise ValidationError(f"Missing required field(s): {', '.join(missing)}")

        cleaned = {}
        for name, value in fields.items():
            if value is None:
                if name in self.required_fields or name in self.numeric_fields:
                    raise ValidationError(f"{name} cannot be empty")
                cleaned[name] = None
            elif name in self.numeric_fields:
                cleaned[name] = to_number(value, name)
            elif name in self.date_fields:
                cleaned[name] = parse_datetime(value, name)
            elif isinstance(value, str):
                cleaned[name] = value.strip()
                if name in self.required_fields and not cleaned[name]:
                    raise ValidationError(f"{name} cannot be empty")
            else:
                cleaned[name] = value
        return cleaned

    def validate(self, owner_id: str, doc: Dict[str, Any]) -> None:
        """Check the merged document before it is written."""

    def defaults(self) -> Dict[str, Any]:
        return {}

    def create(self, owner_id: str, fields: Dict[str, Any]) -> dict:
        data = {**self.defaults(), **self.clean(fields, creating=True)}
        self.validate(owner_id, data)
        try:
            doc = self.schema(user_id=owner_id, **data)
        except pydantic.ValidationError as exc:
            raise ValidationError(exc.errors()[0]["msg"])
        return create_document(self.db, self.collection_name, doc)

    def update(self, owner_id: str, doc_id: str, fields: Dict[str, Any]) -> dict:
        current = self.get(owner_id, doc_id)
        changes = self.clean(fields, creating=False)
        if not changes:
            return current
        self.validate(owner_id, {**current, **changes})

        changes["updated_at"] = utcnow()
        updated = self.collection.find_one_and_update(
            {"_id": current["_id"], "user_id": owner_id},
            {"$set": changes},
            return_document=ReturnDocument.AFTER,
        )
        if not updated:
            raise NotFoundError(self.not_found_message)
        return updated

    def delete(self, owner_id: str, doc_id: str) -> None:
        oid = to_object_id(doc_id)
        result = self.collection.delete_one({"_id": oid, "user_id": owner_id}) if oid else None
        if result is None or result.deleted_count == 0:
            raise NotFoundError(self.not_found_message)


class DatedRepository(Repository):
    """Repositories listable by a ``created_at`` window."""

    def query(self, owner_id: str, start: Optional[datetime] = None, end: Optional[datetime] = None, **filters) -> dict:
        query = {"user_id": owner_id}
        window = {}
        if start is not None:
            window["$gte"] = start
        if end is not None:
            window["$lte"] = end
        if window:
            query["created_at"] = window
        return query


class ExpenseRepository(DatedRepository):
    collection_name = EXPENSES
    schema = Expense
    mutable_fields = ("title", "amount", "reason")
    not_found_message = "Expense not found"

    def validate(self, owner_id, doc):
        if doc["amount"] < 0:
            raise ValidationError("Amount cannot be negative")


class SavingRepository(DatedRepository):
    collection_name = SAVINGS
    schema = Saving
    mutable_fields = ("title", "amount")
    not_found_message = "Saving not found"


class LedgerRepository(Repository):
    collection_name = LEDGERS
    schema = Ledger
    required_fields = ("type", "title", "amount")
    numeric_fields = ("amount", "interest_rate", "paid_amount")
    date_fields = ("start_date", "due_date")
    mutable_fields = (
        "type",
        "title",
        "amount",
        "person_name",
        "interest_rate",
        "start_date",
        "due_date",
        "status",
        "paid_amount",
        "notes",
    )
    not_found_message = "Ledger entry not found"

    def __init__(self, db: Database):
        super().__init__(db)
        self.categories = CategoryRepository(db)

    def query(self, owner_id: str, type: Optional[str] = None, **filters) -> dict:
        query = {"user_id": owner_id}
        if type:
            query["type"] = type
        return query

    def defaults(self):
        return {"start_date": utcnow(), "status": "active", "paid_amount": 0.0, "interest_rate": 0.0}

    def validate(self, owner_id, doc):
        amount = doc["amount"]
        paid = doc.get("paid_amount") or 0.0
        if amount < 0:
            raise ValidationError("Amount cannot be negative")
        if paid < 0:
            raise ValidationError("Paid amount cannot be negative")
        if paid > amount:
            raise ValidationError("Paid amount cannot exceed the amount")
        if doc.get("status") not in LEDGER_STATUSES:
            raise ValidationError(f"Status must be one of: {', '.join(LEDGER_STATUSES)}")
        if doc["type"] not in self.categories.slugs(owner_id):
            raise ValidationError(f"Unknown ledger category: {doc['type']}")
