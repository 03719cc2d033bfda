"""
Ledger categories and the slug rule that ties them to ledger entries.

A ledger entry's ``type`` is the ``slug`` of one of its owner's categories.
The link is a plain string, so this module keeps it consistent: renames move
the entries to the new slug, and deletes are refused while entries still use
the category.
"""

import re
from typing import List, Optional, Set

from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError

from config import get_settings
from database import LEDGER_CATEGORIES, LEDGERS, create_document, get_documents, to_object_id, utcnow
from errors import ConflictError, NotFoundError, StorageError, ValidationError
from log import get_logger
from schemas import CATEGORY_COLORS, LedgerCategory

logger = get_logger(__name__)

DEFAULT_CATEGORIES = (
    {"name": "Loans Given", "slug": "loan_given", "color": "blue", "order": 0},
    {"name": "Loans to Pay", "slug": "loan_taken", "color": "red", "order": 1},
    {"name": "Fixed deposit", "slug": "fixed_deposit", "color": "green", "order": 2},
)
DUPLICATE_NAME = "Category with this name already exists"

_NON_SLUG_CHARS = re.compile(r"[^a-z0-9]+")


def slugify(name: str) -> str:
    """``"Loans Given"`` -> ``"loans_given"``; ``" Fixed   Deposit!! "`` -> ``"fixed_deposit"``."""
    return _NON_SLUG_CHARS.sub("_", name.lower()).strip("_")


def _clean_name(name: Optional[str]) -> str:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Category name is required")
    return name


def _derive_slug(name: str) -> str:
    slug = slugify(name)
    if not slug:
        raise ValidationError("Category name must contain letters or numbers")
    return slug


def _check_color(color: Optional[str]) -> None:
    if color is not None and color not in CATEGORY_COLORS:
        raise ValidationError(f"Color must be one of: {', '.join(CATEGORY_COLORS)}")


class CategoryRepository:
    def __init__(self, db: Database):
        self.db = db
        self.collection = db[LEDGER_CATEGORIES]
        self.ledgers = db[LEDGERS]

    def ensure_defaults(self, owner_id: str) -> bool:
        """Seed the default categories for an owner who has none. Safe to call repeatedly."""
        if self.collection.count_documents({"user_id": owner_id}, limit=1):
            return False
        now = utcnow()
        for default in DEFAULT_CATEGORIES:
            doc = LedgerCategory(user_id=owner_id, **default).model_dump()
            doc.update(created_at=now, updated_at=now)
            try:
                self.collection.update_one(
                    {"user_id": owner_id, "slug": default["slug"]},
                    {"$setOnInsert": doc},
                    upsert=True,
                )
            except DuplicateKeyError:
                # A concurrent request inserted the same default first.
                continue
        logger.info("default_categories_seeded", user_id=owner_id)
        return True

    def list(self, owner_id: str) -> List[dict]:
        self.ensure_defaults(owner_id)
        return get_documents(
            self.db,
            LEDGER_CATEGORIES,
            {"user_id": owner_id},
            sort=[("order", ASCENDING), ("_id", ASCENDING)],
        )

    def slugs(self, owner_id: str) -> Set[str]:
        self.ensure_defaults(owner_id)
        return {doc["slug"] for doc in self.collection.find({"user_id": owner_id}, {"slug": 1})}

    def get(self, owner_id: str, category_id: str) -> dict:
        oid = to_object_id(category_id)
        category = self.collection.find_one({"_id": oid, "user_id": owner_id}) if oid else None
        if not category:
            raise NotFoundError("Category not found")
        return category

    def create(self, owner_id: str, name: Optional[str], color: Optional[str] = None) -> dict:
        name = _clean_name(name)
        slug = _derive_slug(name)
        _check_color(color)

        self.ensure_defaults(owner_id)
        if self.collection.find_one({"user_id": owner_id, "slug": slug}, {"_id": 1}):
            raise ConflictError(DUPLICATE_NAME)

        last = self.collection.find_one({"user_id": owner_id}, sort=[("order", DESCENDING)])
        order = last["order"] + 1 if last else 0
        doc = LedgerCategory(user_id=owner_id, name=name, slug=slug, color=color or "blue", order=order)
        try:
            category = create_document(self.db, LEDGER_CATEGORIES, doc)
        except DuplicateKeyError:
            raise ConflictError(DUPLICATE_NAME)
        logger.info("category_created", user_id=owner_id, slug=slug)
        return category

    def rename(self, owner_id: str, category_id: str, name: Optional[str], color: Optional[str] = None) -> dict:
        """
        Rename a category, recomputing its slug.

        When the slug changes every ledger entry of the owner that used the old
        slug is moved to the new one. With MONGO_TRANSACTIONS enabled both
        writes commit together; otherwise a failed cascade restores the
        category and raises StorageError.
        """
        old = self.get(owner_id, category_id)
        name = _clean_name(name)
        new_slug = _derive_slug(name)
        _check_color(color)

        if new_slug != old["slug"]:
            clash = self.collection.find_one({"user_id": owner_id, "slug": new_slug, "_id": {"$ne": old["_id"]}})
            if clash:
                raise ConflictError(DUPLICATE_NAME)

        changes = {"name": name, "slug": new_slug, "updated_at": utcnow()}
        if color is not None:
            changes["color"] = color

        try:
            if get_settings().use_transactions:
                with self.db.client.start_session() as session:
                    category, moved = session.with_transaction(
                        lambda s: self._apply_rename(owner_id, old, changes, session=s)
                    )
            else:
                category, moved = self._apply_rename_with_compensation(owner_id, old, changes)
        except DuplicateKeyError:
            raise ConflictError(DUPLICATE_NAME)

        logger.info(
            "category_renamed",
            user_id=owner_id,
            old_slug=old["slug"],
            new_slug=new_slug,
            entries_moved=moved,
        )
        return category

    def _apply_rename(self, owner_id: str, old: dict, changes: dict, session=None):
        category = self.collection.find_one_and_update(
            {"_id": old["_id"], "user_id": owner_id},
            {"$set": changes},
            return_document=ReturnDocument.AFTER,
            session=session,
        )
        moved = 0
        if changes["slug"] != old["slug"]:
            result = self.ledgers.update_many(
                {"user_id": owner_id, "type": old["slug"]},
                {"$set": {"type": changes["slug"], "updated_at": changes["updated_at"]}},
                session=session,
            )
            moved = result.modified_count
        return category, moved

    def _apply_rename_with_compensation(self, owner_id: str, old: dict, changes: dict):
        category = self.collection.find_one_and_update(
            {"_id": old["_id"], "user_id": owner_id},
            {"$set": changes},
            return_document=ReturnDocument.AFTER,
        )
        if changes["slug"] == old["slug"]:
            return category, 0
        try:
            result = self.ledgers.update_many(
                {"user_id": owner_id, "type": old["slug"]},
                {"$set": {"type": changes["slug"], "updated_at": changes["updated_at"]}},
            )
        except PyMongoError as exc:
            restore = {key: old[key] for key in ("name", "slug", "color", "updated_at") if key in old}
            self.collection.update_one({"_id": old["_id"]}, {"$set": restore})
            logger.error("category_rename_rolled_back", user_id=owner_id, slug=old["slug"], error=str(exc))
            raise StorageError("Failed to update category") from exc
        return category, result.modified_count

    def delete(self, owner_id: str, category_id: str) -> None:
        category = self.get(owner_id, category_id)
        in_use = self.ledgers.count_documents({"user_id": owner_id, "type": category["slug"]})
        if in_use > 0:
            raise ConflictError(f"Cannot delete category. {in_use} entries are using this category.")
        self.collection.delete_one({"_id": category["_id"], "user_id": owner_id})
        logger.info("category_deleted", user_id=owner_id, slug=category["slug"])

    def reorder(self, owner_id: str, ids: List[str]) -> List[dict]:
        existing = {str(doc["_id"]) for doc in self.collection.find({"user_id": owner_id}, {"_id": 1})}
        if len(ids) != len(existing) or set(ids) != existing:
            raise ValidationError("Order must list every category exactly once")
        now = utcnow()
        for position, category_id in enumerate(ids):
            self.collection.update_one(
                {"_id": to_object_id(category_id), "user_id": owner_id},
                {"$set": {"order": position, "updated_at": now}},
            )
        return self.list(owner_id)
