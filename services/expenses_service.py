"""Service layer for handling expense-related logic."""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List

from motor.motor_asyncio import AsyncIOMotorCollection # Type hint for collection
from pymongo import ReturnDocument
from pymongo.errors import PyMongoError

from models.expense import (
    Expense,
    parse_expense_id,
    validate_expense_changes,
    validate_new_expense,
)
from utils.errors import NotFound, StorageError

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    """Current UTC time truncated to the millisecond precision BSON keeps."""
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=now.microsecond // 1000 * 1000)


# --- Database Interaction Functions (Depend on collection passed from route) ---

async def list_expenses(collection: AsyncIOMotorCollection) -> List[Expense]:
    """Fetches all expenses, most recently created first."""
    logger.info(f"Fetching all expenses from collection '{collection.name}'...")
    expenses = []
    try:
        cursor = collection.find(sort=[("createdAt", -1), ("_id", -1)])
        async for doc in cursor:
            expenses.append(Expense.from_document(doc))
    except PyMongoError as e:
        logger.error(f"Database error fetching expenses: {e}")
        raise StorageError(f"Database error fetching expenses: {e}") from e
    logger.info(f"Fetched {len(expenses)} expenses successfully.")
    return expenses


async def create_expense(collection: AsyncIOMotorCollection, payload: Dict[str, Any]) -> Expense:
    """Validates the payload and inserts a new expense document."""
    document = validate_new_expense(payload)
    now = _utcnow()
    document["createdAt"] = now
    document["updatedAt"] = now
    try:
        result = await collection.insert_one(document)
    except PyMongoError as e:
        logger.error(f"Database error inserting expense: {e}")
        raise StorageError(f"Database error inserting expense: {e}") from e
    document["_id"] = result.inserted_id
    logger.info(f"Created expense {result.inserted_id} ({document['category']}, {document['amount']}).")
    return Expense.from_document(document)


async def get_expense(collection: AsyncIOMotorCollection, expense_id: str) -> Expense:
    oid = parse_expense_id(expense_id)
    try:
        doc = await collection.find_one({"_id": oid})
    except PyMongoError as e:
        logger.error(f"Database error fetching expense {expense_id}: {e}")
        raise StorageError(f"Database error fetching expense: {e}") from e
    if doc is None:
        raise NotFound("expense not found")
    return Expense.from_document(doc)


async def update_expense(
    collection: AsyncIOMotorCollection,
    expense_id: str,
    payload: Dict[str, Any]
) -> Expense:
    """
    Applies a partial update to one expense.
    - Only date, category, amount and notes are considered; other keys are ignored.
    - Each present field is validated before anything is written.
    - The write is a single document operation, so either all fields change or none do.
    """
    oid = parse_expense_id(expense_id)
    changes = validate_expense_changes(payload)
    changes["updatedAt"] = _utcnow()
    logger.debug(f"Updating expense {expense_id} with fields {sorted(changes)}")
    try:
        doc = await collection.find_one_and_update(
            {"_id": oid},
            {"$set": changes},
            return_document=ReturnDocument.AFTER,
        )
    except PyMongoError as e:
        logger.error(f"Database error updating expense {expense_id}: {e}")
        raise StorageError(f"Database error updating expense: {e}") from e
    if doc is None:
        raise NotFound("expense not found")
    logger.info(f"Updated expense {expense_id}.")
    return Expense.from_document(doc)


async def delete_expense(collection: AsyncIOMotorCollection, expense_id: str) -> None:
    """Permanently removes an expense. A second delete of the same id is a NotFound."""
    oid = parse_expense_id(expense_id)
    try:
        result = await collection.delete_one({"_id": oid})
    except PyMongoError as e:
        logger.error(f"Database error deleting expense {expense_id}: {e}")
        raise StorageError(f"Database error deleting expense: {e}") from e
    if result.deleted_count == 0:
        raise NotFound("expense not found")
    logger.info(f"Deleted expense {expense_id}.")
