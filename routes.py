"""API Routes for expenses"""
from fastapi import APIRouter, Body, Depends, HTTPException, Request, Response
from typing import Any, Annotated, Dict, List, Optional
from services import expenses_service
from models.expense import Expense
from motor.motor_asyncio import AsyncIOMotorCollection
import logging

router = APIRouter()
logger = logging.getLogger(__name__)

# --- Dependency Function ---
def get_expenses_collection(request: Request) -> AsyncIOMotorCollection:
    """Dependency to get the MongoDB expenses collection from the request state."""
    collection = getattr(request.state, "expenses_collection", None)
    if collection is None:
        logger.error("Expenses collection not found in application state. Check MongoDB connection.")
        raise HTTPException(status_code=503, detail="Database service not available.")
    return collection

# Type hint for the dependency
ExpensesCollectionDep = Annotated[AsyncIOMotorCollection, Depends(get_expenses_collection)]

# Raw JSON object; field rules are applied by the model functions, not by coercion
PayloadBody = Annotated[Optional[Dict[str, Any]], Body()]

# --- API Routes ---

@router.get("/expenses", response_model=List[Expense], summary="Get All Expenses", description="Retrieves all expense records, most recently created first.")
async def get_expenses(collection: ExpensesCollectionDep) -> List[Expense]:
    logger.info("GET /expenses endpoint called.")
    return await expenses_service.list_expenses(collection)

@router.post("/expenses", response_model=Expense, status_code=201, summary="Create Expense")
async def create_expense(collection: ExpensesCollectionDep, response: Response, payload: PayloadBody = None) -> Expense:
    """
    Creates an expense from {date, category, amount, notes?}.
    Responds 201 with the stored record and a Location header pointing at it.
    """
    expense = await expenses_service.create_expense(collection, payload or {})
    response.headers["Location"] = f"/expenses/{expense.id}"
    return expense

@router.get("/expenses/{expense_id}", response_model=Expense, summary="Get Expense")
async def get_expense(expense_id: str, collection: ExpensesCollectionDep) -> Expense:
    return await expenses_service.get_expense(collection, expense_id)

@router.patch("/expenses/{expense_id}", response_model=Expense, summary="Update Expense", description="Partially updates date, category, amount and/or notes of one expense.")
async def update_expense(expense_id: str, collection: ExpensesCollectionDep, payload: PayloadBody = None) -> Expense:
    logger.info(f"PATCH /expenses/{expense_id} endpoint called with keys: {sorted(payload or {})}")
    return await expenses_service.update_expense(collection, expense_id, payload or {})

@router.delete("/expenses/{expense_id}", status_code=204, response_class=Response, summary="Delete Expense")
async def delete_expense(expense_id: str, collection: ExpensesCollectionDep) -> Response:
    """Removes an expense permanently. Responds 204 with an empty body."""
    logger.warning(f"DELETE /expenses/{expense_id} endpoint called.")
    await expenses_service.delete_expense(collection, expense_id)
    return Response(status_code=204)
