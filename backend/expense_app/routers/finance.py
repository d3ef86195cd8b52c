from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session
from expense_app.database import get_db
from expense_app.deps import get_current_user
from expense_app.models.models import User
from expense_app.models.finance import Category
from expense_app.schemas import CategoryCreate, CategoryOut, ExpenseCreate, ExpenseUpdate, ExpenseOut
from expense_app.services import expense_store
from expense_app.services.budget_service import check_budget_alerts

router = APIRouter()

# Columns that may not be cleared through an update
REQUIRED_EXPENSE_FIELDS = ("description", "amount", "date")

def _ensure_category(db: Session, category_id: Optional[int]):
    if category_id is not None and db.get(Category, category_id) is None:
        raise HTTPException(status_code=400, detail=f"Unknown category {category_id}")

# --- Categories ---

@router.get("/categories", response_model=List[CategoryOut])
def list_categories(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return expense_store.get_categories(db)

@router.post("/categories", response_model=CategoryOut)
def create_category(
    payload: CategoryCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    if expense_store.get_category_by_name(db, payload.name.strip()):
        raise HTTPException(status_code=400, detail="Category already exists")
    category = expense_store.create_category(db, payload.name, icon=payload.icon, color=payload.color)
    db.commit()
    db.refresh(category)
    return category

# --- Expenses ---

@router.get("/expenses", response_model=List[ExpenseOut])
def get_my_expenses(
    limit: Optional[int] = Query(None, ge=1, le=500),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """
    Get all expenses for the current user, ordered by date desc.
    """
    return expense_store.get_user_expenses(db, current_user.id, limit=limit)

@router.post("/expenses", response_model=ExpenseOut)
def create_expense(
    payload: ExpenseCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """
    Manual entry. Budget alerts are evaluated right after the insert.
    """
    _ensure_category(db, payload.category_id)
    expense = expense_store.create_expense(
        db,
        current_user.id,
        payload.description.strip(),
        payload.amount,
        expense_date=payload.date,
        vendor=payload.vendor,
        notes=payload.notes,
        category_id=payload.category_id,
        is_manual=True,
    )
    db.commit()
    db.refresh(expense)

    check_budget_alerts(db, current_user.id)
    return expense

@router.put("/expenses/{expense_id}", response_model=ExpenseOut)
def update_expense(
    expense_id: int,
    payload: ExpenseUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    expense = expense_store.get_user_expense(db, current_user.id, expense_id)
    if not expense:
        raise HTTPException(status_code=404, detail="Expense not found")

    changes = payload.model_dump(exclude_unset=True)
    for field in REQUIRED_EXPENSE_FIELDS:
        if field in changes and changes[field] is None:
            raise HTTPException(status_code=400, detail=f"{field} cannot be empty")
    if "category_id" in changes:
        _ensure_category(db, changes["category_id"])

    expense_store.update_expense(db, expense, changes)
    db.commit()
    db.refresh(expense)
    return expense

@router.delete("/expenses/{expense_id}")
def delete_expense(
    expense_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    expense = expense_store.get_user_expense(db, current_user.id, expense_id)
    if not expense:
        raise HTTPException(status_code=404, detail="Expense not found")
    expense_store.delete_expense(db, expense)
    db.commit()
    return {"success": True}
