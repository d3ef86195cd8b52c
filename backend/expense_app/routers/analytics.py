from typing import List
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from expense_app.database import get_db
from expense_app.deps import get_current_user
from expense_app.models.models import User
from expense_app.schemas import SpendingSummary, MonthlySpending, CategorySpending
from expense_app.services import expense_store

router = APIRouter()

@router.get("/summary", response_model=SpendingSummary)
def get_summary(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return expense_store.get_user_spending_summary(db, current_user.id)

@router.get("/monthly-spending", response_model=List[MonthlySpending])
def get_monthly_spending(
    months: int = Query(6, ge=1, le=24),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return expense_store.get_monthly_spending(db, current_user.id, months=months)

@router.get("/by-category", response_model=List[CategorySpending])
def get_spending_by_category(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return expense_store.get_expenses_by_category(db, current_user.id)
