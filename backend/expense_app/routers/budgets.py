from typing import List
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from expense_app.database import get_db
from expense_app.deps import get_current_user
from expense_app.models.models import User
from expense_app.models.finance import Category
from expense_app.schemas import BudgetGoalCreate, BudgetGoalUpdate, BudgetGoalOut
from expense_app.services import expense_store

router = APIRouter()

REQUIRED_GOAL_FIELDS = ("name", "amount", "period", "start_date", "is_active", "email_alerts", "alert_threshold")

def _validate_goal(db: Session, category_id, start_date, end_date):
    if category_id is not None and db.get(Category, category_id) is None:
        raise HTTPException(status_code=400, detail=f"Unknown category {category_id}")
    if start_date and end_date and end_date < start_date:
        raise HTTPException(status_code=400, detail="endDate must not be before startDate")

@router.get("", response_model=List[BudgetGoalOut])
def get_my_budget_goals(
    include_inactive: bool = False,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Goals with their derived `spent` for the current period window."""
    goals = expense_store.get_user_budget_goals(db, current_user.id, active_only=not include_inactive)
    return [BudgetGoalOut.from_goal(goal, spent) for goal, spent in goals]

@router.post("", response_model=BudgetGoalOut)
def create_budget_goal(
    payload: BudgetGoalCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    _validate_goal(db, payload.category_id, payload.start_date, payload.end_date)
    goal = expense_store.create_budget_goal(db, current_user.id, payload.model_dump())
    db.commit()
    db.refresh(goal)
    return BudgetGoalOut.from_goal(goal, expense_store.compute_goal_spent(db, goal))

@router.put("/{goal_id}", response_model=BudgetGoalOut)
def update_budget_goal(
    goal_id: int,
    payload: BudgetGoalUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    goal = expense_store.get_user_budget_goal(db, current_user.id, goal_id)
    if not goal:
        raise HTTPException(status_code=404, detail="Budget goal not found")

    changes = payload.model_dump(exclude_unset=True)
    for field in REQUIRED_GOAL_FIELDS:
        if field in changes and changes[field] is None:
            raise HTTPException(status_code=400, detail=f"{field} cannot be empty")
    _validate_goal(
        db,
        changes.get("category_id"),
        changes.get("start_date", goal.start_date),
        changes.get("end_date", goal.end_date),
    )

    expense_store.update_budget_goal(db, goal, changes)
    db.commit()
    db.refresh(goal)
    return BudgetGoalOut.from_goal(goal, expense_store.compute_goal_spent(db, goal))

@router.delete("/{goal_id}")
def delete_budget_goal(
    goal_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    goal = expense_store.get_user_budget_goal(db, current_user.id, goal_id)
    if not goal:
        raise HTTPException(status_code=404, detail="Budget goal not found")
    expense_store.delete_budget_goal(db, goal)
    db.commit()
    return {"success": True}
