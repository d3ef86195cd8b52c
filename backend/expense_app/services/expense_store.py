"""
Persistence for users, categories, receipts, expenses, budget goals and chat.

Write helpers only add/flush; the caller owns the transaction (routers call
db.commit(), ingestion wraps a whole receipt in session_scope()).
"""
import logging
from collections import OrderedDict
from datetime import date, datetime
from decimal import Decimal
from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload
from expense_app.core.budget_calculator import to_money, period_window
from expense_app.core.categories import DEFAULT_CATEGORIES
from expense_app.models.models import User, ChatConversation
from expense_app.models.finance import Category, Receipt, ReceiptStatus, Expense, BudgetGoal

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")

# pending -> processing -> completed | failed; terminal states never move again
ALLOWED_TRANSITIONS = {
    ReceiptStatus.PENDING: {ReceiptStatus.PROCESSING, ReceiptStatus.FAILED},
    ReceiptStatus.PROCESSING: {ReceiptStatus.COMPLETED, ReceiptStatus.FAILED},
    ReceiptStatus.COMPLETED: set(),
    ReceiptStatus.FAILED: set(),
}

class InvalidStatusTransition(Exception):
    pass

# --- Users ---

def get_user(db: Session, user_id: str):
    return db.query(User).filter(User.id == user_id).first()

def upsert_user(db: Session, user_id: str, email=None, first_name=None, last_name=None):
    """Returns (user, created). Only non-empty values overwrite stored ones."""
    user = get_user(db, user_id)
    created = user is None
    if created:
        user = User(id=user_id)
        db.add(user)
    if email:
        user.email = email.strip().lower()
    if first_name:
        user.first_name = first_name.strip()
    if last_name:
        user.last_name = last_name.strip()
    db.flush()
    return user, created

# --- Categories ---

def get_categories(db: Session):
    return db.query(Category).order_by(Category.id.asc()).all()

def get_category_by_name(db: Session, name: str):
    return db.query(Category).filter(Category.name == name).first()

def create_category(db: Session, name: str, icon=None, color=None):
    category = Category(name=name.strip(), icon=icon, color=color)
    db.add(category)
    db.flush()
    return category

def seed_default_categories(db: Session):
    """Inserts the default list when the table is empty. Returns how many were created."""
    if db.query(Category.id).first():
        return 0
    for name, icon, color in DEFAULT_CATEGORIES:
        db.add(Category(name=name, icon=icon, color=color))
    db.commit()
    logger.info(f"[STORE] Default categories initialized ({len(DEFAULT_CATEGORIES)})")
    return len(DEFAULT_CATEGORIES)

# --- Receipts ---

def create_receipt(db: Session, user_id: str, original_url: str):
    receipt = Receipt(user_id=user_id, original_url=original_url, processing_status=ReceiptStatus.PENDING)
    db.add(receipt)
    db.flush()
    return receipt

def get_receipt(db: Session, receipt_id: int):
    return db.query(Receipt).filter(Receipt.id == receipt_id).first()

def get_user_receipt(db: Session, user_id: str, receipt_id: int):
    return db.query(Receipt).filter(Receipt.id == receipt_id, Receipt.user_id == user_id).first()

def get_user_receipts(db: Session, user_id: str):
    return (
        db.query(Receipt)
        .filter(Receipt.user_id == user_id)
        .order_by(Receipt.uploaded_at.desc(), Receipt.id.desc())
        .all()
    )

def receipt_exists_for_source(db: Session, user_id: str, original_url: str):
    return db.query(Receipt.id).filter(
        Receipt.user_id == user_id, Receipt.original_url == original_url
    ).first() is not None

def set_receipt_status(receipt: Receipt, status: ReceiptStatus, ocr_text=None):
    current = ReceiptStatus(receipt.processing_status)
    if status not in ALLOWED_TRANSITIONS[current]:
        raise InvalidStatusTransition(f"Receipt {receipt.id}: {current.value} -> {status.value} not allowed")
    receipt.processing_status = status
    if ocr_text is not None:
        receipt.ocr_text = ocr_text
    if status in (ReceiptStatus.COMPLETED, ReceiptStatus.FAILED):
        receipt.processed_at = datetime.utcnow()
    return receipt

# --- Expenses ---

def create_expense(db: Session, user_id: str, description: str, amount, expense_date=None, vendor=None,
                   notes=None, category_id=None, receipt_id=None, is_manual=False):
    if not is_manual and receipt_id is None:
        raise ValueError("Non-manual expenses must be linked to a receipt")
    expense = Expense(
        user_id=user_id,
        receipt_id=receipt_id,
        category_id=category_id,
        description=description,
        amount=to_money(amount),
        date=expense_date or date.today(),
        vendor=vendor,
        notes=notes,
        is_manual=is_manual,
    )
    db.add(expense)
    db.flush()
    return expense

def get_user_expenses(db: Session, user_id: str, limit=None):
    query = (
        db.query(Expense)
        .options(joinedload(Expense.category))
        .filter(Expense.user_id == user_id)
        .order_by(Expense.date.desc(), Expense.id.desc())
    )
    if limit:
        query = query.limit(limit)
    return query.all()

def get_user_expense(db: Session, user_id: str, expense_id: int):
    return db.query(Expense).filter(Expense.id == expense_id, Expense.user_id == user_id).first()

def get_receipt_expenses(db: Session, receipt_id: int):
    return db.query(Expense).filter(Expense.receipt_id == receipt_id).order_by(Expense.id.asc()).all()

def update_expense(db: Session, expense: Expense, changes: dict):
    for field, value in changes.items():
        if field == "amount":
            value = to_money(value)
        setattr(expense, field, value)
    db.flush()
    return expense

def delete_expense(db: Session, expense: Expense):
    db.delete(expense)
    db.flush()

# --- Budget goals ---

def create_budget_goal(db: Session, user_id: str, data: dict):
    data = dict(data)
    data.setdefault("start_date", None)
    if data["start_date"] is None:
        data["start_date"] = date.today()
    goal = BudgetGoal(user_id=user_id, **data)
    db.add(goal)
    db.flush()
    return goal

def get_user_budget_goal(db: Session, user_id: str, goal_id: int):
    return db.query(BudgetGoal).filter(BudgetGoal.id == goal_id, BudgetGoal.user_id == user_id).first()

def compute_goal_spent(db: Session, goal: BudgetGoal, today=None):
    """
    Sum of the owner's expenses inside the goal's current period window,
    restricted to the goal's category when it has one. Derived on every call.
    """
    window_start, window_end = period_window(goal.period, goal.start_date, goal.end_date, today=today)
    query = db.query(func.coalesce(func.sum(Expense.amount), 0)).filter(
        Expense.user_id == goal.user_id,
        Expense.date >= window_start,
        Expense.date <= window_end,
    )
    if goal.category_id is not None:
        query = query.filter(Expense.category_id == goal.category_id)
    return to_money(query.scalar(), default=ZERO)

def get_user_budget_goals(db: Session, user_id: str, active_only=True, today=None):
    """Returns [(goal, spent)]."""
    query = db.query(BudgetGoal).options(joinedload(BudgetGoal.category)).filter(BudgetGoal.user_id == user_id)
    if active_only:
        query = query.filter(BudgetGoal.is_active.is_(True))
    goals = query.order_by(BudgetGoal.id.asc()).all()
    return [(goal, compute_goal_spent(db, goal, today=today)) for goal in goals]

def update_budget_goal(db: Session, goal: BudgetGoal, changes: dict):
    for field, value in changes.items():
        setattr(goal, field, value)
    db.flush()
    return goal

def delete_budget_goal(db: Session, goal: BudgetGoal):
    db.delete(goal)
    db.flush()

# --- Chat ---

def get_user_latest_chat(db: Session, user_id: str):
    return (
        db.query(ChatConversation)
        .filter(ChatConversation.user_id == user_id)
        .order_by(ChatConversation.updated_at.desc(), ChatConversation.id.desc())
        .first()
    )

def append_chat_messages(db: Session, user_id: str, new_messages: list):
    conversation = get_user_latest_chat(db, user_id)
    if conversation is None:
        conversation = ChatConversation(user_id=user_id, messages=list(new_messages))
        db.add(conversation)
    else:
        # Reassign so the JSON column is flagged dirty
        conversation.messages = list(conversation.messages or []) + list(new_messages)
        conversation.updated_at = datetime.utcnow()
    db.flush()
    return conversation

# --- Analytics ---

def _sum_expenses(db: Session, user_id: str, start=None, end=None):
    query = db.query(func.coalesce(func.sum(Expense.amount), 0)).filter(Expense.user_id == user_id)
    if start:
        query = query.filter(Expense.date >= start)
    if end:
        query = query.filter(Expense.date <= end)
    return to_money(query.scalar(), default=ZERO)

def _month_start(day: date, months_back=0):
    month_index = day.year * 12 + (day.month - 1) - months_back
    return date(month_index // 12, month_index % 12 + 1, 1)

def get_expenses_by_category(db: Session, user_id: str, start=None):
    category_name = func.coalesce(Category.name, "Uncategorized")
    query = (
        db.query(category_name, func.sum(Expense.amount), func.count(Expense.id))
        .outerjoin(Category, Expense.category_id == Category.id)
        .filter(Expense.user_id == user_id)
    )
    if start:
        query = query.filter(Expense.date >= start)
    rows = query.group_by(category_name).all()
    result = [
        {"category_name": name, "total": to_money(total, default=ZERO), "count": int(count)}
        for name, total, count in rows
    ]
    result.sort(key=lambda row: row["total"], reverse=True)
    return result

def get_monthly_spending(db: Session, user_id: str, months=6, today=None):
    """Totals per 'YYYY-MM' for the last `months` calendar months (current included)."""
    today = today or date.today()
    months = max(int(months), 1)
    buckets = OrderedDict()
    for back in range(months - 1, -1, -1):
        buckets[_month_start(today, back).strftime("%Y-%m")] = ZERO

    rows = (
        db.query(Expense.date, Expense.amount)
        .filter(Expense.user_id == user_id, Expense.date >= _month_start(today, months - 1), Expense.date <= today)
        .all()
    )
    for expense_date, amount in rows:
        key = expense_date.strftime("%Y-%m")
        if key in buckets:
            buckets[key] += to_money(amount)
    return [{"month": month, "total": total} for month, total in buckets.items()]

def get_user_spending_summary(db: Session, user_id: str, today=None):
    today = today or date.today()
    this_month_start = _month_start(today)
    last_month_start = _month_start(today, 1)
    last_month_end = date.fromordinal(this_month_start.toordinal() - 1)

    by_category = get_expenses_by_category(db, user_id, start=this_month_start)
    receipts_count = db.query(func.count(Receipt.id)).filter(Receipt.user_id == user_id).scalar() or 0

    return {
        "total_this_month": _sum_expenses(db, user_id, start=this_month_start),
        "total_last_month": _sum_expenses(db, user_id, start=last_month_start, end=last_month_end),
        "top_category": by_category[0]["category_name"] if by_category else "N/A",
        "receipts_count": int(receipts_count),
    }
