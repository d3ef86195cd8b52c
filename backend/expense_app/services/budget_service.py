import logging
from datetime import datetime, timedelta
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from expense_app.core.config import settings
from expense_app.core.budget_calculator import crosses_threshold, usage_percentage, to_money
from expense_app.schemas import BudgetAlert
from expense_app.services import expense_store
from expense_app.services.email_service import send_budget_alert

logger = logging.getLogger(__name__)

def _in_cooldown(goal, now, cooldown_minutes):
    if cooldown_minutes <= 0 or goal.last_alerted_at is None:
        return False
    return now - goal.last_alerted_at < timedelta(minutes=cooldown_minutes)

def build_alert(user, goal, spent):
    return BudgetAlert(
        user_email=user.email,
        user_name=user.display_name,
        budget_name=goal.name,
        spent=spent,
        budget_amount=to_money(goal.amount),
        percentage=usage_percentage(spent, goal.amount),
        category=goal.category.name if goal.category else goal.name,
    )

def check_budget_alerts(db: Session, user_id: str, notifier=None, today=None, now=None):
    """
    Evaluates every active goal of the user that has alerts enabled and calls
    the notifier once per goal at or above its threshold.
    Returns the alerts handed to the notifier. Never raises.
    """
    notifier = notifier or send_budget_alert
    now = now or datetime.utcnow()
    cooldown = settings.BUDGET_ALERT_COOLDOWN_MINUTES

    try:
        user = expense_store.get_user(db, user_id)
        if not user or not user.email:
            logger.info(f"[BUDGET] User {user_id} has no email, skipping alerts")
            return []
        goals = expense_store.get_user_budget_goals(db, user_id, today=today)
    except SQLAlchemyError as e:
        logger.error(f"[BUDGET] Failed to load goals for {user_id}: {e}")
        return []

    dispatched = []
    for goal, spent in goals:
        if not goal.email_alerts:
            continue
        if not crosses_threshold(spent, goal.amount, goal.alert_threshold):
            continue
        if _in_cooldown(goal, now, cooldown):
            logger.info(f"[BUDGET] Goal {goal.id} alerted at {goal.last_alerted_at}, still in cooldown")
            continue

        alert = build_alert(user, goal, spent)
        logger.info(f"[BUDGET] Goal '{goal.name}' at {alert.percentage:.1f}% for {user_id}, notifying")
        try:
            delivered = notifier(alert)
        except Exception as e:
            logger.error(f"[BUDGET] Notifier failed for goal {goal.id}: {e}")
            delivered = False
        dispatched.append(alert)

        if cooldown > 0 and delivered:
            try:
                goal.last_alerted_at = now
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                logger.error(f"[BUDGET] Could not record alert time for goal {goal.id}: {e}")

    return dispatched
