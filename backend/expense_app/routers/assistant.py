import logging
from datetime import datetime
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from expense_app.database import get_db
from expense_app.deps import get_current_user
from expense_app.models.models import User
from expense_app.schemas import ChatRequest, ChatResponse, ConversationOut
from expense_app.services import expense_store, openai_service

logger = logging.getLogger(__name__)

router = APIRouter()

CONTEXT_EXPENSES = 50

@router.post("/chat", response_model=ChatResponse)
def chat(payload: ChatRequest, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    """
    Answers a question about the user's spending and appends the exchange
    to their latest conversation.
    """
    message = (payload.message or "").strip()
    if not message:
        raise HTTPException(status_code=400, detail="Message is required")

    expenses = [
        {
            "description": e.description,
            "amount": e.amount,
            "category": e.category.name if e.category else "Uncategorized",
            "date": e.date.isoformat(),
        }
        for e in expense_store.get_user_expenses(db, current_user.id, limit=CONTEXT_EXPENSES)
    ]
    budgets = [
        {
            "name": goal.name,
            "amount": goal.amount,
            "spent": spent,
            "category": goal.category.name if goal.category else None,
        }
        for goal, spent in expense_store.get_user_budget_goals(db, current_user.id)
    ]

    reply = openai_service.generate_expense_insights(expenses, budgets, message)

    asked_at = datetime.utcnow().isoformat()
    conversation = expense_store.append_chat_messages(db, current_user.id, [
        {"role": "user", "content": message, "timestamp": asked_at},
        {"role": "assistant", "content": reply, "timestamp": datetime.utcnow().isoformat()},
    ])
    db.commit()
    logger.info(f"[AI] Chat turn stored in conversation {conversation.id} for {current_user.id}")

    return ChatResponse(response=reply, conversation_id=conversation.id)

@router.get("/conversation", response_model=ConversationOut)
def get_conversation(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    conversation = expense_store.get_user_latest_chat(db, current_user.id)
    if conversation is None:
        return ConversationOut()
    return ConversationOut(id=conversation.id, messages=conversation.messages or [])
