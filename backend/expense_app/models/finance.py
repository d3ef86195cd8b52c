import enum
from sqlalchemy import (
    Column, Integer, String, Text, Numeric, DateTime, Date, Boolean, ForeignKey, CheckConstraint, Enum
)
from sqlalchemy.orm import relationship
from datetime import datetime, date
from expense_app.database import Base

class ReceiptStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

class BudgetPeriod(str, enum.Enum):
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"

def _enum_values(enum_cls):
    return [member.value for member in enum_cls]

class Category(Base):
    __tablename__ = "categories"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False, unique=True)
    icon = Column(String(50), nullable=True)
    color = Column(String(7), nullable=True)  # hex color
    created_at = Column(DateTime, default=datetime.utcnow)

class Receipt(Base):
    __tablename__ = "receipts"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(128), ForeignKey("users.id"), nullable=False, index=True)
    original_url = Column(Text, nullable=False)  # object path, URL or gmail:<message id>
    ocr_text = Column(Text, nullable=True)
    processing_status = Column(
        Enum(ReceiptStatus, native_enum=False, values_callable=_enum_values, length=20),
        nullable=False,
        default=ReceiptStatus.PENDING,
    )
    uploaded_at = Column(DateTime, default=datetime.utcnow)
    processed_at = Column(DateTime, nullable=True)

    owner = relationship("User", back_populates="receipts")
    expenses = relationship("Expense", back_populates="receipt")

class Expense(Base):
    __tablename__ = "expenses"
    __table_args__ = (
        CheckConstraint("is_manual OR receipt_id IS NOT NULL", name="ck_expense_receipt_link"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(128), ForeignKey("users.id"), nullable=False, index=True)
    receipt_id = Column(Integer, ForeignKey("receipts.id"), nullable=True)
    category_id = Column(Integer, ForeignKey("categories.id"), nullable=True)
    description = Column(Text, nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    date = Column(Date, nullable=False, default=date.today)
    vendor = Column(String(200), nullable=True)
    notes = Column(Text, nullable=True)
    is_manual = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    owner = relationship("User", back_populates="expenses")
    receipt = relationship("Receipt", back_populates="expenses")
    category = relationship("Category")

class BudgetGoal(Base):
    __tablename__ = "budget_goals"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(128), ForeignKey("users.id"), nullable=False, index=True)
    category_id = Column(Integer, ForeignKey("categories.id"), nullable=True)  # NULL = all categories
    name = Column(String(100), nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    period = Column(
        Enum(BudgetPeriod, native_enum=False, values_callable=_enum_values, length=20),
        nullable=False,
        default=BudgetPeriod.MONTHLY,
    )
    start_date = Column(Date, nullable=False, default=date.today)
    end_date = Column(Date, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    email_alerts = Column(Boolean, nullable=False, default=True)
    alert_threshold = Column(Numeric(5, 2), nullable=True, default=80)  # percentage
    last_alerted_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    owner = relationship("User", back_populates="budget_goals")
    category = relationship("Category")
