import datetime as dt
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from expense_app.models.finance import BudgetPeriod, ReceiptStatus

class ApiModel(BaseModel):
    # camelCase on the wire, snake_case in Python
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

# --- Users ---

class UserResponse(ApiModel):
    id: str
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    created_at: Optional[datetime] = None

class UserUpdate(ApiModel):
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None

# --- Categories ---

class CategoryCreate(ApiModel):
    name: str = Field(..., min_length=1, max_length=100)
    icon: Optional[str] = None
    color: Optional[str] = Field(None, pattern=r"^#[0-9A-Fa-f]{6}$")

class CategoryOut(ApiModel):
    id: int
    name: str
    icon: Optional[str] = None
    color: Optional[str] = None

# --- Expenses ---

class ExpenseCreate(ApiModel):
    description: str = Field(..., min_length=1)
    amount: Decimal = Field(..., max_digits=10, decimal_places=2)
    date: Optional[dt.date] = None
    vendor: Optional[str] = None
    notes: Optional[str] = None
    category_id: Optional[int] = None

class ExpenseUpdate(ApiModel):
    description: Optional[str] = Field(None, min_length=1)
    amount: Optional[Decimal] = Field(None, max_digits=10, decimal_places=2)
    date: Optional[dt.date] = None
    vendor: Optional[str] = None
    notes: Optional[str] = None
    category_id: Optional[int] = None

class ExpenseOut(ApiModel):
    id: int
    receipt_id: Optional[int] = None
    category_id: Optional[int] = None
    category: Optional[CategoryOut] = None
    description: str
    amount: Decimal
    date: date
    vendor: Optional[str] = None
    notes: Optional[str] = None
    is_manual: bool
    created_at: Optional[datetime] = None

# --- Receipts ---

class ReceiptOut(ApiModel):
    id: int
    original_url: str
    ocr_text: Optional[str] = None
    processing_status: ReceiptStatus
    uploaded_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None

class ReceiptUploadRequest(ApiModel):
    # Optional so a missing value gets the explicit 400 instead of a 422
    receipt_image_url: Optional[str] = Field(None, alias="receiptImageURL")

class ReceiptUploadResponse(ApiModel):
    receipt_id: int
    object_path: str

class ObjectUploadResponse(ApiModel):
    upload_url: str = Field(..., alias="uploadURL")
    object_path: str

class GmailImportResponse(ApiModel):
    requires_auth: bool = False
    auth_url: Optional[str] = None
    receipts_found: int = 0
    receipts_processed: int = 0
    message: str

class IngestionStatus(ApiModel):
    submitted: int
    completed: int
    failed: int
    skipped: int
    pending: int

# --- Budget goals ---

class BudgetGoalCreate(ApiModel):
    name: str = Field(..., min_length=1, max_length=100)
    amount: Decimal = Field(..., gt=0, max_digits=10, decimal_places=2)
    period: BudgetPeriod = BudgetPeriod.MONTHLY
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    category_id: Optional[int] = None
    is_active: bool = True
    email_alerts: bool = True
    alert_threshold: Decimal = Field(Decimal("80.00"), gt=0, max_digits=5, decimal_places=2)

class BudgetGoalUpdate(ApiModel):
    name: Optional[str] = None
    amount: Optional[Decimal] = Field(None, gt=0, max_digits=10, decimal_places=2)
    period: Optional[BudgetPeriod] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    category_id: Optional[int] = None
    is_active: Optional[bool] = None
    email_alerts: Optional[bool] = None
    alert_threshold: Optional[Decimal] = Field(None, gt=0, max_digits=5, decimal_places=2)

class BudgetGoalOut(ApiModel):
    id: int
    name: str
    amount: Decimal
    period: BudgetPeriod
    start_date: date
    end_date: Optional[date] = None
    category_id: Optional[int] = None
    category: Optional[CategoryOut] = None
    is_active: bool
    email_alerts: bool
    alert_threshold: Optional[Decimal] = None
    spent: Decimal = Decimal("0.00")

    @classmethod
    def from_goal(cls, goal, spent):
        out = cls.model_validate(goal)
        out.spent = spent
        return out

# --- Assistant ---

class ChatRequest(ApiModel):
    message: Optional[str] = None

class ChatResponse(ApiModel):
    response: str
    conversation_id: int

class ChatMessage(ApiModel):
    role: str
    content: str
    timestamp: Optional[str] = None

class ConversationOut(ApiModel):
    id: Optional[int] = None
    messages: List[ChatMessage] = []

# --- Analytics ---

class SpendingSummary(ApiModel):
    total_this_month: Decimal
    total_last_month: Decimal
    top_category: str
    receipts_count: int

class MonthlySpending(ApiModel):
    month: str
    total: Decimal

class CategorySpending(ApiModel):
    category_name: str
    total: Decimal
    count: int

# --- AI adapter payloads ---

class ReceiptItem(BaseModel):
    description: str = "Unknown Item"
    amount: Decimal = Decimal("0.00")

class ReceiptData(BaseModel):
    vendor: str = "Unknown Vendor"
    date: date
    total: Decimal = Decimal("0.00")
    items: List[ReceiptItem] = []

class CategoryGuess(BaseModel):
    category: str
    confidence: float
    # True when the adapter failed and "Other" is a default, not a classification
    fallback: bool = False

class BudgetAlert(BaseModel):
    user_email: str
    user_name: str
    budget_name: str
    spent: Decimal
    budget_amount: Decimal
    percentage: Decimal
    category: str

    @property
    def is_over_budget(self):
        return self.percentage > 100
