import json
from datetime import date
from decimal import Decimal
import pytest
from expense_app.models.finance import Expense, ReceiptStatus
from expense_app.schemas import CategoryGuess, ReceiptData, ReceiptItem
from expense_app.services import expense_store, ingestion_service, openai_service
from expense_app.services.expense_store import InvalidStatusTransition
from expense_app.services.ingestion_service import IngestionQueue, process_receipt, start_receipt
from expense_app.services.openai_service import ExtractionError, NotAReceipt
from conftest import add_goal

LOCATOR = "/objects/receipts/user-1/receipt.jpg"

def receipt_data(*items, vendor="Corner Market", day=date(2024, 3, 20)):
    return ReceiptData(
        vendor=vendor,
        date=day,
        total=sum((Decimal(amount) for _, amount in items), Decimal("0.00")),
        items=[ReceiptItem(description=description, amount=Decimal(amount)) for description, amount in items],
    )

def categorize_as(mapping):
    def categorize(description, vendor):
        if description in mapping:
            return CategoryGuess(category=mapping[description], confidence=0.9)
        return CategoryGuess(category="Other", confidence=0.0, fallback=True)
    return categorize

def expenses_for(db, receipt_id):
    db.expire_all()
    return db.query(Expense).filter(Expense.receipt_id == receipt_id).order_by(Expense.id).all()

def test_completed_receipt_creates_one_expense_per_item(db, user):
    receipt = start_receipt(db, user.id, LOCATOR)
    data = receipt_data(("Milk", "3.49"), ("Bread", "2.99"), ("Mystery", "1.00"))

    status = process_receipt(
        receipt.id,
        lambda: data,
        categorize=categorize_as({"Milk": "Groceries", "Bread": "Groceries"}),
        evaluate_budgets=False,
    )

    assert status == ReceiptStatus.COMPLETED
    expenses = expenses_for(db, receipt.id)
    assert len(expenses) == len(data.items)
    assert [e.category.name for e in expenses] == ["Groceries", "Groceries", "Other"]
    assert all(not e.is_manual for e in expenses)
    assert all(e.vendor == "Corner Market" for e in expenses)

    stored = expense_store.get_receipt(db, receipt.id)
    assert stored.processing_status == ReceiptStatus.COMPLETED
    assert stored.processed_at is not None
    assert json.loads(stored.ocr_text)["vendor"] == "Corner Market"

def test_categorizer_crash_files_item_under_other(db, user):
    receipt = start_receipt(db, user.id, LOCATOR)

    def broken(description, vendor):
        raise RuntimeError("model unavailable")

    status = process_receipt(receipt.id, lambda: receipt_data(("Cable", "9.99")), categorize=broken, evaluate_budgets=False)

    assert status == ReceiptStatus.COMPLETED
    [expense] = expenses_for(db, receipt.id)
    assert expense.category.name == "Other"

def test_missing_date_defaults_to_today(db, user):
    receipt = start_receipt(db, user.id, LOCATOR)
    payload = {"vendor": "Kiosk", "items": [{"description": "Coffee", "amount": "2.50"}]}

    process_receipt(
        receipt.id,
        lambda: openai_service.normalize_receipt_payload(payload),
        categorize=categorize_as({}),
        evaluate_budgets=False,
    )

    [expense] = expenses_for(db, receipt.id)
    assert expense.date == date.today()
    assert expense.amount == Decimal("2.50")

def test_nan_amounts_are_stored_as_zero(db, user):
    receipt = start_receipt(db, user.id, LOCATOR)
    payload = json.loads(
        '{"vendor": "Kiosk", "total": NaN, "items": ['
        '{"description": "Coffee", "amount": NaN}, {"description": "Bagel", "amount": 3.25}]}'
    )

    status = process_receipt(
        receipt.id,
        lambda: openai_service.normalize_receipt_payload(payload),
        categorize=categorize_as({}),
        evaluate_budgets=False,
    )

    assert status == ReceiptStatus.COMPLETED
    assert [e.amount for e in expenses_for(db, receipt.id)] == [Decimal("0.00"), Decimal("3.25")]

def test_extraction_failure_marks_receipt_failed_without_expenses(db, user):
    receipt = start_receipt(db, user.id, LOCATOR)
    calls = []

    def extract():
        calls.append(1)
        raise ExtractionError("unreadable")

    status = process_receipt(receipt.id, extract, evaluate_budgets=False, max_attempts=2)

    assert status == ReceiptStatus.FAILED
    assert len(calls) == 2
    assert expenses_for(db, receipt.id) == []
    stored = expense_store.get_receipt(db, receipt.id)
    assert stored.processing_status == ReceiptStatus.FAILED
    assert stored.processed_at is not None

def test_not_a_receipt_is_not_retried(db, user):
    receipt = start_receipt(db, user.id, LOCATOR)
    calls = []

    def extract():
        calls.append(1)
        raise NotAReceipt("newsletter")

    assert process_receipt(receipt.id, extract, evaluate_budgets=False, max_attempts=3) == ReceiptStatus.FAILED
    assert len(calls) == 1

def test_store_failure_rolls_back_every_expense(db, user, monkeypatch):
    receipt = start_receipt(db, user.id, LOCATOR)
    original = expense_store.create_expense
    created = []

    def flaky_create(*args, **kwargs):
        if created:
            raise ValueError("disk full")
        created.append(1)
        return original(*args, **kwargs)

    monkeypatch.setattr(expense_store, "create_expense", flaky_create)

    status = process_receipt(
        receipt.id,
        lambda: receipt_data(("A", "1.00"), ("B", "2.00")),
        categorize=categorize_as({}),
        evaluate_budgets=False,
    )

    assert status == ReceiptStatus.FAILED
    assert expenses_for(db, receipt.id) == []
    stored = expense_store.get_receipt(db, receipt.id)
    assert stored.processing_status == ReceiptStatus.FAILED
    assert stored.ocr_text is None

def test_terminal_receipt_is_never_reprocessed(db, user):
    receipt = start_receipt(db, user.id, LOCATOR)
    extract = lambda: receipt_data(("Soap", "4.00"))
    process_receipt(receipt.id, extract, categorize=categorize_as({}), evaluate_budgets=False)

    assert process_receipt(receipt.id, extract, categorize=categorize_as({}), evaluate_budgets=False) is None
    assert len(expenses_for(db, receipt.id)) == 1
    assert expense_store.get_receipt(db, receipt.id).processing_status == ReceiptStatus.COMPLETED

def test_status_cannot_leave_a_terminal_state(db, user):
    receipt = start_receipt(db, user.id, LOCATOR)
    expense_store.set_receipt_status(receipt, ReceiptStatus.PROCESSING)
    expense_store.set_receipt_status(receipt, ReceiptStatus.COMPLETED)

    for status in (ReceiptStatus.PENDING, ReceiptStatus.PROCESSING, ReceiptStatus.FAILED):
        with pytest.raises(InvalidStatusTransition):
            expense_store.set_receipt_status(receipt, status)

def test_non_manual_expense_requires_a_receipt(db, user):
    with pytest.raises(ValueError):
        expense_store.create_expense(db, user.id, "Orphan", Decimal("1.00"), is_manual=False)

def test_budget_alerts_run_after_completion(db, user):
    add_goal(db, user.id, amount="10.00", start_date=date.today().replace(day=1))
    receipt = start_receipt(db, user.id, LOCATOR)
    alerts = []

    process_receipt(
        receipt.id,
        lambda: receipt_data(("Dinner", "9.00"), day=date.today()),
        categorize=categorize_as({"Dinner": "Food & Dining"}),
        notifier=alerts.append,
    )

    assert len(alerts) == 1
    assert alerts[0].spent == Decimal("9.00")

def test_image_extractor_reads_the_stored_object(monkeypatch):
    monkeypatch.setattr(ingestion_service.storage_service, "load_object_bytes", lambda locator: (b"jpeg", "image/jpeg"))
    seen = {}

    def fake_extract(content, mime_type):
        seen["args"] = (content, mime_type)
        return receipt_data(("X", "1.00"))

    monkeypatch.setattr(ingestion_service.openai_service, "extract_receipt", fake_extract)

    ingestion_service.image_extractor(LOCATOR)()
    assert seen["args"] == (b"jpeg", "image/jpeg")

# --- Queue ---

def test_queue_counts_outcomes():
    outcomes = {1: ReceiptStatus.COMPLETED, 2: ReceiptStatus.FAILED, 3: None}

    def processor(receipt_id, extract, session_factory=None, **options):
        if receipt_id == 4:
            raise RuntimeError("boom")
        return outcomes[receipt_id]

    queue = IngestionQueue(worker_count=2, processor=processor)
    try:
        for receipt_id in (1, 2, 3, 4):
            queue.submit(receipt_id, extract=None)
        queue.join()
        stats = queue.stats()
    finally:
        queue.stop()

    assert stats == {"submitted": 4, "completed": 1, "failed": 2, "skipped": 1, "pending": 0}
    assert queue.job(1)["status"] == "completed"
    assert queue.job(3)["status"] == "skipped"
    assert queue.job(4)["error"] == "boom"
    assert queue.job(99) is None

def test_queue_passes_job_options_through():
    seen = []

    def processor(receipt_id, extract, session_factory=None, **options):
        seen.append((receipt_id, options))
        return ReceiptStatus.COMPLETED

    queue = IngestionQueue(worker_count=1, processor=processor)
    try:
        queue.submit(7, extract=None, evaluate_budgets=False)
        queue.join()
    finally:
        queue.stop()

    assert seen == [(7, {"evaluate_budgets": False})]
    assert not queue.running

def test_queue_processes_a_real_receipt(db, user):
    receipt = start_receipt(db, user.id, LOCATOR)
    queue = IngestionQueue(worker_count=1)
    try:
        queue.submit(
            receipt.id,
            lambda: receipt_data(("Tea", "3.00")),
            categorize=categorize_as({"Tea": "Groceries"}),
            evaluate_budgets=False,
        )
        queue.join()
    finally:
        queue.stop()

    db.expire_all()
    assert expense_store.get_receipt(db, receipt.id).processing_status == ReceiptStatus.COMPLETED
    assert len(expenses_for(db, receipt.id)) == 1
    assert queue.stats()["completed"] == 1
