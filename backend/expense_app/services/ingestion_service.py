"""
Receipt ingestion.

    upload -> Receipt(pending) -> queue -> processing -> extraction
           -> categorize items -> completed + expenses (one transaction)
           -> budget alerts

The request handler only creates the pending receipt and submits a job;
IngestionQueue workers run process_receipt() out of band.
"""
import logging
import queue
import threading
from collections import OrderedDict
from datetime import datetime
from sqlalchemy.exc import SQLAlchemyError
from expense_app.core.config import settings
from expense_app.core.categories import FALLBACK_CATEGORY
from expense_app.database import SessionLocal, session_scope
from expense_app.models.finance import ReceiptStatus
from expense_app.schemas import CategoryGuess
from expense_app.services import expense_store, openai_service, storage_service
from expense_app.services.budget_service import check_budget_alerts
from expense_app.services.expense_store import InvalidStatusTransition
from expense_app.services.openai_service import NotAReceipt

logger = logging.getLogger(__name__)

MAX_JOB_RECORDS = 500

def start_receipt(db, user_id, locator):
    """Records the upload as a pending receipt before anything external runs."""
    receipt = expense_store.create_receipt(db, user_id, locator)
    db.commit()
    db.refresh(receipt)
    logger.info(f"[INGEST] Receipt {receipt.id} created for {user_id} ({locator})")
    return receipt

def image_extractor(locator):
    def extract():
        content, mime_type = storage_service.load_object_bytes(locator)
        return openai_service.extract_receipt(content, mime_type)
    return extract

def _mark_failed(session_factory, receipt_id):
    try:
        with session_scope(session_factory) as db:
            receipt = expense_store.get_receipt(db, receipt_id)
            if receipt is not None:
                expense_store.set_receipt_status(receipt, ReceiptStatus.FAILED)
    except (SQLAlchemyError, InvalidStatusTransition) as e:
        logger.error(f"[INGEST] Could not mark receipt {receipt_id} as failed: {e}")

def _extract_with_retry(receipt_id, extract, attempts):
    for attempt in range(1, attempts + 1):
        try:
            return extract()
        except NotAReceipt:
            raise
        except Exception as e:
            if attempt == attempts:
                raise
            logger.warning(f"[INGEST] Receipt {receipt_id} extraction attempt {attempt}/{attempts} failed: {e}")

def _categorize(categorize, receipt_id, item, vendor):
    try:
        guess = categorize(item.description, vendor)
    except Exception as e:
        logger.warning(f"[INGEST] Categorizer raised for receipt {receipt_id}: {e}")
        guess = CategoryGuess(category=FALLBACK_CATEGORY, confidence=0.0, fallback=True)
    if guess.fallback:
        logger.warning(
            f"[INGEST] Receipt {receipt_id} item '{item.description}' not classified (adapter failure), "
            f"filed under {FALLBACK_CATEGORY}"
        )
    return guess

def process_receipt(receipt_id, extract, session_factory=None, categorize=None,
                    evaluate_budgets=True, notifier=None, max_attempts=None):
    """
    Runs one receipt from pending to completed/failed. Never raises.
    Returns the final ReceiptStatus, or None when the receipt was not processed
    (missing, no longer pending, or the store was unreachable).
    """
    session_factory = session_factory or SessionLocal
    categorize = categorize or openai_service.categorize_expense
    attempts = max(1, max_attempts or settings.INGESTION_MAX_ATTEMPTS)

    try:
        with session_scope(session_factory) as db:
            receipt = expense_store.get_receipt(db, receipt_id)
            if receipt is None:
                logger.error(f"[INGEST] Receipt {receipt_id} not found")
                return None
            if receipt.processing_status != ReceiptStatus.PENDING:
                logger.info(f"[INGEST] Receipt {receipt_id} already {receipt.processing_status.value}, skipping")
                return None
            expense_store.set_receipt_status(receipt, ReceiptStatus.PROCESSING)
            user_id = receipt.user_id
    except SQLAlchemyError as e:
        logger.error(f"[INGEST] Receipt {receipt_id} could not start processing: {e}")
        return None

    try:
        data = _extract_with_retry(receipt_id, extract, attempts)
    except Exception as e:
        logger.error(f"[INGEST] Receipt {receipt_id} extraction failed: {e}")
        _mark_failed(session_factory, receipt_id)
        return ReceiptStatus.FAILED

    guesses = [_categorize(categorize, receipt_id, item, data.vendor) for item in data.items]

    try:
        with session_scope(session_factory) as db:
            receipt = expense_store.get_receipt(db, receipt_id)
            category_ids = {c.name: c.id for c in expense_store.get_categories(db)}
            expense_store.set_receipt_status(receipt, ReceiptStatus.COMPLETED, ocr_text=data.model_dump_json())
            for item, guess in zip(data.items, guesses):
                expense_store.create_expense(
                    db,
                    user_id,
                    item.description,
                    item.amount,
                    expense_date=data.date,
                    vendor=data.vendor,
                    category_id=category_ids.get(guess.category),
                    receipt_id=receipt_id,
                    is_manual=False,
                )
    except (SQLAlchemyError, InvalidStatusTransition, ValueError) as e:
        logger.error(f"[INGEST] Receipt {receipt_id} could not be saved, rolled back: {e}")
        _mark_failed(session_factory, receipt_id)
        return ReceiptStatus.FAILED

    logger.info(f"[INGEST] Receipt {receipt_id} completed: {len(data.items)} expenses from {data.vendor}")

    if evaluate_budgets:
        db = session_factory()
        try:
            check_budget_alerts(db, user_id, notifier=notifier)
        finally:
            db.close()

    return ReceiptStatus.COMPLETED

class IngestionJob:
    def __init__(self, receipt_id, extract, options):
        self.receipt_id = receipt_id
        self.extract = extract
        self.options = options
        self.status = "queued"
        self.error = None
        self.submitted_at = datetime.utcnow()
        self.finished_at = None

    def as_dict(self):
        return {
            "receipt_id": self.receipt_id,
            "status": self.status,
            "error": self.error,
            "submitted_at": self.submitted_at,
            "finished_at": self.finished_at,
        }

class IngestionQueue:
    """
    Hands receipts to worker threads so uploads never wait on the AI service.
    Keeps a bounded record of recent jobs and outcome counters.
    """

    def __init__(self, worker_count=None, session_factory=None, processor=None):
        self.worker_count = max(1, worker_count or settings.INGESTION_WORKERS)
        self.session_factory = session_factory
        self.processor = processor or process_receipt
        self._queue = queue.Queue()
        self._workers = []
        self._lock = threading.Lock()
        self._jobs = OrderedDict()
        self._counters = {"submitted": 0, "completed": 0, "failed": 0, "skipped": 0}

    @property
    def running(self):
        return any(t.is_alive() for t in self._workers)

    def start(self):
        with self._lock:
            if any(t.is_alive() for t in self._workers):
                return
            self._workers = [
                threading.Thread(target=self._worker, name=f"ingest-{i}", daemon=True)
                for i in range(self.worker_count)
            ]
            for t in self._workers:
                t.start()
        logger.info(f"[INGEST] {self.worker_count} ingestion workers started")

    def stop(self, timeout=5):
        workers = list(self._workers)
        for _ in workers:
            self._queue.put(None)
        for t in workers:
            t.join(timeout)
        self._workers = []
        logger.info("[INGEST] Ingestion workers stopped")

    def submit(self, receipt_id, extract, **options):
        if not self.running:
            self.start()
        job = IngestionJob(receipt_id, extract, options)
        with self._lock:
            self._counters["submitted"] += 1
            self._jobs[receipt_id] = job
            while len(self._jobs) > MAX_JOB_RECORDS:
                self._jobs.popitem(last=False)
        self._queue.put(job)
        return job

    def join(self):
        """Blocks until every submitted job has finished."""
        self._queue.join()

    def job(self, receipt_id):
        with self._lock:
            job = self._jobs.get(receipt_id)
            return job.as_dict() if job else None

    def stats(self):
        with self._lock:
            counters = dict(self._counters)
        counters["pending"] = self._queue.unfinished_tasks
        return counters

    def _worker(self):
        while True:
            job = self._queue.get()
            try:
                if job is None:
                    return
                self._run(job)
            finally:
                self._queue.task_done()

    def _run(self, job):
        job.status = "running"
        try:
            status = self.processor(job.receipt_id, job.extract, session_factory=self.session_factory, **job.options)
        except Exception as e:
            logger.exception(f"[INGEST] Job for receipt {job.receipt_id} crashed")
            status = ReceiptStatus.FAILED
            job.error = str(e)

        if status == ReceiptStatus.COMPLETED:
            outcome = "completed"
        elif status == ReceiptStatus.FAILED:
            outcome = "failed"
        else:
            outcome = "skipped"
        with self._lock:
            self._counters[outcome] += 1
        job.status = outcome
        job.finished_at = datetime.utcnow()

ingestion_queue = IngestionQueue()
