import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from expense_app.core.config import settings
from expense_app.database import engine, Base, SessionLocal
from expense_app.models import models, finance  # noqa: F401  (registers tables with Base)
from expense_app.routers import users, finance as finance_router, receipts, objects, budgets, analytics, assistant, gmail
from expense_app.services.expense_store import seed_default_categories
from expense_app.services.ingestion_service import ingestion_queue

logging.basicConfig(level=settings.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s %(message)s")
logger = logging.getLogger(__name__)

# Create tables on startup
Base.metadata.create_all(bind=engine)

@asynccontextmanager
async def lifespan(app: FastAPI):
    db = SessionLocal()
    try:
        seed_default_categories(db)
    finally:
        db.close()
    ingestion_queue.start()
    yield
    ingestion_queue.stop()

app = FastAPI(
    title=settings.PROJECT_NAME,
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error(f"[DB] {request.method} {request.url.path} failed: {exc}")
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})

app.include_router(users.router, prefix=f"{settings.API_V1_STR}/users", tags=["users"])
app.include_router(finance_router.router, prefix=settings.API_V1_STR, tags=["expenses"])
app.include_router(receipts.router, prefix=f"{settings.API_V1_STR}/receipts", tags=["receipts"])
app.include_router(objects.router, tags=["objects"])
app.include_router(budgets.router, prefix=f"{settings.API_V1_STR}/budget-goals", tags=["budget-goals"])
app.include_router(analytics.router, prefix=f"{settings.API_V1_STR}/analytics", tags=["analytics"])
app.include_router(assistant.router, prefix=f"{settings.API_V1_STR}/ai", tags=["ai"])
app.include_router(gmail.router, prefix=f"{settings.API_V1_STR}/gmail", tags=["gmail"])

@app.get("/")
def root():
    return {"status": "online", "message": f"{settings.PROJECT_NAME} API is running"}

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("expense_app.main:app", host="0.0.0.0", port=8000, reload=True)
