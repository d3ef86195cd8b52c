import os
import logging
from contextlib import contextmanager
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool
from expense_app.core.config import settings

logger = logging.getLogger(__name__)

db_url = settings.DATABASE_URL

if db_url.startswith("sqlite"):
    if "./" in db_url:
        # Relative sqlite paths resolve next to the backend directory
        base_dir = os.path.dirname(os.path.abspath(__file__))
        db_url = db_url.replace("./", os.path.join(os.path.dirname(base_dir), ""))

    if db_url in ("sqlite://", "sqlite:///:memory:"):
        # One shared connection so every session (and worker thread) sees the same in-memory db
        engine = create_engine(db_url, connect_args={"check_same_thread": False}, poolclass=StaticPool)
    else:
        engine = create_engine(db_url, connect_args={"check_same_thread": False})
else:
    engine = create_engine(db_url, pool_pre_ping=True, pool_recycle=300)

logger.info(f"[DB] Using {engine.url.render_as_string(hide_password=True)}")

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

@contextmanager
def session_scope(session_factory=None):
    """
    Transactional scope: commits once on success, rolls back on any error.
    """
    db = (session_factory or SessionLocal)()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
