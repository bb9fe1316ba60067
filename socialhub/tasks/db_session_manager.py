"""
Database session handling for Celery tasks

Each task body gets its own session that is committed on success, rolled
back on error and always closed.
"""
import logging
from contextlib import contextmanager
from typing import Generator

from sqlalchemy.orm import Session

from socialhub.db.database import SessionLocal

logger = logging.getLogger(__name__)


@contextmanager
def get_celery_db_session() -> Generator[Session, None, None]:
    """
    Context manager for database sessions in Celery tasks

    Usage:
        @celery_app.task
        def my_task():
            with get_celery_db_session() as db:
                db.query(Channel).all()
    """
    db = SessionLocal()

    try:
        yield db
        db.commit()
    except Exception as e:
        logger.error(f"Database error in Celery task, rolling back: {e}")
        db.rollback()
        raise
    finally:
        db.close()
