import logging
from contextlib import contextmanager

from sqlalchemy.exc import SQLAlchemyError

from .errors import ArenaError, StorageUnavailable
from .models import db

logger = logging.getLogger(__name__)


@contextmanager
def transaction(operation: str):
    """
    Run one unit of work against the session.

    Commits when the block exits cleanly. Any failure rolls the whole unit
    back; ``ArenaError``s propagate unchanged and other database errors are
    raised as ``StorageUnavailable``.
    """
    try:
        yield db.session
        db.session.commit()
    except ArenaError:
        db.session.rollback()
        raise
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.exception(f"Storage failure during {operation}")
        raise StorageUnavailable(operation) from e
    except Exception:
        db.session.rollback()
        raise
