import logging
from collections.abc import Callable, Generator, Iterator
from contextlib import contextmanager

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, SQLModel, create_engine

from .config import get_settings
from .errors import StoreError

logger = logging.getLogger(__name__)


def build_engine(url: str) -> Engine:
    engine_kwargs = {}
    if url.startswith("sqlite"):
        engine_kwargs["connect_args"] = {"check_same_thread": False}
    return create_engine(url, echo=False, **engine_kwargs)


settings = get_settings()
engine = build_engine(settings.database_url)


def init_db(bind: Engine = engine) -> None:
    SQLModel.metadata.create_all(bind)


def dispose_db(bind: Engine = engine) -> None:
    bind.dispose()


def get_session() -> Generator[Session, None, None]:
    with Session(engine) as session:
        yield session


def get_session_factory() -> Callable[[], Session]:
    """Factory for work that outlives the request session (background backup)."""
    return lambda: Session(engine)


@contextmanager
def atomic(session: Session) -> Iterator[Session]:
    """Run a block as one transaction.

    Commits when the block finishes, rolls back on any exception. Database
    failures are re-raised as StoreError; nothing is retried.
    """
    try:
        yield session
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        logger.error("Transaction aborted: %s", exc)
        raise StoreError(str(exc)) from exc
    except Exception:
        session.rollback()
        raise
