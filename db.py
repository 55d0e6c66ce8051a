from collections.abc import Generator
from typing import Annotated, TypeVar
import logging

from fastapi import Depends
from sqlalchemy import update
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, Session, create_engine

from config import DATABASE_URL, SQL_ECHO
from errors import ConflictError

logger = logging.getLogger(__name__)

if DATABASE_URL.startswith("sqlite"):
    engine_args = {"connect_args": {"check_same_thread": False}}
    if DATABASE_URL in ("sqlite://", "sqlite:///:memory:"):
        # one shared connection, otherwise every session sees an empty database
        engine_args["poolclass"] = StaticPool
else:
    engine_args = {}

engine = create_engine(DATABASE_URL, echo=SQL_ECHO, **engine_args)

T = TypeVar("T", bound=SQLModel)


def create_db_and_tables() -> None:
    """Create all tables in the database if they don't exist."""
    SQLModel.metadata.create_all(engine)


def get_session() -> Generator[Session, None, None]:
    """Yield a database session for dependency injection."""
    with Session(engine) as session:
        yield session


SessionDep = Annotated[Session, Depends(get_session)]


def _claim_version(session: Session, entity: SQLModel) -> None:
    model = type(entity)
    current = entity.version

    with session.no_autoflush:
        result = session.execute(
            update(model)
            .where(model.id == entity.id, model.version == current)
            .values(version=current + 1)
            .execution_options(synchronize_session=False)
        )

    if result.rowcount != 1:
        session.rollback()
        logger.warning(
            "Version conflict on %s %s (expected version %s)",
            model.__name__, entity.id, current,
        )
        raise ConflictError(f"{model.__name__} was modified by another request")

    entity.version = current + 1


def commit_versioned(session: Session, entity: T, *others: SQLModel) -> T:
    """
    Persist mutated rows guarded by their ``version`` column, in one commit.

    Each version is bumped with a conditional UPDATE first, so a writer holding
    a stale copy matches zero rows and gets a ConflictError instead of
    overwriting the other write.
    """
    rows = (entity, *others)
    for row in rows:
        _claim_version(session, row)

    session.add_all(rows)
    session.commit()
    for row in rows:
        session.refresh(row)
    return entity
