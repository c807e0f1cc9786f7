from collections.abc import Generator

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from finance_copilot.core import settings
from finance_copilot.logger import get_logger

logger = get_logger(__name__)

Base = declarative_base()


def create_db_engine(url: str | None = None) -> Engine:
    url = url or settings.get_database_url()
    if url.startswith("sqlite"):
        kwargs: dict = {"connect_args": {"check_same_thread": False}}
        # In-memory databases live per connection; share one across threads.
        if url in {"sqlite://", "sqlite:///:memory:"}:
            kwargs["poolclass"] = StaticPool
        engine = create_engine(url, **kwargs)
    else:
        engine = create_engine(url, pool_pre_ping=True, pool_recycle=1000)
    logger.info("[DB] Engine created for %s", settings.mask_env_value("DATABASE_URL", url))
    return engine


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)


def init_db(engine: Engine) -> None:
    # Import registers the mapped classes on Base.metadata.
    from finance_copilot.db import models  # noqa: F401

    Base.metadata.create_all(bind=engine)
    logger.info("[DB] Schema ensured (%s tables).", len(Base.metadata.tables))


def session_scope(factory: sessionmaker[Session]) -> Generator[Session, None, None]:
    """Yield a session that is always closed afterwards."""
    db = factory()
    try:
        yield db
    finally:
        db.close()
