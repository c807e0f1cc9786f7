from collections.abc import Generator

import pytest
from sqlalchemy import Engine
from sqlalchemy.orm import Session, sessionmaker

from finance_copilot.db.database import create_db_engine, create_session_factory, init_db
from finance_copilot.db.transactions import TransactionRepository


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def engine() -> Generator[Engine, None, None]:
    engine = create_db_engine("sqlite://")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine: Engine) -> sessionmaker[Session]:
    return create_session_factory(engine)


@pytest.fixture
def add_transactions(session_factory: sessionmaker[Session]):
    def _add(scope: str, *rows: tuple[str, str, float, str | None]):
        with session_factory() as session:
            return TransactionRepository(session).insert_many(
                scope,
                [
                    {"date": date, "description": description, "amount": amount, "category": category}
                    for date, description, amount, category in rows
                ],
            )
    return _add
