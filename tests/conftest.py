from datetime import datetime, timezone
from typing import Generator

import pytest
from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker

from db.models import Base
from domain.cellar import CellarRecords
from services.tax_rates import default_rate_table
from services.ttb_reporting import StaticCellarRecords, TTBReportingService
from tests.helpers.clock import FixedClock

engine: Engine = create_engine("sqlite:///:memory:", connect_args={"check_same_thread": False})
session_factory = sessionmaker(engine)


@pytest.fixture(scope="function")
def test_session() -> Generator[Session, None, None]:
    with session_factory() as session:
        yield session


@pytest.fixture(scope="function", autouse=True)
def reset_db() -> Generator[None, None, None]:
    Base.metadata.create_all(engine)
    yield
    Base.metadata.drop_all(engine)


@pytest.fixture(scope="function")
def clock() -> FixedClock:
    return FixedClock(datetime(2024, 7, 1, 9, 0, 0, tzinfo=timezone.utc))


@pytest.fixture(scope="function")
def make_service(test_session: Session, clock: FixedClock):
    def _make(records: CellarRecords) -> TTBReportingService:
        return TTBReportingService(
            test_session,
            organization_id="org-1",
            cellar=StaticCellarRecords(records),
            rates=default_rate_table(),
            clock=clock,
        )

    return _make
