import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("DB_LOG_SLOW_QUERIES", "false")

from datetime import date  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from visitseries import models  # noqa: E402
from visitseries.database import Base, get_db  # noqa: E402
from visitseries.domain.bookings.schemas import (  # noqa: E402
    Assignment,
    RecurrenceSpec,
    VisitTemplate,
)
from visitseries.main import app  # noqa: E402

TENANT_ID = "tenant-1"


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def catalog(db):
    """Services, add-ons and staff for one tenant"""
    standard = models.Service(
        id="svc-standard", tenant_id=TENANT_ID, name="Standard clean",
        price_default=100, duration_minutes=120,
    )
    maintenance = models.Service(
        id="svc-maintenance", tenant_id=TENANT_ID, name="Maintenance clean",
        price_default=80, duration_minutes=90,
    )
    fridge = models.Addon(id="addon-fridge", tenant_id=TENANT_ID, name="Inside fridge", price=25)
    oven = models.Addon(id="addon-oven", tenant_id=TENANT_ID, name="Inside oven", price=30)
    ana = models.TeamMember(id="member-ana", tenant_id=TENANT_ID, name="Ana", pay_rate=50)
    bruno = models.TeamMember(id="member-bruno", tenant_id=TENANT_ID, name="Bruno", pay_rate=60)
    db.add_all([standard, maintenance, fridge, oven, ana, bruno])
    db.flush()

    # Ana works Mondays 08:00-17:00, Bruno is off on Mondays
    db.add_all(
        [
            models.TeamAvailability(
                member_id="member-ana", day_of_week=1, start_time="08:00", end_time="17:00"
            ),
            models.TeamAvailability(
                member_id="member-bruno", day_of_week=1, start_time="08:00",
                end_time="17:00", is_available=False,
            ),
        ]
    )
    db.commit()
    return {"addons": {"addon-fridge": 25.0, "addon-oven": 30.0}}


@pytest.fixture
def weekly_spec():
    return RecurrenceSpec(
        frequency="weekly", occurrence_count=4, anchor_date=date(2024, 6, 3), anchor_time="09:00"
    )


@pytest.fixture
def template():
    return VisitTemplate(
        service_id="svc-standard",
        price=100,
        duration_minutes=120,
        pay_rate=50,
        start_time="09:00",
        addon_ids=["addon-fridge"],
        assignments=[Assignment(member_id="member-ana", pay_rate=50, display_name="Ana")],
    )


@pytest.fixture
def client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()
