from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from main import app
from repair_desk.db.init_db import init_db
from repair_desk.db.models import Customer, Profile, Shop, ShopHours, Vehicle
from repair_desk.db.session import get_db, get_session_factory


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine, class_=Session)


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    # Not entered as a context manager so the lifespan (and the scheduler) never starts.
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture()
def seed(db):
    shop = Shop(name="Northside Auto", slug="northside", timezone="UTC", labor_rate=120.0)
    other_shop = Shop(name="Southside Auto", slug="southside", timezone="UTC")
    db.add_all([shop, other_shop])
    db.flush()

    owner = Profile(shop_id=shop.id, role="owner", full_name="Olive Owner", access_token="owner-token")
    advisor = Profile(shop_id=shop.id, role="advisor", full_name="Avery Advisor", access_token="advisor-token")
    mechanic = Profile(shop_id=shop.id, role="mechanic", full_name="Max Mechanic", access_token="mechanic-token")
    fleet_manager = Profile(
        shop_id=shop.id, role="fleet_manager", full_name="Fran Fleet", access_token="fleet-token"
    )
    outsider = Profile(shop_id=other_shop.id, role="owner", full_name="Oscar Other", access_token="other-token")
    portal_user = Profile(shop_id=None, role="customer", full_name="Casey Customer", access_token="customer-token")
    db.add_all([owner, advisor, mechanic, fleet_manager, outsider, portal_user])
    db.flush()

    customer = Customer(shop_id=shop.id, user_id=portal_user.id, name="Casey Customer", phone="+15555550100")
    db.add(customer)
    db.flush()

    vehicle = Vehicle(
        shop_id=shop.id,
        customer_id=customer.id,
        year=2018,
        make="Ford",
        model="F-150",
        license_plate="ABC123",
        unit_number="T-1",
        mileage=42000,
    )
    db.add(vehicle)
    db.add(ShopHours(shop_id=shop.id, weekday=3, open_time="09:00", close_time="12:00"))
    db.commit()

    return SimpleNamespace(
        shop_id=shop.id,
        other_shop_id=other_shop.id,
        owner_id=owner.id,
        advisor_id=advisor.id,
        mechanic_id=mechanic.id,
        fleet_manager_id=fleet_manager.id,
        outsider_id=outsider.id,
        portal_user_id=portal_user.id,
        customer_id=customer.id,
        vehicle_id=vehicle.id,
    )


def auth(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}
