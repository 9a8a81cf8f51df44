"""Shared pytest fixtures for ISPNet tests."""
import os

import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# ---------------------------------------------------------------------------
# Deterministic test environment, set BEFORE any ispnet module imports.
# Settings are read once at import time; the limiter and the Fernet key
# are built from them.
# ---------------------------------------------------------------------------
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-pytest-only")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("HTTPS_ONLY", "false")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from ispnet.database import Database, get_db  # noqa: E402
from ispnet.models import Customer, CustomerService, NetworkDevice, ServicePlan  # noqa: E402
from ispnet.services import subnets as subnet_service  # noqa: E402


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest_asyncio.fixture
async def database(tmp_path):
    """Per-test SQLite file with every table created."""
    database = Database(f"sqlite+aiosqlite:///{tmp_path / 'ispnet_test.db'}")
    await database.create_all()
    yield database
    await database.dispose()


@pytest_asyncio.fixture
async def db(database):
    async with database.session() as session:
        yield session


# =============================================================================
# Seed data
# =============================================================================

@pytest_asyncio.fixture
async def router(db):
    device = NetworkDevice(name="core-rtr-1", ip_address="10.255.0.1", status="online")
    db.add(device)
    await db.commit()
    return device


@pytest_asyncio.fixture
async def offline_router(db):
    device = NetworkDevice(name="edge-rtr-9", ip_address="10.255.0.9", status="offline")
    db.add(device)
    await db.commit()
    return device


@pytest_asyncio.fixture
async def customer(db):
    c = Customer(first_name="Dana", last_name="Levi", email="dana@example.net", city="Haifa")
    db.add(c)
    await db.commit()
    return c


@pytest_asyncio.fixture
async def plan(db):
    p = ServicePlan(name="Fiber 100", price=49, download_speed=100, upload_speed=20)
    db.add(p)
    await db.commit()
    return p


async def add_customer(db, name="Extra"):
    c = Customer(first_name=name, last_name="Customer")
    db.add(c)
    await db.commit()
    return c


async def add_service(db, customer_id, router_id=None, status="active"):
    service = CustomerService(customer_id=customer_id, router_id=router_id, status=status)
    db.add(service)
    await db.commit()
    return service


async def add_subnet(db, router_id, cidr, generate=True, **extra):
    subnet, _ = await subnet_service.create_subnet(
        db, {"router_id": router_id, "cidr": cidr, **extra}, auto_generate=generate
    )
    return subnet


# =============================================================================
# API client
# =============================================================================

@pytest_asyncio.fixture
async def client(database):
    """httpx client bound to the app, with get_db pointed at the test database."""
    from ispnet.main import app

    async def _override_get_db():
        async with database.session() as session:
            yield session

    app.dependency_overrides[get_db] = _override_get_db
    app.state.database = database
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
