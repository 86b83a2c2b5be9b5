# Pytest configuration for backend API tests.
# Forces a local SQLite DB, disables Redis, zeroes the payment delay, and wires JWT secrets for deterministic runs.
import os
from typing import Callable, Iterator

import pytest
from fastapi.testclient import TestClient

# Test-time environment: local SQLite DB, Redis disabled, predictable JWT secret, instant payments
os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("REDIS_ENABLED", "false")
os.environ.setdefault("CAMPUSRENT_JWT_SECRET", "test-secret")
os.environ.setdefault("PAYMENT_MIN_DELAY_MS", "0")
os.environ.setdefault("PAYMENT_MAX_DELAY_MS", "0")
os.environ.setdefault("ALLOWED_EMAIL_DOMAINS", "")

import sys
# Ensure the repo root is on sys.path so 'app' resolves when running pytest from anywhere
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from app.main import app, register_event_handlers  # noqa: E402
from app.db import Base, engine  # noqa: E402
from app.services.payments import PaymentSimulator, get_payment_simulator  # noqa: E402


@pytest.fixture(scope="session", autouse=True)
def _bootstrap_db() -> Iterator[None]:
    """
    Session-level database bootstrap using a local SQLite file.

    Drops and recreates schema once per test session to ensure a clean slate.
    """
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def _clean_db() -> Iterator[None]:
    """
    Function-level isolation: drop and recreate schema before each test.

    Also restores the default event handlers and dependency overrides that a
    test may have replaced.
    """
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    register_event_handlers()
    yield
    app.dependency_overrides.clear()
    register_event_handlers()


@pytest.fixture()
def client() -> Iterator[TestClient]:
    """
    FastAPI TestClient bound to the application for HTTP-level tests.
    """
    with TestClient(app) as c:
        yield c


@pytest.fixture()
def force_payment() -> Callable[[bool], PaymentSimulator]:
    """
    Pin the outcome of every following payment attempt.

    force_payment(True) makes attempts succeed, force_payment(False) makes them
    decline. Returns the simulator now serving /pay.
    """

    def _force(succeed: bool) -> PaymentSimulator:
        sim = PaymentSimulator(success_rate=1.0 if succeed else 0.0, min_delay_ms=0, max_delay_ms=0)
        app.dependency_overrides[get_payment_simulator] = lambda: sim
        return sim

    return _force
