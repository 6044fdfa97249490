import os
import tempfile

import pytest


# Ensure required environment variables are present before crudadmin imports.
# Tests disable form CSRF tokens explicitly; the CSRF tests switch them back on.
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", f"sqlite:///{os.path.join(tempfile.gettempdir(), 'crudadmin_test.db')}")
os.environ.setdefault("SECRET_KEY", "s" * 64)
os.environ.setdefault("JWT_SECRET", "x" * 64)
os.environ.setdefault("REQUIRE_CSRF_TOKEN", "false")
os.environ.setdefault("ALLOW_DEV_LOGIN", "true")
os.environ.setdefault("REDIS_URL", "")


@pytest.fixture(scope="session", autouse=True)
def _prepare_db():
    """Create database tables for tests using the crudadmin SQLAlchemy metadata."""
    # Import after env is set so settings instantiate correctly
    from crudadmin.db import Base, engine
    from crudadmin import models  # noqa: F401
    from tests.fixtures import models as fixture_models  # noqa: F401

    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def _clean_tables():
    """Empty every table after each test so committed rows never leak."""
    yield
    from crudadmin.db import Base, engine

    with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())


@pytest.fixture(autouse=True)
def _reset_rate_limiter():
    from crudadmin.rate_limit import limiter

    limiter.reset()
    yield
    limiter.reset()


@pytest.fixture
def db_session():
    from crudadmin.db import SessionLocal

    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def pool():
    from tests.fixtures.admins import build_test_pool

    return build_test_pool()


@pytest.fixture
def services(pool):
    from tests.fixtures.context import build_services

    return build_services(pool)


@pytest.fixture
def super_admin(db_session):
    from tests.fixtures.factories import UserFactory

    return UserFactory.create_super_admin(db_session)


@pytest.fixture
def app(pool):
    from crudadmin.main import create_app

    return create_app(pool)


@pytest.fixture
def client(app):
    from fastapi.testclient import TestClient

    with TestClient(app) as test_client:
        yield test_client
