from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

TEST_SECRET_KEY = "test-secret-key-0123456789abcdef0123456789"
STRONG_PASSWORD = "Secret123"


class FrozenClock:
    """Manually advanced clock shared by the issuer and the token store."""

    def __init__(self, now: datetime = None):
        self.now = now or datetime.now(timezone.utc).replace(microsecond=0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture(autouse=True)
def _no_rate_limit():
    from app.core.rate_limit import limiter
    limiter.enabled = False
    yield
    limiter.enabled = True


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def settings(tmp_path):
    from app.core.config import Settings
    return Settings(
        DATABASE_URL=f"sqlite:///{tmp_path / 'auth.db'}",
        SECRET_KEY=TEST_SECRET_KEY,
        ENVIRONMENT="test",
    )


@pytest.fixture
def auth_options():
    from app.core.auth_config import AuthOptions
    return AuthOptions(bcrypt_rounds=4)


@pytest.fixture
def app(settings, auth_options, clock):
    from main import create_app
    from app.core.database import init_db
    application = create_app(settings, auth_options, clock=clock, enable_metrics=False)
    init_db(application.state.engine)
    yield application
    application.state.engine.dispose()


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def db(app):
    session = app.state.session_factory()
    yield session
    session.close()


@pytest.fixture
def hasher():
    from app.core.security import PasswordHasher
    return PasswordHasher(rounds=4)


@pytest.fixture
def issuer(clock):
    from app.core.security import AccessTokenIssuer
    return AccessTokenIssuer(TEST_SECRET_KEY, ttl=timedelta(minutes=15), clock=clock)


@pytest.fixture
def service(db, hasher, issuer, clock):
    from app.services import AuthService
    return AuthService(db, hasher, issuer, clock=clock)
