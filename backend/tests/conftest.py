import os

# Cheap hashes and an in-memory default engine for the test run
os.environ.setdefault("PASSWORD_HASH_ROUNDS", "4")
os.environ.setdefault("DATABASE_URL", "sqlite://")

from datetime import timedelta

import pytest
from sqlalchemy.orm import sessionmaker

from authcore.core.database import Base, create_db_engine
from authcore.core.security import utcnow
from authcore.schemas.account import RegistrationRequest
from authcore.services.account_service import AccountService

ORIGIN = "https://app.example.com"


class FakeClock:
    def __init__(self, start):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class RecordingEmailSender:
    def __init__(self):
        self.sent = []
        self.fail = False

    def send(self, template_name, recipient, values):
        if self.fail:
            raise RuntimeError("smtp unavailable")
        self.sent.append((template_name, recipient, dict(values)))

    def last(self, template_name):
        matches = [m for m in self.sent if m[0] == template_name]
        return matches[-1] if matches else None


@pytest.fixture
def engine(tmp_path):
    engine = create_db_engine(f"sqlite:///{tmp_path / 'authcore.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clock():
    return FakeClock(utcnow().replace(microsecond=0))


@pytest.fixture
def email_sender():
    return RecordingEmailSender()


@pytest.fixture
def service(email_sender, clock):
    return AccountService(email_sender=email_sender, clock=clock)


@pytest.fixture
def register_verified(service, db, email_sender):
    """Register and verify an account, returning it."""

    def _register(email, password="correct horse", **profile):
        request = RegistrationRequest(email=email, password=password, **profile)
        account = service.register(db, request, ORIGIN)
        token = account.verification_token
        return service.verify_email(db, token)

    return _register
