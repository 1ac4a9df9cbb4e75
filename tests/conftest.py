import os
import tempfile
from datetime import date, timedelta

# Settings are cached on first import, so the test environment is set up front
_TEST_ROOT = tempfile.mkdtemp(prefix="tutormarket-tests-")
os.environ["LOGS_DIR"] = os.path.join(_TEST_ROOT, "logs")
# Object storage runs against moto, never against real AWS credentials
os.environ["AWS_ACCESS_KEY_ID"] = "testing"
os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
os.environ["AWS_DEFAULT_REGION"] = "us-east-1"
os.environ["STORAGE_BUCKET"] = "tutormarket-test"
os.environ["DB_URL"] = f"sqlite:///{os.path.join(_TEST_ROOT, 'app.db')}"
os.environ["USE_REDIS"] = "false"
os.environ["RATE_LIMIT_ENABLED"] = "false"

import fakeredis
import pytest
from fastapi.testclient import TestClient
from moto import mock_aws
from sqlalchemy.orm import sessionmaker

from tutormarket.main import app
from tutormarket.auth_tools import create_access_token
from tutormarket.database.database import (
    AvailabilityWindow, Booking, BookingStatus, Tutor, User, UserRole, build_engine, get_db, init_db
)
from tutormarket.realtime import change_feed
from tutormarket.storage import ObjectStore, get_object_store, get_s3_client
from tutormarket.utilities import get_or_create_subjects


def next_weekday(weekday: int, weeks_ahead: int = 1) -> date:
    """A future date falling on weekday (Python numbering, Monday=0)."""
    today = date.today()
    days = (weekday - today.weekday()) % 7 or 7
    return today + timedelta(days=days + 7 * (weeks_ahead - 1))


def next_monday() -> date:
    return next_weekday(0)


def make_user(db, email: str, role: UserRole = UserRole.STUDENT, full_name: str = None, verified: bool = True) -> User:
    user = User(email=email, full_name=full_name or email.split("@")[0].title(), role=role, email_verified=verified)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def make_tutor(db, user: User, approved: bool = True, hourly_rate: float = 40.0, subjects=("Mathematics",), **fields) -> Tutor:
    tutor = Tutor(user_id=user.id, full_name=user.full_name, email=user.email, hourly_rate=hourly_rate, is_approved=approved, **fields)
    tutor.subjects = get_or_create_subjects(db, subjects)
    db.add(tutor)
    db.commit()
    db.refresh(tutor)
    return tutor


def make_window(db, tutor: Tutor, day_of_week: int, start, end, is_available: bool = True) -> AvailabilityWindow:
    window = AvailabilityWindow(tutor_id=tutor.id, day_of_week=day_of_week, start_time=start, end_time=end, is_available=is_available)
    db.add(window)
    db.commit()
    db.refresh(window)
    return window


def make_booking(db, tutor: Tutor, student: User, session_date: date, start, end,
                 status: BookingStatus = BookingStatus.PENDING, subject: str = "Mathematics") -> Booking:
    """Insert a booking directly, bypassing the conflict guard (fixture data only)."""
    booking = Booking(
        tutor_id=tutor.id, student_id=student.id, session_date=session_date,
        start_time=start, end_time=end, status=status.value, subject=subject
    )
    db.add(booking)
    db.commit()
    db.refresh(booking)
    return booking


def auth_header(user: User) -> dict:
    token = create_access_token(user.id, user.full_name, user.email, user.role.value)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'test.db'}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def store():
    with mock_aws():
        client = get_s3_client()
        client.create_bucket(Bucket="tutormarket-test")
        yield ObjectStore(client, "tutormarket-test")


@pytest.fixture
def redis_server():
    return fakeredis.FakeServer()


@pytest.fixture
def feed(redis_server):
    """The change feed on an in-memory redis. Each subscription gets its own async client."""
    change_feed.initialize(
        fakeredis.FakeRedis(server=redis_server),
        lambda: fakeredis.FakeAsyncRedis(server=redis_server),
    )
    yield change_feed
    change_feed.reset()


@pytest.fixture
def client(session_factory, store):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_object_store] = lambda: store
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def student(db):
    return make_user(db, "student@example.com", UserRole.STUDENT, "Sam Student")


@pytest.fixture
def other_student(db):
    return make_user(db, "other@example.com", UserRole.STUDENT, "Olive Other")


@pytest.fixture
def tutor_user(db):
    return make_user(db, "tutor@example.com", UserRole.TUTOR, "Tara Tutor")


@pytest.fixture
def tutor(db, tutor_user):
    return make_tutor(db, tutor_user, bio="Patient maths tutor", education_level="Master", gender="female", location="Maastricht")


@pytest.fixture
def admin(db):
    return make_user(db, "admin@example.com", UserRole.ADMIN, "Ada Admin")
