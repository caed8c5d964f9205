import pytest
import uuid
from datetime import date, datetime, timedelta
from typing import Callable, Generator, Optional

from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.db.models import Base, Notification, NotificationTier, Task
from app.services.notifications.origin_tag import OriginTag


# Test database setup
TEST_DATABASE_URL = "sqlite:///:memory:"

# Fixed clock used by every test
TODAY = date(2024, 1, 10)
NOW = datetime(2024, 1, 10, 9, 30)


@pytest.fixture
def test_engine():
    """Fresh in-memory database per test."""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )
    Base.metadata.create_all(engine)

    yield engine

    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return sessionmaker(bind=test_engine, class_=Session, expire_on_commit=False)


@pytest.fixture
def db_session(session_factory) -> Generator[Session, None, None]:
    """Create a database session for each test."""
    session = session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def user_id() -> str:
    return str(uuid.uuid4())


# Test data factories
@pytest.fixture
def make_task(db_session: Session) -> Callable[..., Task]:
    """Insert a task row the way the task subsystem would."""

    def _make_task(
        user_id: str,
        title: str = "Write report",
        due_date: Optional[date] = TODAY,
        is_completed: bool = False,
    ) -> Task:
        task = Task(
            id=str(uuid.uuid4()),
            user_id=user_id,
            title=title,
            due_date=due_date,
            is_completed=is_completed,
        )
        db_session.add(task)
        db_session.commit()
        return task

    return _make_task


@pytest.fixture
def make_notification(db_session: Session) -> Callable[..., Notification]:
    """Insert a notification row directly, bypassing the engine."""

    def _make_notification(
        user_id: str,
        task_id: str,
        tier: NotificationTier = NotificationTier.DANGER,
        title: str = "due_today",
        updated_at: Optional[datetime] = None,
        dismissed: bool = False,
        message_params: str = '{"title": "Write report"}',
    ) -> Notification:
        timestamp = updated_at or NOW
        notification = Notification(
            id=str(uuid.uuid4()),
            user_id=user_id,
            task_id=task_id,
            tier=tier,
            title=title,
            message=f"{title}_message",
            message_params=message_params,
            due_date=TODAY,
            read=False,
            dismissed=dismissed,
            origin_tag=OriginTag(tier=tier, task_id=task_id).to_string(),
            created_at=timestamp - timedelta(minutes=1),
            updated_at=timestamp,
        )
        db_session.add(notification)
        db_session.commit()
        return notification

    return _make_notification


def active_notifications(
    db_session: Session, user_id: str, task_id: Optional[str] = None
):
    query = select(Notification).where(
        Notification.user_id == user_id, Notification.dismissed == False
    )
    if task_id is not None:
        query = query.where(Notification.task_id == task_id)
    return list(db_session.execute(query).scalars().all())


def all_notifications(db_session: Session, user_id: str, task_id: Optional[str] = None):
    query = select(Notification).where(Notification.user_id == user_id)
    if task_id is not None:
        query = query.where(Notification.task_id == task_id)
    return list(db_session.execute(query).scalars().all())
