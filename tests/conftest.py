"""Pytest configuration and fixtures."""

import threading
import uuid
from datetime import datetime, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from dmpilot.config import Settings
from dmpilot.engine.dispatcher import ActionDispatcher, RetryPolicy
from dmpilot.engine.errors import TransientDependencyFailure
from dmpilot.engine.pipeline import EventPipeline
from dmpilot.models.account import InstagramAccount
from dmpilot.models.base import Base, get_engine

# No backoff sleeps in tests
FAST_RETRIES = RetryPolicy(max_attempts=3, max_delay=5.0, wait_multiplier=0, wait_max=0)


@pytest.fixture
def engine():
    """Create a test database engine with fresh tables for each test."""
    # Use in-memory SQLite for tests
    engine = create_engine("sqlite:///:memory:", echo=False)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    """Create a test database session."""
    Session = sessionmaker(bind=engine, expire_on_commit=False)
    session = Session()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def file_engine(tmp_path):
    """File-backed SQLite engine, shared safely between worker threads."""
    engine = get_engine(f"sqlite:///{tmp_path / 'dmpilot_test.db'}")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(file_engine):
    """Session factory bound to the file-backed engine."""
    return sessionmaker(bind=file_engine, expire_on_commit=False)


@pytest.fixture
def settings(tmp_path):
    """Settings isolated from the environment and any .env file."""
    return Settings(
        _env_file=None,
        database_url=f"sqlite:///{tmp_path / 'dmpilot_test.db'}",
        anthropic_api_key=None,
        meta_app_secret=None,
        webhook_verify_token="verify-me",
        worker_pool_size=4,
        dispatch_max_attempts=3,
        dispatch_max_delay_seconds=5.0,
    )


@pytest.fixture
def sample_account_data():
    """Sample Instagram account data with unique ID per test."""
    unique_id = str(uuid.uuid4().int)[:15]
    return {
        "instagram_account_id": unique_id,
        "page_id": f"page_{unique_id[:8]}",
        "username": f"dmpilot_{unique_id[:6]}",
        "access_token": "test_access_token_123",
        "token_expires_at": datetime(2099, 1, 1, tzinfo=timezone.utc),
        "is_active": True,
    }


@pytest.fixture
def account(session_factory, sample_account_data):
    """A connected account stored in the file-backed database."""
    with session_factory() as session:
        account = InstagramAccount(**sample_account_data)
        session.add(account)
        session.commit()
        return account


class FakeMessenger:
    """Records outbound messages; optionally fails a number of times first."""

    def __init__(self, failures=None):
        self.sent = []
        self.private_replies = []
        self.calls = 0
        self.failures = list(failures or [])
        self._lock = threading.Lock()

    def _maybe_fail(self):
        with self._lock:
            self.calls += 1
            if self.failures:
                failure = self.failures.pop(0)
                if failure is not None:
                    raise failure

    def send_message(self, recipient_ig_user_id, message):
        self._maybe_fail()
        self.sent.append((recipient_ig_user_id, message))
        return {"message_id": f"m_{len(self.sent)}"}

    def send_private_reply(self, comment_id, message):
        self._maybe_fail()
        self.private_replies.append((comment_id, message))
        return {"message_id": f"pr_{len(self.private_replies)}"}

    @property
    def texts(self):
        return [text for _, text in self.sent + self.private_replies]


class AlwaysFailing(FakeMessenger):
    """Every call raises the same error."""

    def __init__(self, error=None):
        super().__init__()
        self.error = error or TransientDependencyFailure("Server error: 503")

    def _maybe_fail(self):
        with self._lock:
            self.calls += 1
        raise self.error


@pytest.fixture
def messenger():
    return FakeMessenger()


@pytest.fixture
def make_pipeline(session_factory, settings):
    """Build pipelines wired to a fake messenger and optional responder."""
    pipelines = []

    def _make(messenger, responder=None, policy=FAST_RETRIES):
        dispatcher = ActionDispatcher(
            session_factory,
            lambda account: messenger,
            responder=responder,
            policy=policy,
            settings=settings,
        )
        pipeline = EventPipeline(session_factory, dispatcher, settings=settings)
        pipelines.append(pipeline)
        return pipeline

    yield _make
    for pipeline in pipelines:
        pipeline.close()


def dm_payload(ig_account_id, sender_id="user_1", mid="mid.1", text="hello", timestamp=1700000000000):
    """Meta webhook body carrying one DM."""
    return {
        "object": "instagram",
        "entry": [
            {
                "id": ig_account_id,
                "time": timestamp,
                "messaging": [
                    {
                        "sender": {"id": sender_id},
                        "recipient": {"id": ig_account_id},
                        "timestamp": timestamp,
                        "message": {"mid": mid, "text": text},
                    }
                ],
            }
        ],
    }


def comment_payload(ig_account_id, author_id="user_9", comment_id="c_1", text="INFO please", username="fan"):
    """Meta webhook body carrying one comment."""
    return {
        "object": "instagram",
        "entry": [
            {
                "id": ig_account_id,
                "time": 1700000000,
                "changes": [
                    {
                        "field": "comments",
                        "value": {
                            "id": comment_id,
                            "text": text,
                            "from": {"id": author_id, "username": username},
                            "media": {"id": "media_1"},
                        },
                    }
                ],
            }
        ],
    }


def wait_all(result):
    """Wait for every event scheduled by an ingest call."""
    return [future.result(timeout=10) for future in result.futures]
