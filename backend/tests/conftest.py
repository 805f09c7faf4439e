from pathlib import Path
from dotenv import load_dotenv
import pytest

# Load environment variables for tests before anything imports app settings
load_dotenv(Path(__file__).resolve().parents[1] / '.env.test')

from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from app import models  # noqa: E402,F401
from app.database import Base  # noqa: E402
from app.services import dispute_service  # noqa: E402
from app.utils.notifications import NotificationDispatcher  # noqa: E402
from dispute_helpers import ACCUSED, REPORTER, T0, sync_enqueue  # noqa: E402


@pytest.fixture
def session_factory():
    engine = create_engine(
        'sqlite:///:memory:',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    yield factory
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def sent():
    """Notification intents delivered during the test, in order."""
    return []


@pytest.fixture
def dispatcher(sent):
    return NotificationDispatcher(channels=[sent.append], enqueue=sync_enqueue)


@pytest.fixture
def file_dispute(db, dispatcher):
    """Factory that files a renter-vs-landlord dispute at ``T0`` unless overridden."""

    def _file(**overrides):
        params = dict(
            reporter_id=REPORTER.id,
            accused_id=ACCUSED.id,
            reporter_role="renter",
            title="Deposit withheld",
            description="Landlord kept the full deposit without an inspection report.",
            claim_amount="250.00",
            evidence=["https://media.example.com/checkout-photo.jpg"],
            booking_id="booking-42",
            property_id="property-7",
            severity="high",
            dispatcher=dispatcher,
            now=T0,
        )
        params.update(overrides)
        return dispute_service.file_ticket(db, **params)

    return _file
