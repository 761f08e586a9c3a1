"""Pytest configuration and shared fixtures for fxdesk tests.

- Isolated temporary SQLite databases per test
- Recording fake dispatcher (no network)
- Pillow-generated proof images
"""

import io
import sys
import tempfile
from pathlib import Path
from typing import Generator, List, Optional, Tuple

import numpy as np
import pytest
from fastapi.testclient import TestClient
from PIL import Image

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from fxdesk.models.user import User
from fxdesk.repositories.audit_repository import AuditRepository
from fxdesk.repositories.duplicate_index import DuplicateIndex
from fxdesk.repositories.transaction_repository import TransactionRepository
from fxdesk.repositories.user_repository import UserRepository
from fxdesk.services.audit_logger import AuditLogger
from fxdesk.services.duplicate_detector import DuplicateDetector
from fxdesk.services.notification_dispatcher import NotificationDispatcher
from fxdesk.services.payment_proof_service import PaymentProofService
from fxdesk.services.settlement import SettlementService
from fxdesk.utils.helpers.exceptions import NotificationFailure


class RecordingDispatcher(NotificationDispatcher):
    """Collects sent messages instead of calling WhatsApp."""

    def __init__(self, fail_with: Optional[str] = None):
        self.sent: List[Tuple[str, str]] = []
        self.fail_with = fail_with

    def send_text(self, destination: str, body: str) -> str:
        if self.fail_with:
            raise NotificationFailure(self.fail_with)
        self.sent.append((destination, body))
        return f"wamid.test-{len(self.sent)}"


def make_proof_image(seed: int = 0, size: int = 256, fmt: str = "PNG", quality: int = 90) -> bytes:
    """Blocky grayscale image; different seeds give unrelated fingerprints."""
    rng = np.random.RandomState(seed)
    blocks = rng.randint(0, 256, size=(8, 8)).astype(np.uint8)
    image = Image.fromarray(blocks).resize((size, size), Image.Resampling.NEAREST)
    buffer = io.BytesIO()
    if fmt == "JPEG":
        image.convert("RGB").save(buffer, format="JPEG", quality=quality)
    else:
        image.save(buffer, format=fmt)
    return buffer.getvalue()


@pytest.fixture(scope="function")
def test_data_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for each test's databases."""
    with tempfile.TemporaryDirectory() as tmp:
        yield Path(tmp)


@pytest.fixture(scope="function")
def test_db_path(test_data_dir: Path) -> str:
    return str(test_data_dir / "test.db")


@pytest.fixture
def duplicate_index(test_data_dir: Path) -> DuplicateIndex:
    return DuplicateIndex(db_path=str(test_data_dir / "duplicates.db"))


@pytest.fixture
def audit_repository(test_data_dir: Path) -> AuditRepository:
    return AuditRepository(db_path=str(test_data_dir / "audit.db"))


@pytest.fixture
def audit_logger(audit_repository: AuditRepository) -> AuditLogger:
    return AuditLogger(audit_repository)


@pytest.fixture
def duplicate_detector(duplicate_index: DuplicateIndex, audit_logger: AuditLogger) -> DuplicateDetector:
    return DuplicateDetector(index=duplicate_index, audit_logger=audit_logger)


@pytest.fixture
def transaction_repository(test_data_dir: Path) -> TransactionRepository:
    return TransactionRepository(db_path=str(test_data_dir / "transactions.db"))


@pytest.fixture
def user_repository(test_data_dir: Path) -> UserRepository:
    return UserRepository(db_path=str(test_data_dir / "transactions.db"))


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def settlement_service(
    transaction_repository: TransactionRepository,
    user_repository: UserRepository,
    dispatcher: RecordingDispatcher,
    audit_logger: AuditLogger,
) -> SettlementService:
    return SettlementService(
        transactions=transaction_repository,
        users=user_repository,
        dispatcher=dispatcher,
        audit_logger=audit_logger,
    )


@pytest.fixture
def payment_proof_service(
    duplicate_detector: DuplicateDetector,
    settlement_service: SettlementService,
) -> PaymentProofService:
    return PaymentProofService(
        detector=duplicate_detector,
        settlement=settlement_service,
        default_threshold=5,
    )


@pytest.fixture
def known_user(user_repository: UserRepository) -> User:
    """A user with a WhatsApp number on file."""
    return user_repository.save(User(user_id="user-1", phone_number="+92 300 1234567"))


@pytest.fixture
def pending_transaction(settlement_service: SettlementService, known_user: User):
    return settlement_service.create_transaction(
        user_id=known_user.user_id,
        conversation_id="conv-1",
        currency_from="usd",
        currency_to="pkr",
        amount_from=500.0,
        amount_to=139250.0,
        negotiated_rate=278.5,
    )


@pytest.fixture
def api_client(
    test_data_dir: Path,
    duplicate_detector: DuplicateDetector,
    settlement_service: SettlementService,
    payment_proof_service: PaymentProofService,
):
    """FastAPI test client wired to the isolated services."""
    from fxdesk.api import dependencies
    from fxdesk.main import app
    from fxdesk.services.config_service import AppSettings

    app.dependency_overrides[dependencies.get_duplicate_detector] = lambda: duplicate_detector
    app.dependency_overrides[dependencies.get_settlement_service] = lambda: settlement_service
    app.dependency_overrides[dependencies.get_payment_proof_service] = lambda: payment_proof_service
    app.dependency_overrides[dependencies.get_app_settings] = lambda: AppSettings(
        data_dir=test_data_dir
    )
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch):
    """Keep real WhatsApp credentials out of tests."""
    for name in ("WHATSAPP_ACCESS_TOKEN", "WHATSAPP_PHONE_NUMBER_ID"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def proof_image():
    """Factory for Pillow-generated proof images (see make_proof_image)."""
    return make_proof_image


@pytest.fixture
def failing_dispatcher() -> RecordingDispatcher:
    """Dispatcher whose every send fails like a rejected Cloud API call."""
    return RecordingDispatcher(fail_with="HTTP 401 invalid token")
