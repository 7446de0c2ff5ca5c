import httpx
import pytest
from httpx import ASGITransport

from app.schemas.complaint import (
    ContactDetails,
    ConversationTurn,
    CustomerDetails,
    EnhancedComplaintContext,
)
from app.store import ComplaintStore


@pytest.fixture
def mock_env(monkeypatch):
    monkeypatch.setenv("ANTHROPIC_API_KEY", "test-anthropic-key")
    monkeypatch.setenv("BLAND_API_KEY", "test-bland-key")
    monkeypatch.setenv("TWILIO_ACCOUNT_SID", "AC123")
    monkeypatch.setenv("TWILIO_AUTH_TOKEN", "test-twilio-token")
    monkeypatch.setenv("TWILIO_RESUME_URL", "https://example.com/twiml/resume")
    monkeypatch.setenv("SENDGRID_API_KEY", "test-sendgrid-key")
    monkeypatch.setenv("EMAIL_FROM", "complaints@example.com")
    monkeypatch.setenv("POLL_INTERVAL_SECONDS", "0")
    monkeypatch.setenv("STORE_DIR", "")


@pytest.fixture
async def client(mock_env):
    from app.main import app, lifespan

    async with lifespan(app):
        async with httpx.AsyncClient(
            transport=ASGITransport(app=app),
            base_url="http://test",
        ) as c:
            yield c


@pytest.fixture
def store():
    return ComplaintStore()


@pytest.fixture
def contact():
    return ContactDetails(
        phone_numbers=["+14155550100"],
        emails=["support@acme.example"],
        source="test",
    )


@pytest.fixture
def make_context(contact):
    def _make(answers: list[str] | None = None, **overrides) -> EnhancedComplaintContext:
        turns = [
            ConversationTurn(
                question=f"Question number {i + 1}?",
                answer=answer,
                confidence_delta=0.1 if answer else 0.0,
            )
            for i, answer in enumerate(answers or [])
        ]
        data = {
            "complaint_id": "c-1",
            "original_complaint": "I was charged twice for my internet bill in March.",
            "initial_confidence": 0.5,
            "final_confidence": 0.5,
            "company": "Acme Telecom",
            "issue": "double charge on bill",
            "customer_details": CustomerDetails(
                name="Jordan Lee", email="jordan@example.com", phone="+14155550199"
            ),
            "contact_details": contact,
            "conversation_history": turns,
        }
        data.update(overrides)
        return EnhancedComplaintContext(**data)

    return _make
