import pathlib
import re
import sys
import uuid
from dataclasses import dataclass, field
from typing import Any

import pytest

sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))
from app.assistant.providers import Completion, ToolCall
from app.assistant.tools import HUMAN_HANDOFF_TOOL
from app.bots.schemas import BotConfigCreate, FaqCreate, ToolDefinition
from app.config import Settings
from app.conversations.models import ConnectionContext, WidgetIdentity
from app.core.rate_limit import limiter
from app.core.runtime import ChatRuntime, build_runtime
from app.escalation.directory import InMemoryStaffDirectory, StaffMember
from app.security import create_access_token, hash_password, reset_jwt_settings_cache
from app.security.tokens import StaffIdentity

PASSWORD = "Secret123!"

VOCABULARY = (
    "hours",
    "business",
    "open",
    "refund",
    "money",
    "policy",
    "contact",
    "support",
    "email",
    "shipping",
    "delivery",
    "password",
)


class KeywordEmbedder:
    """Deterministic bag-of-words vectors over a fixed vocabulary."""

    def __init__(self, vocabulary: tuple[str, ...] = VOCABULARY) -> None:
        self.vocabulary = vocabulary
        self.calls: list[str] = []
        self.fail_on: set[str] = set()

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        words = re.findall(r"[a-z]+", text.lower())
        if any(marker in text for marker in self.fail_on):
            raise RuntimeError("embedding backend exploded")
        return [float(words.count(term)) for term in self.vocabulary]


@dataclass
class ScriptedProvider:
    """Generative provider double that replays queued completions."""

    available: bool = True
    replies: list[Any] = field(default_factory=list)
    calls: list[dict[str, Any]] = field(default_factory=list)

    def reply(self, text: str = "") -> "ScriptedProvider":
        self.replies.append(Completion(text=text))
        return self

    def call_tool(self, name: str = HUMAN_HANDOFF_TOOL, **arguments: Any) -> "ScriptedProvider":
        self.replies.append(Completion(tool_calls=[ToolCall(name=name, arguments=arguments)]))
        return self

    def fail(self, exc: Exception | None = None) -> "ScriptedProvider":
        self.replies.append(exc or RuntimeError("provider down"))
        return self

    async def complete(self, **kwargs: Any) -> Completion:
        self.calls.append(kwargs)
        outcome = self.replies.pop(0) if self.replies else Completion(text="Happy to help!")
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@dataclass
class Staff:
    directory: InMemoryStaffDirectory
    admin: StaffMember
    agent: StaffMember
    second_agent: StaffMember


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch, tmp_path):
    monkeypatch.setenv("LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.setenv("AUTH_TOKEN_SECRET", "test-secret-key-with-enough-entropy")
    monkeypatch.setenv("AUTH_TOKEN_ISSUER", "support.test")
    monkeypatch.setenv("AUTH_TOKEN_AUDIENCE", "support-dashboard")
    reset_jwt_settings_cache()
    limiter.reset()
    yield
    reset_jwt_settings_cache()


@pytest.fixture
def settings() -> Settings:
    return Settings(heartbeat_interval_seconds=3600, retrieval_threshold=0.5)


@pytest.fixture
def staff() -> Staff:
    directory = InMemoryStaffDirectory()
    password_hash = hash_password(PASSWORD)
    admin = directory.add(
        StaffMember(id=uuid.uuid4(), email="admin@example.com", name="Ada Admin", role="admin"),
        password_hash,
    )
    agent = directory.add(
        StaffMember(
            id=uuid.uuid4(), email="agent@example.com", name="Sam Agent", status="available"
        ),
        password_hash,
    )
    second = directory.add(
        StaffMember(id=uuid.uuid4(), email="other@example.com", name="Kim Other", status="busy"),
        password_hash,
    )
    return Staff(directory=directory, admin=admin, agent=agent, second_agent=second)


@pytest.fixture
def provider() -> ScriptedProvider:
    return ScriptedProvider()


@pytest.fixture
def embedder() -> KeywordEmbedder:
    return KeywordEmbedder()


@pytest.fixture
def runtime(settings, provider, embedder, staff) -> ChatRuntime:
    return build_runtime(
        settings, provider=provider, embedder=embedder, staff_directory=staff.directory
    )


def default_bot_payload() -> BotConfigCreate:
    return BotConfigCreate(
        name="Support",
        model="gpt-4",
        temperature=0.7,
        system_instructions="You are a helpful customer service assistant.",
        tools=[ToolDefinition(name=HUMAN_HANDOFF_TOOL, description="Hand over to a person")],
        faqs=[
            FaqCreate(
                question="What are your business hours?",
                answer="Monday to Friday, 9 AM to 5 PM.",
            ),
            FaqCreate(
                question="What is your refund policy?",
                answer="We refund any purchase within 30 days, money back guaranteed.",
            ),
        ],
    )


@pytest.fixture
def bot(runtime):
    return runtime.bots.create_bot_config(default_bot_payload())


def token_for(member: StaffMember) -> str:
    token, _ = create_access_token(member)
    return token


def auth_header(member: StaffMember) -> dict[str, str]:
    return {"Authorization": f"Bearer {token_for(member)}"}


def widget_context(customer_id: str = "cust-1", ip: str | None = "203.0.113.7") -> ConnectionContext:
    return ConnectionContext(identity=WidgetIdentity(customer_id=customer_id), client_ip=ip)


def staff_context(member: StaffMember) -> ConnectionContext:
    return ConnectionContext(
        identity=StaffIdentity(agent_id=member.id, role=member.role, email=member.email)
    )


class FakeConnection:
    """In-process stand-in for a WebSocket registered with the registry."""

    def __init__(self, connection_id: str | None = None, *, fail: bool = False) -> None:
        self.id = connection_id or uuid.uuid4().hex
        self.sent: list[dict[str, Any]] = []
        self.fail = fail
        self.closed = False
        self.close_code: int | None = None

    async def send_json(self, data: dict[str, Any]) -> None:
        if self.fail:
            raise ConnectionError("socket is gone")
        self.sent.append(data)

    async def close(self, code: int = 1000) -> None:
        self.closed = True
        self.close_code = code

    def events(self, name: str | None = None) -> list[dict[str, Any]]:
        return [frame["data"] for frame in self.sent if name is None or frame["event"] == name]

    def names(self) -> list[str]:
        return [frame["event"] for frame in self.sent]


async def watch(runtime: ChatRuntime, conversation_id: uuid.UUID) -> FakeConnection:
    """Register a staff-side observer in the conversation's room."""

    connection = FakeConnection()
    await runtime.registry.register(
        connection, StaffIdentity(agent_id=uuid.uuid4(), role="admin"), client_ip=None
    )
    await runtime.registry.join(connection.id, conversation_id)
    return connection


@pytest.fixture
def client(settings, runtime):
    from starlette.testclient import TestClient

    from app.main import create_app

    with TestClient(create_app(settings, runtime=runtime)) as test_client:
        yield test_client
