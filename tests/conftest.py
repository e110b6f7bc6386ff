# tests/conftest.py
"""
Shared fixtures: a throwaway SQLite database per test, a recording
messaging gateway and a scripted classifier, wired through build_services()
exactly like the app does.
"""

import pytest

from helpdesk_app.config import cfg
from helpdesk_app.core.message_handler import build_services
from helpdesk_app.core.models import ProblemAnalysis
from helpdesk_app.services.intent_llm import FALLBACK_WELCOME, INTENT_OTHER
from helpdesk_app.services.repository import Repository
from helpdesk_app.services.schema import init_schema

ROOT = "5569900000001"
ADMIN = "5569900000002"
TECH = "5569900000003"
STOREKEEPER = "5569900000004"
USER = "5569900000005"
OTHER_USER = "5569900000006"
BOT = "5569900000099"
TECH_GROUP = "120363000000000001@g.us"


class RecordingGateway:
    """Stands in for the WhatsApp bridge; remembers every outbound message."""

    def __init__(self, fail_for=()):
        self.sent = []
        self.fail_for = set(fail_for)

    def send(self, target, text):
        if target in self.fail_for:
            raise RuntimeError(f"delivery to {target} failed")
        self.sent.append((target, text))
        return {"status": "recorded"}

    def to(self, target):
        return [text for t, text in self.sent if t == target]


class ScriptedClassifier:
    """Same surface as IntentClassifier, answers are set by the test."""

    def __init__(self, intent=INTENT_OTHER, analysis=None, welcome=FALLBACK_WELCOME):
        self.intent = intent
        self.analysis = analysis or ProblemAnalysis(
            category="Hardware", priority="Alta", analysis="Impressora sem resposta", source="llm"
        )
        self.welcome = welcome
        self.ai_enabled = True
        self.available = True
        self.classified = []

    def classify_message(self, text):
        self.classified.append(text)
        return self.intent

    def analyze_problem(self, text):
        return self.analysis

    def welcome_message(self, name=None):
        return self.welcome

    def enabled(self):
        return self.ai_enabled

    def set_enabled(self, flag):
        self.ai_enabled = flag

    def check_connection(self):
        return self.available

    def status(self):
        return {
            "enabled": self.ai_enabled,
            "available": self.available,
            "base_url": "http://localhost:11434",
            "model": "llama3.2:3b",
        }


@pytest.fixture
def db_path(tmp_path, monkeypatch):
    path = tmp_path / "helpdesk.db"
    monkeypatch.setattr(cfg, "DATABASE_URL", f"sqlite:///{path}")
    monkeypatch.setattr(cfg, "TESTING", True)
    monkeypatch.setattr(cfg, "ROOT_NUMBERS", ROOT)
    monkeypatch.setattr(cfg, "TECH_GROUP_ID", TECH_GROUP)
    monkeypatch.setattr(cfg, "BOT_NUMBER", BOT)
    monkeypatch.setattr(cfg, "EMAIL_ENABLED", False)
    monkeypatch.setattr(cfg, "WEBHOOK_TOKEN", "")
    monkeypatch.setattr(cfg, "WEB_ROOT_PASSWORD", "")
    monkeypatch.setattr(cfg, "BACKUP_PATH", str(tmp_path / "backups"))
    monkeypatch.setattr(cfg, "EXPORT_PATH", str(tmp_path / "exports"))
    init_schema()
    return path


@pytest.fixture
def repo(db_path):
    return Repository()


@pytest.fixture
def gateway():
    return RecordingGateway()


@pytest.fixture
def classifier():
    return ScriptedClassifier()


@pytest.fixture
def services(repo, gateway, classifier):
    svc = build_services(repo=repo, gateway=gateway, classifier=classifier, notify_async=False)
    yield svc
    svc.shutdown()


@pytest.fixture
def staff(repo):
    """Seed one user per role."""
    repo.upsert_user(ROOT, display_name="Rita Root", role="root")
    repo.upsert_user(ADMIN, display_name="Ana Admin", role="admin")
    repo.upsert_user(TECH, display_name="Tiago Técnico", role="technician")
    repo.upsert_user(STOREKEEPER, display_name="Saulo Almox", role="storekeeper")
    repo.upsert_user(USER, display_name="Ulisses", role="user")


@pytest.fixture
def say(services):
    """say(identity, text, **kw) -> reply, through the full dispatcher."""

    def _say(identity, text, **kwargs):
        return services.dispatcher.handle(identity, text, **kwargs)

    return _say


@pytest.fixture
def make_ticket(services):
    def _make(identity=USER, problem="Impressora não imprime", **fields):
        return services.tickets.commit(
            identity,
            requester_name=fields.pop("requester_name", "Ulisses"),
            problem_text=problem,
            **fields,
        )

    return _make
