# tests/test_intent_llm.py

import json
from types import SimpleNamespace

from helpdesk_app.services.intent_llm import (
    FALLBACK_WELCOME,
    INTENT_GREETING,
    INTENT_OTHER,
    INTENT_PROBLEM,
    IntentClassifier,
)


class FakeOpenAI:
    """Minimal stand-in for openai.OpenAI: chat.completions.create + models.list."""

    def __init__(self, *answers, fail=False):
        self.answers = list(answers)
        self.fail = fail
        self.calls = []
        self.chat = SimpleNamespace(completions=SimpleNamespace(create=self._create))
        self.models = SimpleNamespace(list=self._list_models)

    def _create(self, **kwargs):
        self.calls.append(kwargs)
        if self.fail:
            raise TimeoutError("read timed out")
        content = self.answers.pop(0)
        message = SimpleNamespace(content=content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])

    def _list_models(self):
        if self.fail:
            raise ConnectionError("connection refused")
        return []


def test_classify_valid_json(repo):
    client = FakeOpenAI(json.dumps({"intent": "problem"}))
    classifier = IntentClassifier(repo, client=client, model="llama3.2:3b")

    assert classifier.classify_message("o mouse parou") == INTENT_PROBLEM
    call = client.calls[0]
    assert call["model"] == "llama3.2:3b"
    assert call["response_format"] == {"type": "json_object"}
    assert call["messages"][1]["content"] == "o mouse parou"
    assert classifier.available is True


def test_classify_accepts_portuguese_labels(repo):
    classifier = IntentClassifier(repo, client=FakeOpenAI('{"intent": "Saudação"}'))
    assert classifier.classify_message("oi") == INTENT_GREETING


def test_classify_garbage_falls_back_to_other(repo):
    classifier = IntentClassifier(repo, client=FakeOpenAI("não sei", '{"intent": "urgent"}'))

    assert classifier.classify_message("??") == INTENT_OTHER
    assert classifier.classify_message("??") == INTENT_OTHER


def test_classify_failure_falls_back_to_other(repo):
    classifier = IntentClassifier(repo, client=FakeOpenAI(fail=True))

    assert classifier.classify_message("impressora quebrou") == INTENT_OTHER
    assert classifier.available is False


def test_disabled_classifier_does_not_call_the_model(repo):
    client = FakeOpenAI()
    classifier = IntentClassifier(repo, client=client)
    classifier.set_enabled(False)

    assert classifier.classify_message("impressora quebrou") == INTENT_OTHER
    assert classifier.welcome_message("Ana") == FALLBACK_WELCOME
    assert client.calls == []
    assert classifier.status()["enabled"] is False


def test_analyze_problem(repo):
    answer = json.dumps({"category": "Hardware", "priority": "Alta", "analysis": "Fonte queimada"})
    analysis = IntentClassifier(repo, client=FakeOpenAI(answer)).analyze_problem("pc não liga")

    assert analysis.category == "Hardware"
    assert analysis.priority == "Alta"
    assert analysis.source == "llm"

    fallback = IntentClassifier(repo, client=FakeOpenAI(fail=True)).analyze_problem("pc não liga")
    assert fallback.source == "fallback"
    assert fallback.category == "Sistema"


def test_welcome_message(repo):
    classifier = IntentClassifier(repo, client=FakeOpenAI("Olá Ana! Como posso ajudar?"))
    assert classifier.welcome_message("Ana") == "Olá Ana! Como posso ajudar?"

    assert IntentClassifier(repo, client=FakeOpenAI(fail=True)).welcome_message() == FALLBACK_WELCOME


def test_check_connection(repo):
    assert IntentClassifier(repo, client=FakeOpenAI()).check_connection() is True
    assert IntentClassifier(repo, client=FakeOpenAI(fail=True)).check_connection() is False
