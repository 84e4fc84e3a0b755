"""Test the tutor chat and mnemonic explanation endpoints."""
from unittest import mock

import pytest
from fastapi.testclient import TestClient

from backend.app.main import app
from backend.app.generative import get_generative_client
from backend.app.schemas import ChatMessage
from backend.app.tutor import (
    CHAT_SYSTEM_INSTRUCTION,
    EXPLAIN_SYSTEM_INSTRUCTION,
    build_chat_prompt,
    build_explain_prompt,
)


class FakeGenerativeClient:
    def __init__(self, text="What is the priority assessment here, Future RN?", error=None):
        self.text = text
        self.error = error
        self.calls = []

    def generate(self, prompt, model=None, system_instruction=None, temperature=None):
        self.calls.append({
            "prompt": prompt,
            "model": model,
            "system_instruction": system_instruction,
            "temperature": temperature,
        })
        if self.error:
            raise self.error
        return self.text


@pytest.fixture
def fake_client():
    fake = FakeGenerativeClient()
    app.dependency_overrides[get_generative_client] = lambda: fake
    yield fake
    app.dependency_overrides.clear()


@pytest.fixture
def client():
    return TestClient(app)


# --- Prompt construction ---

def test_single_message_prompt_is_the_text():
    prompt = build_chat_prompt([ChatMessage(role="user", text="What does MONA stand for?")])

    assert prompt == "What does MONA stand for?"


def test_multi_turn_prompt_replays_history():
    messages = [
        ChatMessage(role="user", text="What is ADPIE?"),
        ChatMessage(role="model", text="What do you think the A stands for?"),
        ChatMessage(role="user", text="Assessment?"),
    ]

    prompt = build_chat_prompt(messages)

    assert prompt == (
        "PREVIOUS CONVERSATION HISTORY:\n"
        "Student: What is ADPIE?\n"
        "Instructor: What do you think the A stands for?\n"
        "\n"
        "CURRENT QUESTION:\n"
        "Assessment?"
    )


def test_explain_prompt_lists_fields():
    prompt = build_explain_prompt("MONA", "Morphine, Oxygen, Nitrates, Aspirin", "Cardiac")

    assert prompt.splitlines()[:3] == [
        "Mnemonic: MONA",
        "Category: Cardiac",
        "Meaning: Morphine, Oxygen, Nitrates, Aspirin",
    ]
    assert prompt.endswith("Provide a clinical deep dive.")


# --- /api/chat ---

def test_chat_returns_instructor_reply(client, fake_client):
    response = client.post("/api/chat", json={"messages": [{"role": "user", "text": "Give me the answer"}]})

    assert response.status_code == 200
    assert response.json() == {"text": "What is the priority assessment here, Future RN?"}
    call = fake_client.calls[0]
    assert call["prompt"] == "Give me the answer"
    assert call["system_instruction"] == CHAT_SYSTEM_INSTRUCTION
    assert call["temperature"] == 0.7
    assert call["model"] == "gemini-2.5-flash"


def test_chat_requires_messages(client, fake_client):
    assert client.post("/api/chat", json={}).status_code == 400
    assert client.post("/api/chat", json={"messages": []}).status_code == 400
    assert fake_client.calls == []


def test_chat_rejects_unknown_role(client, fake_client):
    response = client.post("/api/chat", json={"messages": [{"role": "system", "text": "hi"}]})

    assert response.status_code == 422


def test_chat_upstream_failure_500(client, fake_client):
    fake_client.error = RuntimeError("quota exceeded")

    response = client.post("/api/chat", json={"messages": [{"role": "user", "text": "hi"}]})

    assert response.status_code == 500
    assert response.json()["detail"]["error"] == "quota exceeded"


def test_chat_without_api_key_500(client):
    with mock.patch("backend.app.settings.GEMINI_API_KEY", ""):
        response = client.post("/api/chat", json={"messages": [{"role": "user", "text": "hi"}]})

    assert response.status_code == 500
    assert response.json()["detail"] == "Server misconfiguration: API Key missing."


# --- /api/explain ---

def test_explain_returns_deep_dive(client, fake_client):
    fake_client.text = "Clinical Application: ..."

    response = client.post("/api/explain", json={"mnemonic": "MONA", "meaning": "Morphine, Oxygen, Nitrates, Aspirin"})

    assert response.status_code == 200
    assert response.json() == {"text": "Clinical Application: ..."}
    call = fake_client.calls[0]
    assert "Category: General" in call["prompt"]
    assert call["system_instruction"] == EXPLAIN_SYSTEM_INSTRUCTION
    assert call["model"] == "gemini-2.5-pro"


def test_explain_requires_mnemonic(client, fake_client):
    response = client.post("/api/explain", json={"meaning": "x"})

    assert response.status_code == 422


def test_explain_upstream_failure_500(client, fake_client):
    fake_client.error = RuntimeError("model overloaded")

    response = client.post("/api/explain", json={"mnemonic": "MONA", "meaning": "x"})

    assert response.status_code == 500
    assert response.json()["detail"] == "model overloaded"


def test_explain_without_api_key_500(client):
    with mock.patch("backend.app.settings.GEMINI_API_KEY", ""):
        response = client.post("/api/explain", json={"mnemonic": "MONA", "meaning": "x"})

    assert response.status_code == 500
    assert response.json()["detail"] == "API Key missing"
