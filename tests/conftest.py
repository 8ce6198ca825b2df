"""Shared fixtures for the Gemini chat tests."""

import asyncio
import os

import pytest
from fastapi.testclient import TestClient
from langchain_core.messages import AIMessageChunk

# Never talk to the real API from tests
os.environ.setdefault("GOOGLE_API_KEY", "test-key")
os.environ.setdefault("APP_ENV", "test")

from chat.core.history import HistoryStore  # noqa: E402


class FakeStreamingModel:
    """Stands in for ChatGoogleGenerativeAI: streams fixed fragments and records calls."""

    def __init__(self, fragments=("Hello", ", ", "world"), token_count=42):
        self.fragments = list(fragments)
        self.token_count = token_count
        self.stream_error = None
        self.token_error = None
        self.calls = []

    async def astream(self, messages):
        self.calls.append(list(messages))
        if self.stream_error is not None:
            raise self.stream_error
        for fragment in self.fragments:
            await asyncio.sleep(0)
            yield AIMessageChunk(content=fragment)

    def get_num_tokens_from_messages(self, messages):
        if self.token_error is not None:
            raise self.token_error
        return self.token_count


@pytest.fixture
def run():
    return asyncio.run


@pytest.fixture
def store(tmp_path):
    return HistoryStore(tmp_path / "history", max_age_seconds=3600)


@pytest.fixture
def fake_model():
    return FakeStreamingModel()


@pytest.fixture
def client(monkeypatch, store, fake_model):
    """FastAPI test client wired to a temporary store and the fake model."""
    import app.main as main

    monkeypatch.setattr(main, "get_store", lambda: store)
    monkeypatch.setattr(main, "build_chat_model", lambda: fake_model)
    return TestClient(main.app)
