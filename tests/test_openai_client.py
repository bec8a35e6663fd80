"""
LLM Client Tests

The SDK client is replaced with a fake; no network access.
"""

from types import SimpleNamespace
import sys
import os

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from openai import OpenAIError

import utils.openai_client as openai_client
from pipeline.errors import GenerationFailure


class FakeCompletions:
    def __init__(self, content=None, error=None, empty=False):
        self.content = content
        self.error = error
        self.empty = empty
        self.kwargs = None

    def create(self, **kwargs):
        self.kwargs = kwargs
        if self.error:
            raise self.error
        if self.empty:
            return SimpleNamespace(choices=[])
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=self.content))])


def make_client(completions: FakeCompletions) -> openai_client.OpenAIClient:
    client = openai_client.OpenAIClient.__new__(openai_client.OpenAIClient)
    client.client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    client.model = "test-model"
    return client


class TestOpenAIClient:
    """Tests for generate_text."""

    def test_messages_and_model(self):
        """Test that the system prompt comes first and the model can be overridden."""
        completions = FakeCompletions(content="  SELECT 1  ")
        client = make_client(completions)

        text = client.generate_text("question", system_prompt="rules", model="fast-model", max_tokens=10)

        assert text == "SELECT 1"
        assert completions.kwargs["model"] == "fast-model"
        assert completions.kwargs["max_tokens"] == 10
        assert [m["role"] for m in completions.kwargs["messages"]] == ["system", "user"]

    def test_default_model_without_system_prompt(self):
        """Test the default model and a user-only conversation."""
        completions = FakeCompletions(content="ok")
        make_client(completions).generate_text("question")
        assert completions.kwargs["model"] == "test-model"
        assert completions.kwargs["messages"] == [{"role": "user", "content": "question"}]

    def test_empty_response(self):
        """Test that missing choices or content give an empty string."""
        assert make_client(FakeCompletions(empty=True)).generate_text("q") == ""
        assert make_client(FakeCompletions(content=None)).generate_text("q") == ""

    def test_sdk_error_wrapped(self):
        """Test that SDK errors surface as GenerationFailure."""
        client = make_client(FakeCompletions(error=OpenAIError("upstream exploded")))
        with pytest.raises(GenerationFailure, match="API Error: upstream exploded"):
            client.generate_text("q")

    def test_missing_credentials(self, monkeypatch):
        """Test that a client without key or base URL refuses to start."""
        monkeypatch.setattr(openai_client, "LLM_API_KEY", "")
        monkeypatch.setattr(openai_client, "LLM_BASE_URL", "")
        with pytest.raises(GenerationFailure, match="API key not found"):
            openai_client.OpenAIClient()

    def test_is_local_llm(self, monkeypatch):
        """Test local endpoint detection."""
        monkeypatch.setattr(openai_client, "LLM_BASE_URL", "http://localhost:11434/v1")
        assert openai_client.is_local_llm()
        monkeypatch.setattr(openai_client, "LLM_BASE_URL", "")
        assert not openai_client.is_local_llm()
