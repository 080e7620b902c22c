import subprocess

import pytest

from signalscope.chat import ChatClient, ChatError, ChatMessage, compose_prompt


@pytest.fixture
def fake_run(monkeypatch):
    calls = []

    def run(cmd, **kwargs):
        calls.append((cmd, kwargs))
        return subprocess.CompletedProcess(cmd, 0, stdout='{"result": " slow query "}', stderr="")

    monkeypatch.setattr(subprocess, "run", run)
    return calls


class TestChatClient:
    def test_subprocess_gives_up_before_dispatcher(self, fake_run):
        client = ChatClient(timeout=10)
        assert client.ask_sync("why") == "slow query"
        [(cmd, kwargs)] = fake_run
        assert 0 < kwargs["timeout"] < 10
        assert cmd[:3] == ["claude", "-p", "why"]

    def test_timeout_becomes_chat_error(self, monkeypatch):
        def run(cmd, **kwargs):
            raise subprocess.TimeoutExpired(cmd, kwargs["timeout"])

        monkeypatch.setattr(subprocess, "run", run)
        with pytest.raises(ChatError, match="no answer within 9s"):
            ChatClient(timeout=10).ask_sync("why")

    def test_model_flag(self, fake_run):
        ChatClient(model="haiku").ask_sync("x")
        [(cmd, _)] = fake_run
        assert cmd[-2:] == ["--model", "haiku"]


def test_prompt_skips_failed_turns():
    history = [ChatMessage("user", "first"), ChatMessage("assistant", "boom", error=True)]
    prompt = compose_prompt(["Signal: logs"], history, "next")
    assert "USER: first" in prompt
    assert "boom" not in prompt
    assert prompt.endswith("next")
