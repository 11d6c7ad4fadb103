"""Tutor backend and sandbox client tests (external calls mocked)."""
from unittest.mock import MagicMock, Mock

import pytest
import requests

from abtutor.errors import SandboxUnavailable
from abtutor.services.code_runner import CodeRunner, normalize_output
from abtutor.services.tutor_backend import FALLBACK_TEXT, TutorBackend


def _completion(text):
    completion = MagicMock()
    completion.choices[0].message.content = text
    return completion


def test_send_message_returns_reply_with_latency():
    client = MagicMock()
    client.chat.completions.create.return_value = _completion(" 힌트: 반복문 ")
    backend = TutorBackend("model_a", "gpt-4o-mini", client)

    reply = backend.send_message("질문", history=[{"role": "user", "content": "이전"}], topic="Loops")

    assert reply.text == "힌트: 반복문"
    assert reply.is_fallback is False
    assert reply.latency_ms >= 0
    messages = client.chat.completions.create.call_args.kwargs["messages"]
    assert messages[0]["role"] == "system" and "Loops" in messages[0]["content"]
    assert messages[1:] == [{"role": "user", "content": "이전"}, {"role": "user", "content": "질문"}]


def test_send_message_falls_back_on_error():
    client = MagicMock()
    client.chat.completions.create.side_effect = RuntimeError("rate limited")
    backend = TutorBackend("model_b", "llama", client)

    reply = backend.send_message("질문")

    assert reply.is_fallback is True
    assert reply.text == FALLBACK_TEXT


def test_build_messages_keeps_recent_history_only():
    history = [{"role": "user", "content": str(i)} for i in range(15)] + [{"role": "system", "content": "x"}]
    messages = TutorBackend.build_messages("q", history, preferences={"level": "beginner"})
    assert len(messages) == 1 + 9 + 1
    assert "level=beginner" in messages[0]["content"]


def _http(*payloads):
    http = Mock()
    responses = []
    for p in payloads:
        resp = Mock()
        resp.json.return_value = p
        resp.raise_for_status.return_value = None
        responses.append(resp)
    http.post.side_effect = responses
    return http


def test_run_without_test_cases_splits_runtime_errors():
    http = _http({"success": False, "stdout": "", "stderr": "Exception in thread main\n  at Main.main", "stage": "run"})
    result = CodeRunner(url="http://sandbox", timeout=1, http=http).run("class Main {}")

    assert result.success is False
    assert result.runtime_errors == ["Exception in thread main", "  at Main.main"]
    assert result.compiler_errors == []
    http.post.assert_called_once()


def test_run_with_test_cases_compares_normalized_output():
    http = _http(
        {"success": True, "stdout": "3 \r\n", "execution_time_ms": 10},
        {"success": True, "stdout": "5\n", "execution_time_ms": 12},
    )
    result = CodeRunner(url="http://sandbox", timeout=1, http=http).run(
        "code", test_cases=[{"input": "1 2", "expected_output": "3"}, {"input": "2 2", "expected_output": "4"}],
    )

    assert [t["passed"] for t in result.test_results] == [True, False]
    assert result.success is False
    assert result.execution_time_ms == 22


def test_run_stops_after_compile_error():
    http = _http({"success": False, "stderr": "Main.java:1: error", "stage": "compile"})
    result = CodeRunner(url="http://sandbox", timeout=1, http=http).run(
        "code", test_cases=[{"expected_output": "1"}, {"expected_output": "2"}],
    )

    assert result.compiler_errors == ["Main.java:1: error"]
    assert len(result.test_results) == 1
    assert http.post.call_count == 1


def test_sandbox_failure_raises_502():
    http = Mock()
    http.post.side_effect = requests.ConnectionError("refused")
    with pytest.raises(SandboxUnavailable) as exc:
        CodeRunner(url="http://sandbox", timeout=1, http=http).run("code")
    assert exc.value.status_code == 502


def test_normalize_output():
    assert normalize_output("a  \r\nb\n\n") == "a\nb"
    assert normalize_output(None) == ""
