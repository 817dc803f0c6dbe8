"""Unit tests for the inference gateway (timeouts, errors, metrics, retry)."""

import threading
from unittest.mock import MagicMock

import pytest
from llama_index.core.base.llms.types import CompletionResponse

from reqloom.core.exceptions import InferenceError, InferenceTimeout
from reqloom.core.gateway import InferenceGateway, LLMGateway


def _raw_llm(*effects):
    raw = MagicMock()
    raw.model = "gpt-4o-mini"
    raw.complete.side_effect = list(effects)
    return raw


class TestInferenceGateway:

    def test_returns_parsed_object(self, make_llm):
        gateway = InferenceGateway(make_llm('```json\n{"projectTitle": "Shop"}\n```'))
        assert gateway.infer("prompt") == {"projectTitle": "Shop"}

    def test_unparseable_output(self, make_llm):
        gateway = InferenceGateway(make_llm("I cannot help with that."))
        with pytest.raises(InferenceError) as info:
            gateway.infer("prompt")
        assert info.value.details["raw_output"] == "I cannot help with that."

    def test_provider_error(self, make_llm):
        gateway = InferenceGateway(make_llm(RuntimeError("quota")))
        with pytest.raises(InferenceError, match="quota"):
            gateway.complete_text("prompt")

    def test_timeout(self):
        release = threading.Event()
        slow = MagicMock()
        slow.complete.side_effect = lambda prompt: release.wait(5) and CompletionResponse(text="{}")
        gateway = InferenceGateway(slow, timeout_seconds=0.05)
        try:
            with pytest.raises(InferenceTimeout):
                gateway.infer("prompt")
        finally:
            release.set()
            gateway.shutdown()

    def test_abandoned_call_leaves_spare_worker(self):
        release = threading.Event()
        replies = iter([lambda: release.wait(5) and CompletionResponse(text="{}"),
                        lambda: CompletionResponse(text='{"ok": true}')])
        llm = MagicMock()
        llm.complete.side_effect = lambda prompt: next(replies)()
        gateway = InferenceGateway(llm, timeout_seconds=0.05, max_workers=2)
        try:
            with pytest.raises(InferenceTimeout):
                gateway.infer("first")
            assert gateway.infer("second", timeout=2) == {"ok": True}
        finally:
            release.set()
            gateway.shutdown()

    def test_timeout_error_is_an_inference_error(self):
        assert issubclass(InferenceTimeout, InferenceError)
        assert InferenceTimeout.status_code == 504


class TestLLMGateway:

    def test_records_metrics_by_purpose(self):
        llm = LLMGateway(_raw_llm(CompletionResponse(text='{"ok": true}')))
        gateway = InferenceGateway(llm)

        assert gateway.infer("analyze this", purpose="analysis") == {"ok": True}

        metrics = gateway.get_metrics()
        assert metrics["total_calls"] == 1
        assert metrics["calls_by_purpose"] == {"analysis": 1}
        assert metrics["model"] == "gpt-4o-mini"

    def test_retries_transient_errors(self, monkeypatch):
        monkeypatch.setattr("time.sleep", lambda s: None)
        raw = _raw_llm(ConnectionError("reset"), CompletionResponse(text="done"))
        llm = LLMGateway(raw)

        response = llm.complete("prompt", gateway_purpose="chat")

        assert response.text == "done"
        assert raw.complete.call_count == 2
        assert llm.get_metrics()["retries"] == 1

    def test_non_retryable_error_counts(self):
        llm = LLMGateway(_raw_llm(ValueError("bad request")))

        with pytest.raises(ValueError):
            llm.complete("prompt", gateway_purpose="chat")

        metrics = llm.get_metrics()
        assert metrics["errors"] == 1
        assert metrics["calls_by_purpose"] == {"chat_error": 1}
