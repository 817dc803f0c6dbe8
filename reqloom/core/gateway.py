"""Inference gateway: LLM proxy with retry/metrics plus a bounded JSON call.

Two layers:

- ``LLMGateway`` wraps any LlamaIndex LLM as a CustomLLM so every
  completion gets logging, token/cost metrics and exponential-backoff
  retry on provider rate limits and transient network errors.
- ``InferenceGateway`` is what the orchestrator talks to. ``infer()``
  runs one completion under a hard timeout and returns the JSON object
  found in the reply, raising ``InferenceError``/``InferenceTimeout``
  on anything else.
"""

import logging
import threading
import time
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from dataclasses import dataclass, field
from typing import Any, Dict, Generator, Optional

import backoff
from llama_index.core.base.llms.types import CompletionResponse, LLMMetadata
from llama_index.core.bridge.pydantic import PrivateAttr
from llama_index.core.llms import CustomLLM

from .constants import INFERENCE_TIMEOUT_SECONDS
from .exceptions import InferenceError, InferenceTimeout
from .utils import extract_json

logger = logging.getLogger(__name__)

# ── Cost table (USD per 1M tokens) ────────────────────────────────────
_COST_PER_1M_TOKENS = {
    # OpenAI
    "gpt-4.1": {"input": 2.00, "output": 8.00},
    "gpt-4o": {"input": 2.50, "output": 10.00},
    "gpt-4o-mini": {"input": 0.15, "output": 0.60},
    # Gemini
    "gemini-2.0-flash": {"input": 0.10, "output": 0.40},
    "gemini-2.5-flash": {"input": 0.30, "output": 2.50},
    "gemini-1.5-pro": {"input": 1.25, "output": 5.00},
    # Local (Ollama), no cost
    "_default": {"input": 0.0, "output": 0.0},
}


def _get_retryable_exceptions():
    """Lazy-load retryable exception classes.

    Handles missing provider packages gracefully.
    """
    exceptions = [TimeoutError, ConnectionError]
    try:
        from openai import RateLimitError as OpenAIRateLimit
        from openai import APITimeoutError as OpenAITimeout
        exceptions.extend([OpenAIRateLimit, OpenAITimeout])
    except ImportError:
        pass
    try:
        import httpx
        exceptions.append(httpx.TransportError)
    except ImportError:
        pass
    return tuple(exceptions)


# ── Metrics ────────────────────────────────────────────────────────────

@dataclass
class LLMMetrics:
    """Thread-safe in-memory LLM usage metrics."""

    total_calls: int = 0
    total_tokens_in: int = 0
    total_tokens_out: int = 0
    total_latency_ms: float = 0.0
    errors: int = 0
    retries: int = 0
    timeouts: int = 0
    calls_by_purpose: dict = field(default_factory=lambda: defaultdict(int))
    estimated_cost_usd: float = 0.0

    def to_dict(self) -> dict:
        return {
            "total_calls": self.total_calls,
            "total_tokens_in": self.total_tokens_in,
            "total_tokens_out": self.total_tokens_out,
            "total_latency_ms": round(self.total_latency_ms, 1),
            "avg_latency_ms": round(self.total_latency_ms / max(self.total_calls, 1), 1),
            "errors": self.errors,
            "retries": self.retries,
            "timeouts": self.timeouts,
            "calls_by_purpose": dict(self.calls_by_purpose),
            "estimated_cost_usd": round(self.estimated_cost_usd, 4),
        }


# ── Gateway ────────────────────────────────────────────────────────────

class LLMGateway(CustomLLM):
    """Transparent LLM proxy with observability and retry.

    Usage:
        from reqloom.core.gateway import LLMGateway
        llm = LLMGateway(raw_llm)
        llm.complete(prompt, gateway_purpose="analysis")
    """

    _llm: Any = PrivateAttr()
    _metrics: LLMMetrics = PrivateAttr()
    _lock: Any = PrivateAttr()
    _retryable_exceptions: Optional[tuple] = PrivateAttr(default=None)

    def __init__(self, llm: Any, **kwargs):
        super().__init__(**kwargs)
        self._llm = llm
        self._metrics = LLMMetrics()
        self._lock = threading.Lock()
        logger.info(
            f"LLMGateway initialized, wrapping {type(llm).__name__}"
            f" (model={getattr(llm, 'model', 'unknown')})"
        )

    @property
    def metadata(self) -> LLMMetadata:
        """Delegate metadata to the wrapped LLM."""
        return self._llm.metadata

    @property
    def model(self) -> str:
        return getattr(self._llm, "model", "unknown")

    # ── Core methods ──────────────────────────────────────────────────

    def complete(
        self, prompt: str, formatted: bool = False, **kwargs: Any
    ) -> CompletionResponse:
        """Intercept completion calls with logging, retry, and metrics."""
        purpose = kwargs.pop("gateway_purpose", "general")
        t0 = time.time()

        try:
            response = self._retry_call(
                self._llm.complete, prompt, formatted=formatted, **kwargs
            )
        except Exception:
            self._record_error(purpose)
            raise

        latency_ms = (time.time() - t0) * 1000
        self._record_success(prompt, response, latency_ms, purpose)
        return response

    def stream_complete(
        self, prompt: str, formatted: bool = False, **kwargs: Any
    ) -> Generator[CompletionResponse, None, None]:
        """Intercept streaming calls. Metrics recorded after stream completes."""
        purpose = kwargs.pop("gateway_purpose", "general")
        t0 = time.time()
        collected_text = []

        try:
            for token in self._llm.stream_complete(prompt, formatted=formatted, **kwargs):
                if token.delta:
                    collected_text.append(token.delta)
                yield token
        except Exception:
            self._record_error(purpose)
            raise

        latency_ms = (time.time() - t0) * 1000
        synthetic = CompletionResponse(text="".join(collected_text))
        self._record_success(prompt, synthetic, latency_ms, purpose)

    # ── Retry ─────────────────────────────────────────────────────────

    def _retry_call(self, fn, *args, **kwargs):
        """Execute fn with exponential backoff on retryable errors."""
        if self._retryable_exceptions is None:
            self._retryable_exceptions = _get_retryable_exceptions()

        @backoff.on_exception(
            backoff.expo,
            self._retryable_exceptions,
            max_tries=3,
            max_time=60,
            on_backoff=self._on_retry,
        )
        def _do_call():
            return fn(*args, **kwargs)

        return _do_call()

    def _on_retry(self, details: dict):
        """Log retry events and increment counter."""
        with self._lock:
            self._metrics.retries += 1
        logger.warning(
            f"LLMGateway retry {details['tries']}/3 "
            f"after {details['wait']:.1f}s: {type(details.get('exception')).__name__}"
        )

    # ── Metrics recording ─────────────────────────────────────────────

    def _record_success(
        self,
        prompt: str,
        response: CompletionResponse,
        latency_ms: float,
        purpose: str,
    ):
        tokens_in = len(prompt.split()) * 1.3  # rough estimate
        tokens_out = len(response.text.split()) * 1.3 if response.text else 0

        # Prefer provider-reported usage when present
        raw = getattr(response, "raw", None) or {}
        usage = raw.get("usage") if isinstance(raw, dict) else getattr(raw, "usage", None)
        if usage:
            tokens_in = getattr(usage, "prompt_tokens", None) or tokens_in
            tokens_out = getattr(usage, "completion_tokens", None) or tokens_out

        cost = self._estimate_cost(int(tokens_in), int(tokens_out))

        with self._lock:
            m = self._metrics
            m.total_calls += 1
            m.total_tokens_in += int(tokens_in)
            m.total_tokens_out += int(tokens_out)
            m.total_latency_ms += latency_ms
            m.estimated_cost_usd += cost
            m.calls_by_purpose[purpose] += 1

        logger.debug(
            f"LLM call: purpose={purpose} tokens_in={int(tokens_in)} "
            f"tokens_out={int(tokens_out)} latency={latency_ms:.0f}ms "
            f"model={self.model}"
        )

    def _record_error(self, purpose: str):
        with self._lock:
            self._metrics.errors += 1
            self._metrics.calls_by_purpose[f"{purpose}_error"] += 1
        logger.error(f"LLM call failed: purpose={purpose} model={self.model}")

    def record_timeout(self, purpose: str):
        with self._lock:
            self._metrics.timeouts += 1
            self._metrics.calls_by_purpose[f"{purpose}_timeout"] += 1

    def _estimate_cost(self, tokens_in: int, tokens_out: int) -> float:
        costs = _COST_PER_1M_TOKENS.get(self.model, _COST_PER_1M_TOKENS["_default"])
        return (tokens_in * costs["input"] + tokens_out * costs["output"]) / 1_000_000

    # ── Public metrics API ────────────────────────────────────────────

    def get_metrics(self) -> dict:
        """Return a thread-safe snapshot of current metrics."""
        with self._lock:
            result = self._metrics.to_dict()
            result["model"] = self.model
            return result

    def reset_metrics(self):
        """Zero all metric counters."""
        with self._lock:
            self._metrics = LLMMetrics()
        logger.info("LLMGateway metrics reset")

    @classmethod
    def class_name(cls) -> str:
        return "LLMGateway"


class InferenceGateway:
    """Bounded, JSON-returning inference call used by the orchestrator.

    ``infer()`` blocks for at most ``timeout`` seconds. A call that
    overruns is abandoned (the provider request is not cancelled) and
    reported as ``InferenceTimeout``.

    The timeout is measured from submission, so time spent waiting for a
    free worker counts against it. Abandoned calls keep their worker until
    the provider returns; size ``max_workers`` above the number of calls
    expected to run at once.
    """

    def __init__(
        self,
        llm: Any,
        timeout_seconds: float = INFERENCE_TIMEOUT_SECONDS,
        max_workers: int = 4,
    ):
        self._llm = llm
        self.timeout_seconds = timeout_seconds
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="reqloom-infer",
        )
        self.max_workers = max_workers

    @property
    def llm(self) -> Any:
        return self._llm

    def _complete(self, prompt: str, purpose: str) -> str:
        if isinstance(self._llm, LLMGateway):
            response = self._llm.complete(prompt, gateway_purpose=purpose)
        else:
            response = self._llm.complete(prompt)
        return getattr(response, "text", None) or str(response)

    def complete_text(
        self,
        prompt: str,
        timeout: Optional[float] = None,
        purpose: str = "analysis",
    ) -> str:
        """Run one completion under the timeout and return raw text.

        The timeout includes any wait for a free worker.
        """
        limit = timeout or self.timeout_seconds
        future = self._executor.submit(self._complete, prompt, purpose)
        try:
            return future.result(timeout=limit)
        except FutureTimeout as e:
            if isinstance(self._llm, LLMGateway):
                self._llm.record_timeout(purpose)
            logger.warning(f"Inference timed out after {limit}s (purpose={purpose})")
            raise InferenceTimeout(f"Inference timed out after {limit}s") from e
        except Exception as e:
            logger.error(f"Inference failed (purpose={purpose}): {e}")
            raise InferenceError(f"Inference provider error: {e}") from e

    def infer(
        self,
        prompt: str,
        settings: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
        purpose: str = "analysis",
    ) -> Dict[str, Any]:
        """Run one completion and return the JSON object in its reply.

        ``settings`` may carry ``timeout_seconds`` to tighten the bound for
        a single call; an explicit ``timeout`` argument wins over both.

        Raises:
            InferenceTimeout: the call did not finish in time.
            InferenceError: provider failure or no parseable JSON object.
        """
        settings = settings or {}
        raw = self.complete_text(
            prompt,
            timeout=timeout or settings.get("timeout_seconds"),
            purpose=purpose,
        )
        try:
            return extract_json(raw)
        except ValueError as e:
            logger.warning(f"Unparseable inference output (purpose={purpose}): {e}")
            raise InferenceError(str(e), raw_output=raw[:500]) from e

    def get_metrics(self) -> dict:
        if isinstance(self._llm, LLMGateway):
            return self._llm.get_metrics()
        return {}

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False)
