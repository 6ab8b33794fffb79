"""
Bedrock Agent Client
════════════════════

The conversational agent is treated as a black box: prompt (plus optional
file references) in, completion text out. Used by the chat path of the
queue worker and, optionally, by the insight generator.

Retry policy
────────────
  - Retryable:     DependencyFailedException, ThrottlingException, and any
                   error whose message mentions "timeout" or "Try the
                   request again"
  - Non-retryable: everything else, raised immediately
  - 3 attempts; before attempt n+1 sleep base × 2**n × (0.5 + random × 0.5)
    (1s base: ~0.5–1s, ~1–2s)

boto3's bedrock-agent-runtime client is synchronous and streams the
completion as an event stream; the call runs in the default executor.
"""

from __future__ import annotations

import asyncio
import logging
import random
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar
from urllib.parse import urlparse

import boto3
from botocore.exceptions import ClientError

from aseekbot.core.config import Settings, settings as default_settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

_RETRYABLE_CODES = frozenset({"DependencyFailedException", "ThrottlingException"})
_RETRYABLE_MESSAGES = ("timeout", "Try the request again")


# ---------------------------------------------------------------------------
# Shared data types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class AgentFile:
    name:     str
    s3_url:   str
    use_case: str | None = None


@dataclass(frozen=True)
class AgentCompletion:
    session_id: str
    completion: str


class AgentClient(ABC):
    @abstractmethod
    async def invoke(
        self,
        prompt: str,
        session_id: str,
        files: list[AgentFile] | None = None,
    ) -> AgentCompletion:
        """Send one prompt and return the full completion text."""


# ---------------------------------------------------------------------------
# Retry
# ---------------------------------------------------------------------------

def is_retryable(exc: Exception) -> bool:
    if isinstance(exc, ClientError):
        if exc.response.get("Error", {}).get("Code") in _RETRYABLE_CODES:
            return True
    message = str(exc)
    return any(marker in message for marker in _RETRYABLE_MESSAGES) or any(
        code in message for code in _RETRYABLE_CODES
    )


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    base_delay: float = 1.0,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """Run ``operation`` until it succeeds, fails non-retryably, or attempts run out."""
    for attempt in range(max_attempts):
        try:
            return await operation()
        except Exception as exc:
            if not is_retryable(exc) or attempt == max_attempts - 1:
                raise
            delay = base_delay * (2 ** attempt) * (0.5 + random.random() * 0.5)
            logger.warning(
                "Agent call failed, retrying | attempt=%d/%d delay=%.2fs error=%s",
                attempt + 1, max_attempts, delay, exc,
            )
            await sleep(delay)
    raise RuntimeError("retry_with_backoff called with max_attempts < 1")


# ---------------------------------------------------------------------------
# Request shaping
# ---------------------------------------------------------------------------

def to_s3_uri(url: str) -> str:
    """https://<bucket>.s3.<region>.amazonaws.com/<key> → s3://<bucket>/<key>."""
    if not url.startswith("https://"):
        return url
    parsed = urlparse(url)
    bucket = (parsed.hostname or "").split(".", 1)[0]
    return f"s3://{bucket}/{parsed.path.lstrip('/')}"


def normalize_use_case(use_case: str | None) -> str:
    if not use_case:
        return "CHAT"
    if use_case.lower() == "bid-analysis":
        return "CODE_INTERPRETER"
    return use_case


def build_session_state(files: list[AgentFile]) -> dict:
    return {
        "files": [
            {
                "name": f.name,
                "source": {"sourceType": "S3", "s3Location": {"uri": to_s3_uri(f.s3_url)}},
                "useCase": normalize_use_case(f.use_case),
            }
            for f in files
        ]
    }


# ---------------------------------------------------------------------------
# Bedrock implementation
# ---------------------------------------------------------------------------

class BedrockAgentClient(AgentClient):

    def __init__(
        self,
        config: Settings | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._cfg = config or default_settings
        self._sleep = sleep
        self._client = boto3.client("bedrock-agent-runtime", **self._cfg.aws_client_kwargs())

    async def invoke(
        self,
        prompt: str,
        session_id: str,
        files: list[AgentFile] | None = None,
    ) -> AgentCompletion:
        request: dict[str, Any] = {
            "agentId":      self._cfg.bedrock_agent_id,
            "agentAliasId": self._cfg.bedrock_agent_alias_id,
            "sessionId":    session_id,
            "inputText":    prompt,
        }
        if files:
            request["sessionState"] = build_session_state(files)

        loop = asyncio.get_running_loop()

        async def _call() -> str:
            return await loop.run_in_executor(None, self._invoke_sync, request)

        completion = await retry_with_backoff(
            _call,
            max_attempts=self._cfg.agent_max_retries,
            base_delay=self._cfg.agent_base_delay,
            sleep=self._sleep,
        )
        logger.info("Agent completion | session=%s chars=%d", session_id, len(completion))
        return AgentCompletion(session_id=session_id, completion=completion)

    def _invoke_sync(self, request: dict[str, Any]) -> str:
        response = self._client.invoke_agent(**request)
        parts: list[str] = []
        for event in response.get("completion", []):
            chunk = event.get("chunk")
            if chunk and "bytes" in chunk:
                parts.append(chunk["bytes"].decode("utf-8"))
        return "".join(parts)
