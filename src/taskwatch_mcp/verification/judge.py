"""Clients for the external vision-capable judge model."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Sequence

import openai

from ..errors import JudgeRequestFailed, JudgeResponseInvalid, JudgeTimeout
from .sampling import FrameSample

logger = logging.getLogger(__name__)

_VERDICT_SHAPE = """{
  "verified": true or false,
  "confidence": 0-100,
  "time_on_task_minutes": number,
  "explanation": "detailed explanation",
  "issues": ["issue 1", "issue 2"],
  "timeline": [
    {"timestamp": "MM:SS", "activity": "description"}
  ]
}"""


@dataclass(frozen=True, slots=True)
class JudgeRequest:
    task_title: str
    task_description: str | None
    required_minutes: int
    video_duration_seconds: float
    sample_interval_seconds: float
    frames: Sequence[FrameSample] = field(default_factory=tuple)

    @property
    def video_minutes(self) -> float:
        return self.video_duration_seconds / 60


@dataclass(frozen=True, slots=True)
class JudgeReply:
    text: str
    model: str | None = None


def build_prompt(request: JudgeRequest) -> str:
    """Render the instruction text that precedes the frames."""

    description = (request.task_description or "").strip() or "N/A"
    return (
        "You are verifying a productivity task completion.\n\n"
        "Task Details:\n"
        f"- Title: {request.task_title}\n"
        f"- Description: {description}\n"
        f"- Required Duration: {request.required_minutes} minutes\n"
        f"- Video Duration: {request.video_minutes:.1f} minutes\n\n"
        f"Analyze the provided video frames ({len(request.frames)} frames, one every "
        f"{request.sample_interval_seconds:.0f} seconds; each is labelled with its offset) "
        "and determine:\n"
        "1. Was the user engaged in the described task?\n"
        "2. For how many minutes of the video was the task being performed?\n"
        "3. Did they meet the minimum duration requirement?\n"
        "4. Were there significant distractions or off-task behavior?\n\n"
        "Respond with a single JSON object and nothing else:\n"
        f"{_VERDICT_SHAPE}"
    )


class JudgeClient:
    """Interface for judge backends."""

    async def evaluate(self, request: JudgeRequest, *, api_key: str) -> JudgeReply:  # pragma: no cover - interface
        raise NotImplementedError


class OpenAIJudgeClient(JudgeClient):
    """Chat-completions judge that tries each configured model in turn."""

    def __init__(
        self,
        models: Iterable[str],
        *,
        base_url: str | None = None,
        timeout: float = 120.0,
        max_tokens: int = 2048,
        client_factory: Any | None = None,
    ) -> None:
        self.models = tuple(model for model in models if model)
        if not self.models:
            raise ValueError("At least one judge model must be configured")
        self.base_url = base_url
        self.timeout = timeout
        self.max_tokens = max_tokens
        self._client_factory = client_factory
        self._client: Any | None = None
        self._api_key: str | None = None

    def _ensure_client(self, api_key: str) -> Any:
        if self._client is not None and self._api_key == api_key:
            return self._client
        kwargs: dict[str, Any] = {"api_key": api_key, "timeout": self.timeout}
        if self.base_url:
            kwargs["base_url"] = self.base_url
        if self._client_factory is not None:
            client = self._client_factory(**kwargs)
        else:
            client = openai.AsyncOpenAI(**kwargs)
        self._client = client
        self._api_key = api_key
        return client

    @staticmethod
    def build_messages(request: JudgeRequest) -> list[dict[str, Any]]:
        content: list[dict[str, Any]] = [{"type": "text", "text": build_prompt(request)}]
        for frame in request.frames:
            content.append({"type": "text", "text": f"Frame at {frame.timestamp_offset:.0f}s"})
            content.append(
                {
                    "type": "image_url",
                    "image_url": {
                        "url": f"data:{frame.media_type};base64,{frame.image_payload}",
                        "detail": "low",
                    },
                }
            )
        return [{"role": "user", "content": content}]

    async def evaluate(self, request: JudgeRequest, *, api_key: str) -> JudgeReply:
        client = self._ensure_client(api_key)
        messages = self.build_messages(request)
        failures: list[str] = []
        for model in self.models:
            try:
                logger.debug("Invoking judge model %s with %d frames", model, len(request.frames))
                response = await client.chat.completions.create(
                    model=model,
                    messages=messages,
                    max_tokens=self.max_tokens,
                    response_format={"type": "json_object"},
                )
            except openai.APITimeoutError as exc:
                raise JudgeTimeout(f"Judge model {model} timed out after {self.timeout:.0f}s") from exc
            except openai.AuthenticationError as exc:
                raise JudgeRequestFailed(f"Judge rejected the API key: {exc}") from exc
            except (openai.APIStatusError, openai.APIConnectionError) as exc:
                logger.warning("Judge model %s failed: %s", model, exc)
                failures.append(f"{model}: {exc}")
                continue

            text = self._extract_text(response)
            if not text:
                raise JudgeResponseInvalid(f"Judge model {model} returned no content", raw=text)
            return JudgeReply(text=text, model=model)

        raise JudgeRequestFailed("All judge models failed: " + "; ".join(failures))

    @staticmethod
    def _extract_text(response: Any) -> str:
        choices = getattr(response, "choices", None) or []
        for choice in choices:
            message = getattr(choice, "message", None)
            content = getattr(message, "content", None)
            if isinstance(content, str) and content.strip():
                return content.strip()
        return ""


class FakeJudgeClient(JudgeClient):
    """Test double returning queued replies (or raising queued exceptions)."""

    def __init__(self, replies: Iterable[Any] | None = None, *, delay: float = 0.0, model: str = "fake-judge") -> None:
        self._replies = list(replies or [])
        self.delay = delay
        self.model = model
        self.requests: list[JudgeRequest] = []

    def queue(self, reply: Any) -> None:
        self._replies.append(reply)

    async def evaluate(self, request: JudgeRequest, *, api_key: str) -> JudgeReply:
        self.requests.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        if not self._replies:
            raise JudgeRequestFailed("FakeJudgeClient has no queued replies")
        reply = self._replies.pop(0)
        if isinstance(reply, BaseException):
            raise reply
        if isinstance(reply, JudgeReply):
            return reply
        return JudgeReply(text=str(reply), model=self.model)


__all__ = [
    "FakeJudgeClient",
    "JudgeClient",
    "JudgeReply",
    "JudgeRequest",
    "OpenAIJudgeClient",
    "build_prompt",
]
