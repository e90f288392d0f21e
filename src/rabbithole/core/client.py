"""completion provider clients.

every client takes the linearised branch history plus the new prompt and
returns a reply message together with a short header for the node.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import re
import traceback
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol, Sequence, runtime_checkable

import httpx
from claude_agent_sdk import (
    ClaudeAgentOptions,
    ClaudeSDKClient,
)

from .history import HistoryLine

logger = logging.getLogger(__name__)


# --- configuration ---

FALLBACK_HEADER = "New rabbithole"
HEADER_PREVIEW_LENGTH = 48
DEFAULT_TIMEOUT = 90.0  # seconds


@dataclass(frozen=True)
class CompletionResult:
    """reply from a completion provider."""

    header: str
    message: str


class CompletionError(RuntimeError):
    """raised when a completion request fails or comes back malformed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


def header_from_prompt(prompt: str) -> str:
    """short header derived from the prompt itself."""
    collapsed = re.sub(r"\s+", " ", (prompt or "").strip()[:HEADER_PREVIEW_LENGTH]).strip()
    return collapsed or FALLBACK_HEADER


def stub_completion(prompt: str) -> CompletionResult:
    """canned reply used by the mock client and the stub chat route."""
    return CompletionResult(
        header=header_from_prompt(prompt),
        message=(
            "This is a stubbed response. Replace /api/chat with a real LLM call.\n\n"
            + (prompt or "Ask me anything to start.")
        ),
    )


def parse_completion_payload(data: object) -> CompletionResult:
    """validate a {header, message} payload."""
    if (
        not isinstance(data, dict)
        or not isinstance(data.get("header"), str)
        or not isinstance(data.get("message"), str)
    ):
        raise CompletionError("Malformed response from the model.")
    return CompletionResult(header=data["header"], message=data["message"])


@runtime_checkable
class ClientProtocol(Protocol):
    """protocol for completion clients (real or mock)."""

    async def complete(self, history: Sequence[HistoryLine], prompt: str) -> CompletionResult:
        """send history + prompt and return the reply."""
        ...


class MockClient:
    """mock client for testing without api calls."""

    def __init__(
        self,
        responses: Optional[dict[str, CompletionResult]] = None,
        delay: float = 0.5,
        error: Optional[str] = None,
    ):
        """init with optional response mapping.

        responses: dict mapping prompt substrings to results.
        if prompt contains key (case-insensitive), return value.
        delay: simulated API delay in seconds.
        error: if set, every call raises CompletionError with this text.
        """
        self.responses = responses or {}
        self.calls: list[tuple[list[HistoryLine], str]] = []
        self.delay = delay
        self.error = error

    async def __aenter__(self) -> MockClient:
        return self

    async def __aexit__(self, *args) -> None:
        pass

    async def complete(self, history: Sequence[HistoryLine], prompt: str) -> CompletionResult:
        self.calls.append((list(history), prompt))

        if self.delay:
            await asyncio.sleep(self.delay)

        if self.error is not None:
            raise CompletionError(self.error)

        prompt_lower = prompt.lower()
        for key, result in self.responses.items():
            if key.lower() in prompt_lower:
                return result

        return stub_completion(prompt)


class HttpChatClient:
    """client for an http chat endpoint speaking {history, prompt} -> {header, message}."""

    def __init__(
        self,
        url: str,
        timeout: float = DEFAULT_TIMEOUT,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.url = url
        self.timeout = timeout
        self._client = http_client

    async def complete(self, history: Sequence[HistoryLine], prompt: str) -> CompletionResult:
        payload = {"history": [line.to_dict() for line in history], "prompt": prompt}
        try:
            if self._client is not None:
                response = await self._client.post(self.url, json=payload, timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(self.url, json=payload)
        except httpx.HTTPError as e:
            raise CompletionError(f"LLM request failed: {e}") from e

        data: object = None
        if response.content:
            try:
                data = response.json()
            except ValueError:
                data = None

        if response.is_error:
            error = data.get("error") if isinstance(data, dict) else None
            raise CompletionError(
                error if isinstance(error, str) and error else "LLM request failed.",
                status_code=response.status_code,
            )

        return parse_completion_payload(data)


class ClaudeClient:
    """async client for claude using claude-agent-sdk.

    creates a fresh connection per query to avoid state conflicts.
    """

    def __init__(self, cwd: Optional[Path] = None, model: str = "opus"):
        self.cwd = cwd or Path.cwd()
        self.model = model

    async def __aenter__(self) -> ClaudeClient:
        return self

    async def __aexit__(self, *args) -> None:
        pass

    def build_prompt(self, history: Sequence[HistoryLine], prompt: str) -> str:
        """render history and prompt into a single instruction."""
        transcript = "\n\n".join(f"[{line.role}]\n{line.text}" for line in history)
        return f"""here is the conversation so far:

{transcript or "(no earlier messages)"}

---

user: {prompt}

reply to the user. answer with a json object only, of the form
{{"header": "<three to six word title for this thread>", "message": "<your reply in markdown>"}}"""

    def parse_reply(self, text: str, prompt: str) -> CompletionResult:
        """pull {header, message} out of the reply, tolerating plain text."""
        body = text.strip()
        fence = re.match(r"^```(?:json)?\s*(.*?)\s*```$", body, re.DOTALL)
        if fence:
            body = fence.group(1)
        try:
            return parse_completion_payload(json.loads(body))
        except (json.JSONDecodeError, CompletionError):
            logger.debug("claude reply was not a json payload, using raw text")
            return CompletionResult(header=header_from_prompt(prompt), message=text)

    async def complete(self, history: Sequence[HistoryLine], prompt: str) -> CompletionResult:
        # clear API key so SDK uses subscription auth, not API credits
        os.environ.pop("ANTHROPIC_API_KEY", None)

        options = ClaudeAgentOptions(
            cwd=str(self.cwd),
            model=self.model,
            tools=[],
            allowed_tools=[],
        )
        client: Optional[ClaudeSDKClient] = None

        try:
            client = ClaudeSDKClient(options)
            await client.connect()
            await client.query(self.build_prompt(history, prompt))

            text_parts: list[str] = []
            async for event in client.receive_response():
                if hasattr(event, "message") and hasattr(event.message, "content"):
                    for block in event.message.content:
                        if hasattr(block, "text"):
                            text_parts.append(block.text)
                elif hasattr(event, "content") and isinstance(event.content, list):
                    for block in event.content:
                        if hasattr(block, "text"):
                            text_parts.append(block.text)

            logger.debug(f"collected {len(text_parts)} text parts")
            if not text_parts:
                raise CompletionError("Malformed response from the model.")
            return self.parse_reply("\n".join(text_parts), prompt)

        except CompletionError:
            raise
        except Exception as e:
            logger.debug(traceback.format_exc())
            raise CompletionError(f"claude api error: {e}") from e

        finally:
            if client:
                try:
                    await client.disconnect()
                except Exception:
                    logger.debug("ignoring error during claude disconnect", exc_info=True)
