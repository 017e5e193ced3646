"""
Model gateway: the only code that talks to the chat-completion service.

Uses OpenAI when OPENAI_API_KEY is set, otherwise the Hugging Face router's
OpenAI-compatible endpoint when HF_API_KEY is set. Translates internal chat
turns and tool definitions into the function-calling wire format and back.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Sequence

import httpx
import openai
from openai import OpenAI

from lms_agent.core.config import (
    HF_API_KEY,
    HF_CHAT_URL,
    HF_LLM_MODEL,
    LLM_API_TIMEOUT,
    LLM_MAX_RETRIES,
    LLM_MAX_TOKENS,
    LLM_TEMPERATURE,
    OPENAI_API_KEY,
    OPENAI_LLM_MODEL,
)
from lms_agent.core.errors import InvalidArgumentsError, ModelUnavailableError, NotConfiguredError

if TYPE_CHECKING:
    from lms_agent.agent.tools import ToolDefinition

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChatTurn:
    role: str  # "user" | "assistant" | "system"
    content: str


@dataclass(frozen=True)
class ToolCall:
    id: str
    name: str
    arguments: dict[str, Any]


@dataclass(frozen=True)
class ChatResponse:
    content: str
    model_version: str
    tool_calls: list[ToolCall] = field(default_factory=list)


def to_function_declarations(tools: Sequence["ToolDefinition"]) -> list[dict[str, Any]]:
    """Internal tool definitions -> OpenAI function-calling format."""
    return [
        {
            "type": "function",
            "function": {
                "name": t.name,
                "description": t.description,
                "parameters": t.input_schema,
            },
        }
        for t in tools
    ]


def build_payload(
    system_prompt: str,
    messages: Sequence[ChatTurn],
    tools: Sequence["ToolDefinition"] | None,
    model: str,
) -> dict[str, Any]:
    """Request body shared by both providers. Tool keys only appear when tools are offered."""
    payload: dict[str, Any] = {
        "model": model,
        "messages": [{"role": "system", "content": system_prompt}]
        + [{"role": m.role, "content": m.content} for m in messages],
        "temperature": LLM_TEMPERATURE,
        "max_tokens": LLM_MAX_TOKENS,
    }
    if tools:
        payload["tools"] = to_function_declarations(tools)
        payload["tool_choice"] = "auto"
    return payload


def parse_tool_arguments(name: str, raw: Any) -> dict[str, Any]:
    """Decode a function-call argument payload; anything but a JSON object is a hard failure."""
    if isinstance(raw, dict):
        return raw
    try:
        parsed = json.loads(raw)
    except (TypeError, json.JSONDecodeError) as e:
        raise InvalidArgumentsError(f"The model sent malformed arguments for tool {name!r}.") from e
    if not isinstance(parsed, dict):
        raise InvalidArgumentsError(f"The model sent non-object arguments for tool {name!r}.")
    return parsed


def _call_openai(payload: dict[str, Any]) -> ChatResponse:
    client = OpenAI(api_key=OPENAI_API_KEY, timeout=LLM_API_TIMEOUT, max_retries=LLM_MAX_RETRIES)
    try:
        response = client.chat.completions.create(**payload)
    except openai.APITimeoutError as e:
        logger.warning("[llm:openai] request timed out after %.0fs", LLM_API_TIMEOUT)
        raise ModelUnavailableError("The language model timed out. Please try again.") from e
    except openai.OpenAIError as e:
        logger.warning("[llm:openai] request failed: %s", e)
        raise ModelUnavailableError("The language model is currently unavailable.") from e

    msg = response.choices[0].message if response.choices else None
    if msg is None:
        raise ModelUnavailableError("The language model returned an empty response.")
    tool_calls = [
        ToolCall(
            id=tc.id or "",
            name=tc.function.name,
            arguments=parse_tool_arguments(tc.function.name, tc.function.arguments),
        )
        for tc in (msg.tool_calls or [])
        if getattr(tc, "function", None)
    ]
    return ChatResponse(content=msg.content or "", model_version=response.model, tool_calls=tool_calls)


def _call_hf(payload: dict[str, Any]) -> ChatResponse:
    payload = {**payload, "model": HF_LLM_MODEL}
    headers = {"Authorization": f"Bearer {HF_API_KEY}", "Content-Type": "application/json"}
    try:
        with httpx.Client(timeout=LLM_API_TIMEOUT) as client:
            response = client.post(HF_CHAT_URL, json=payload, headers=headers)
    except httpx.TimeoutException as e:
        logger.warning("[llm:hf] request timed out after %.0fs", LLM_API_TIMEOUT)
        raise ModelUnavailableError("The language model timed out. Please try again.") from e
    except httpx.HTTPError as e:
        logger.warning("[llm:hf] request failed: %s", e)
        raise ModelUnavailableError("The language model is currently unavailable.") from e
    if response.status_code != 200:
        logger.warning("[llm:hf] HF LLM error %s: %s", response.status_code, response.text[:200])
        raise ModelUnavailableError("The language model is currently unavailable.")
    try:
        data = response.json()
    except ValueError as e:
        raise ModelUnavailableError("The language model returned an unreadable response.") from e

    choices = data.get("choices") or []
    if not choices or not isinstance(choices[0], dict):
        raise ModelUnavailableError("The language model returned an empty response.")
    msg = choices[0].get("message") or {}
    tool_calls = []
    for tc in msg.get("tool_calls") or []:
        fn = tc.get("function") or {}
        name = fn.get("name") or ""
        tool_calls.append(
            ToolCall(id=tc.get("id") or "", name=name, arguments=parse_tool_arguments(name, fn.get("arguments")))
        )
    return ChatResponse(
        content=msg.get("content") or "",
        model_version=data.get("model") or HF_LLM_MODEL,
        tool_calls=tool_calls,
    )


def is_configured() -> bool:
    return bool(OPENAI_API_KEY or HF_API_KEY)


def call_chat_model(
    system_prompt: str,
    messages: Sequence[ChatTurn],
    tools: Sequence["ToolDefinition"] | None = None,
    model: str | None = None,
) -> ChatResponse:
    """
    One chat completion. Returns text content ("" if none), parsed tool calls,
    and the model id the provider reports having used.
    Raises NotConfiguredError before any network call when no credential is set.
    """
    if not is_configured():
        logger.warning("[llm] no OPENAI_API_KEY or HF_API_KEY configured")
        raise NotConfiguredError("The language model is not configured.")
    payload = build_payload(system_prompt, messages, tools, model or OPENAI_LLM_MODEL)
    logger.info(
        "[llm:call_chat_model] IN  messages=%d tools=%d prompt_len=%d",
        len(messages), len(tools or []), len(system_prompt),
    )
    logger.debug("[llm:call_chat_model] system_prompt=%r", system_prompt)

    result = _call_openai(payload) if OPENAI_API_KEY else _call_hf(payload)

    logger.info(
        "[llm:call_chat_model] OUT model=%s content_len=%d tool_calls=%s",
        result.model_version, len(result.content), [t.name for t in result.tool_calls],
    )
    return result
