"""
LLM provider abstraction for the tool-calling loop.

Messages use the OpenAI chat shape ({"role", "content", "tool_calls"?, "tool_call_id"?});
providers for other vendors translate to and from it.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any


@dataclass
class ToolCall:
    """A single function call requested by the model"""

    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)

    def to_message(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": json.dumps(self.arguments)},
        }


@dataclass
class LLMResponse:
    """Standardized LLM response"""

    content: str | None = None
    tool_calls: list[ToolCall] = field(default_factory=list)
    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    total_tokens: int | None = None
    model_name: str | None = None

    @property
    def is_final(self) -> bool:
        return not self.tool_calls

    def to_message(self) -> dict[str, Any]:
        """Assistant message to append to the conversation"""
        message: dict[str, Any] = {"role": "assistant", "content": self.content or ""}
        if self.tool_calls:
            message["tool_calls"] = [call.to_message() for call in self.tool_calls]
        return message


def _parse_arguments(raw: str | dict[str, Any] | None) -> dict[str, Any]:
    if raw is None or raw == "":
        return {}
    if isinstance(raw, dict):
        return raw
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        # Surfaced to the registry, which reports it as invalid arguments
        return {"__raw__": raw}
    return parsed if isinstance(parsed, dict) else {"__raw__": parsed}


class LLMProvider(ABC):
    """
    Abstract base class for tool-calling LLM providers.

    Implement generate() to plug in a different vendor or a scripted test double.
    """

    def __init__(self, model: str):
        self._model_name = model

    @property
    def model_name(self) -> str:
        return self._model_name

    @abstractmethod
    async def generate(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        **kwargs: Any,
    ) -> LLMResponse:
        """
        Run one completion.

        Args:
            messages: Conversation so far, OpenAI chat shape
            tools: Tool schemas in OpenAI function format (None for no tools)
            **kwargs: temperature, max_tokens

        Returns:
            LLMResponse with either tool_calls or final content
        """
        pass


class OpenAIProvider(LLMProvider):
    """
    OpenAI chat completions with function tools.

    Example:
        >>> llm = OpenAIProvider(model="gpt-4o-mini")
        >>> response = await llm.generate(messages, tools=registry.schemas())
    """

    def __init__(self, api_key: str | None = None, model: str = "gpt-4o-mini", base_url: str | None = None):
        super().__init__(model)
        try:
            from openai import AsyncOpenAI
        except ImportError:
            raise ImportError("OpenAI package not installed. Install with: pip install openai")

        self.client = AsyncOpenAI(api_key=api_key, base_url=base_url)

    async def generate(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        temperature: float = 0.0,
        max_tokens: int | None = None,
        **kwargs: Any,
    ) -> LLMResponse:
        params: dict[str, Any] = {
            "model": self._model_name,
            "messages": messages,
            "temperature": temperature,
        }
        if tools:
            params["tools"] = tools
            params["tool_choice"] = "auto"
        if max_tokens:
            params["max_tokens"] = max_tokens
        params.update(kwargs)

        response = await self.client.chat.completions.create(**params)
        choice = response.choices[0]
        tool_calls = [
            ToolCall(
                id=call.id,
                name=call.function.name,
                arguments=_parse_arguments(call.function.arguments),
            )
            for call in (choice.message.tool_calls or [])
        ]
        usage = response.usage
        return LLMResponse(
            content=choice.message.content,
            tool_calls=tool_calls,
            prompt_tokens=usage.prompt_tokens if usage else None,
            completion_tokens=usage.completion_tokens if usage else None,
            total_tokens=usage.total_tokens if usage else None,
            model_name=self._model_name,
        )


class AnthropicProvider(LLMProvider):
    """
    Anthropic messages API with tool use.

    Requires the optional "anthropic" extra.
    """

    def __init__(self, api_key: str | None = None, model: str = "claude-3-5-sonnet-latest"):
        super().__init__(model)
        try:
            from anthropic import AsyncAnthropic
        except ImportError:
            raise ImportError(
                "Anthropic package not installed. Install with: pip install webpilot[anthropic]"
            )

        self.client = AsyncAnthropic(api_key=api_key)

    @staticmethod
    def _convert_tools(tools: list[dict[str, Any]]) -> list[dict[str, Any]]:
        return [
            {
                "name": tool["function"]["name"],
                "description": tool["function"].get("description", ""),
                "input_schema": tool["function"]["parameters"],
            }
            for tool in tools
        ]

    @staticmethod
    def _convert_messages(messages: list[dict[str, Any]]) -> tuple[str, list[dict[str, Any]]]:
        system_parts: list[str] = []
        converted: list[dict[str, Any]] = []

        for message in messages:
            role = message["role"]
            if role == "system":
                system_parts.append(message["content"])
            elif role == "tool":
                block = {
                    "type": "tool_result",
                    "tool_use_id": message["tool_call_id"],
                    "content": message["content"],
                }
                # consecutive tool results share one user turn
                if converted and converted[-1]["role"] == "user" and isinstance(
                    converted[-1]["content"], list
                ):
                    converted[-1]["content"].append(block)
                else:
                    converted.append({"role": "user", "content": [block]})
            elif role == "assistant" and message.get("tool_calls"):
                blocks: list[dict[str, Any]] = []
                if message.get("content"):
                    blocks.append({"type": "text", "text": message["content"]})
                for call in message["tool_calls"]:
                    blocks.append(
                        {
                            "type": "tool_use",
                            "id": call["id"],
                            "name": call["function"]["name"],
                            "input": _parse_arguments(call["function"]["arguments"]),
                        }
                    )
                converted.append({"role": "assistant", "content": blocks})
            else:
                converted.append({"role": role, "content": message.get("content") or ""})

        return "\n\n".join(system_parts), converted

    async def generate(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        temperature: float = 0.0,
        max_tokens: int | None = None,
        **kwargs: Any,
    ) -> LLMResponse:
        system, converted = self._convert_messages(messages)
        params: dict[str, Any] = {
            "model": self._model_name,
            "messages": converted,
            "temperature": temperature,
            "max_tokens": max_tokens or 4096,
        }
        if system:
            params["system"] = system
        if tools:
            params["tools"] = self._convert_tools(tools)
        params.update(kwargs)

        response = await self.client.messages.create(**params)

        text_parts: list[str] = []
        tool_calls: list[ToolCall] = []
        for block in response.content:
            if block.type == "text":
                text_parts.append(block.text)
            elif block.type == "tool_use":
                tool_calls.append(ToolCall(id=block.id, name=block.name, arguments=dict(block.input)))

        usage = response.usage
        prompt_tokens = usage.input_tokens if usage else None
        completion_tokens = usage.output_tokens if usage else None
        return LLMResponse(
            content="".join(text_parts) or None,
            tool_calls=tool_calls,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=(prompt_tokens or 0) + (completion_tokens or 0) if usage else None,
            model_name=self._model_name,
        )


def create_llm_provider(model: str, api_key: str | None = None) -> LLMProvider:
    """
    Pick a provider from the model name ("claude*" -> Anthropic, anything else -> OpenAI).
    """
    if model.lower().startswith("claude"):
        return AnthropicProvider(api_key=api_key, model=model)
    return OpenAIProvider(api_key=api_key, model=model)
