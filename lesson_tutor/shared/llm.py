"""
LLM client abstraction supporting OpenAI and Anthropic.
Provides async completion with structured JSON output support.
"""

import json
from typing import Optional, Dict, Any
from enum import Enum

from openai import AsyncOpenAI
from anthropic import AsyncAnthropic

from lesson_tutor.shared.config import settings
from lesson_tutor.shared.exceptions import ProviderError


class LLMProvider(str, Enum):
    """Supported LLM providers."""
    OPENAI = "openai"
    ANTHROPIC = "anthropic"


class LLMError(ProviderError):
    """Base error for LLM operations."""
    pass


class LLMClient:
    """Unified LLM client supporting multiple providers."""

    def __init__(
        self,
        provider: Optional[str] = None,
        model: Optional[str] = None,
        api_key: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None
    ):
        self.provider = provider or settings.llm.provider
        self.model = model or settings.llm.default_model
        self.temperature = temperature if temperature is not None else settings.llm.temperature
        self.max_tokens = max_tokens or settings.llm.max_tokens

        if self.provider == LLMProvider.OPENAI:
            api_key = api_key or settings.llm.openai_api_key
            if not api_key:
                raise LLMError("OpenAI API key not configured")
            self.client = AsyncOpenAI(api_key=api_key)
        elif self.provider == LLMProvider.ANTHROPIC:
            api_key = api_key or settings.llm.anthropic_api_key
            if not api_key:
                raise LLMError("Anthropic API key not configured")
            self.client = AsyncAnthropic(api_key=api_key)
        else:
            raise LLMError(f"Unsupported provider: {self.provider}")

    async def get_completion(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        response_format: Optional[Dict[str, Any]] = None,
        **kwargs
    ) -> str:
        """
        Get text completion from LLM.

        Args:
            prompt: User prompt
            system_prompt: Optional system prompt
            model: Override default model
            temperature: Override default temperature
            max_tokens: Override default max_tokens
            response_format: For structured output (OpenAI) or JSON schema (Anthropic)
            **kwargs: Additional provider-specific parameters

        Returns:
            Completion text
        """
        model = model or self.model
        temperature = temperature if temperature is not None else self.temperature
        max_tokens = max_tokens or self.max_tokens

        try:
            if self.provider == LLMProvider.OPENAI:
                return await self._openai_completion(
                    prompt=prompt,
                    system_prompt=system_prompt,
                    model=model,
                    temperature=temperature,
                    max_tokens=max_tokens,
                    response_format=response_format,
                    **kwargs
                )
            return await self._anthropic_completion(
                prompt=prompt,
                system_prompt=system_prompt,
                model=model,
                temperature=temperature,
                max_tokens=max_tokens,
                response_format=response_format,
                **kwargs
            )
        except Exception as e:
            raise LLMError(f"LLM completion failed: {str(e)}") from e

    async def _openai_completion(
        self,
        prompt: str,
        system_prompt: Optional[str],
        model: str,
        temperature: float,
        max_tokens: int,
        response_format: Optional[Dict[str, Any]],
        **kwargs
    ) -> str:
        """OpenAI-specific completion."""
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        completion_kwargs = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
            **kwargs
        }

        if response_format:
            completion_kwargs["response_format"] = response_format

        response = await self.client.chat.completions.create(**completion_kwargs)
        return response.choices[0].message.content or ""

    async def _anthropic_completion(
        self,
        prompt: str,
        system_prompt: Optional[str],
        model: str,
        temperature: float,
        max_tokens: int,
        response_format: Optional[Dict[str, Any]],
        **kwargs
    ) -> str:
        """Anthropic-specific completion."""
        # Anthropic uses system parameter, not system message
        completion_kwargs = {
            "model": model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            **kwargs
        }

        system = system_prompt or ""

        # For structured output, add JSON schema to system prompt
        if response_format:
            schema = response_format.get("schema", {})
            if schema:
                system += (
                    "\n\nYou must respond with valid JSON matching this schema: "
                    f"{json.dumps(schema, indent=2)}"
                )

        if system:
            completion_kwargs["system"] = system

        completion_kwargs["messages"] = [{"role": "user", "content": prompt}]

        response = await self.client.messages.create(**completion_kwargs)
        return response.content[0].text

    async def get_structured_completion(
        self,
        prompt: str,
        schema: Dict[str, Any],
        system_prompt: Optional[str] = None,
        model: Optional[str] = None,
        schema_name: str = "response",
        **kwargs
    ) -> Dict[str, Any]:
        """
        Get structured JSON completion.

        Args:
            prompt: User prompt
            schema: JSON schema for response
            system_prompt: Optional system prompt
            model: Override default model
            schema_name: Name reported to OpenAI for the schema
            **kwargs: Additional parameters (temperature, max_tokens, ...)

        Returns:
            Parsed JSON response as dict
        """
        if self.provider == LLMProvider.OPENAI:
            response_format = {
                "type": "json_schema",
                "json_schema": {
                    "name": schema_name,
                    "schema": schema,
                    "strict": True
                }
            }
        else:
            # Anthropic uses schema in system prompt
            response_format = {"schema": schema}

        response_text = await self.get_completion(
            prompt=prompt,
            system_prompt=system_prompt,
            model=model,
            response_format=response_format,
            **kwargs
        )

        return parse_json_payload(response_text)


def parse_json_payload(response_text: str) -> Dict[str, Any]:
    """Parse a JSON object out of a model reply, tolerating markdown code fences."""
    text = response_text.strip()
    if text.startswith("```json"):
        text = text[7:]
    if text.startswith("```"):
        text = text[3:]
    if text.endswith("```"):
        text = text[:-3]

    try:
        payload = json.loads(text.strip())
    except json.JSONDecodeError as e:
        raise LLMError(f"Failed to parse JSON response: {str(e)}\nResponse: {response_text[:200]}") from e

    if not isinstance(payload, dict):
        raise LLMError(f"Expected a JSON object, got {type(payload).__name__}")
    return payload
