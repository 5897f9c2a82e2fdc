"""Text-generation collaborator boundary.

The decomposer only depends on :class:`TextGenerator`: an async callable
that turns a prompt into free text. The Anthropic implementation is the
production generator; :class:`OfflineTextGenerator` always fails and is
used to exercise the deterministic fallback (``plansmith decompose
--offline``).
"""

from typing import Any, Protocol, runtime_checkable

from loguru import logger
from pydantic import BaseModel, Field, SecretStr

from plansmith.core.errors import GenerationFailure


class GenerationOptions(BaseModel):
    """Per-call generation options."""

    system_prompt: str = ""
    temperature: float = Field(default=0.3, ge=0.0, le=1.0)


class GenerationResponse(BaseModel):
    """Raw text returned by a generator."""

    content: str = ""


@runtime_checkable
class TextGenerator(Protocol):
    """Anything that can turn a prompt into text."""

    async def generate(
        self,
        prompt: str,
        options: GenerationOptions,
    ) -> GenerationResponse:
        ...


class AnthropicTextGenerator:
    """
    Generator backed by the Anthropic Messages API.

    The client is created lazily on first use so constructing a generator
    never touches the network or requires the key to be valid.

    Example:
        >>> generator = AnthropicTextGenerator(api_key=SecretStr("sk-..."))
        >>> response = await generator.generate(prompt, GenerationOptions())
    """

    def __init__(
        self,
        api_key: SecretStr | None,
        model: str = "claude-sonnet-4-20250514",
        max_tokens: int = 4000,
        client: Any | None = None,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.max_tokens = max_tokens
        self._client = client

    def _get_client(self) -> Any:
        if self._client is None:
            if self.api_key is None:
                raise GenerationFailure("No Anthropic API key configured")

            from anthropic import AsyncAnthropic

            self._client = AsyncAnthropic(api_key=self.api_key.get_secret_value())
        return self._client

    async def generate(
        self,
        prompt: str,
        options: GenerationOptions,
    ) -> GenerationResponse:
        """
        Send the prompt and return the concatenated text blocks.

        Args:
            prompt: User prompt.
            options: System prompt and temperature.

        Returns:
            GenerationResponse with the model's text.

        Raises:
            GenerationFailure: If no key is configured or the reply has no text.
        """
        client = self._get_client()

        logger.debug(f"Calling {self.model} ({len(prompt)} prompt chars)")

        kwargs: dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "temperature": options.temperature,
            "messages": [{"role": "user", "content": prompt}],
        }
        if options.system_prompt:
            kwargs["system"] = options.system_prompt

        response = await client.messages.create(**kwargs)

        text = "".join(
            getattr(block, "text", "") for block in response.content
        ).strip()
        if not text:
            raise GenerationFailure("Generation returned no text content")

        return GenerationResponse(content=text)


class OfflineTextGenerator:
    """Generator that always fails, forcing the fallback plan."""

    async def generate(
        self,
        prompt: str,
        options: GenerationOptions,
    ) -> GenerationResponse:
        raise GenerationFailure("Text generation is disabled (offline mode)")
