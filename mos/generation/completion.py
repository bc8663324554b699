"""Unified LLM completion via LiteLLM (routes to any provider)."""

from dataclasses import dataclass

import structlog
from litellm import acompletion

from ..config import DEFAULT_MODEL, LLM_MAX_TOKENS
from ..errors import CompletionError, EmptyCompletionError

logger = structlog.get_logger()


@dataclass
class CompletionResponse:
    """Normalized response from any LLM provider."""

    text: str
    input_tokens: int
    output_tokens: int
    model: str


async def call_llm(
    model: str,
    messages: list[dict[str, str]],
    max_tokens: int = LLM_MAX_TOKENS,
) -> CompletionResponse:
    """Call any LLM through LiteLLM's unified interface.

    Model ID conventions (handled by LiteLLM):
      - claude-*          -> Anthropic (ANTHROPIC_API_KEY)
      - gpt-*, o1-*, etc. -> OpenAI (OPENAI_API_KEY)
      - openrouter/*      -> OpenRouter (OPENROUTER_API_KEY)

    Raises:
        CompletionError: transport or provider failure
    """
    try:
        response = await acompletion(
            model=model,
            messages=messages,
            max_tokens=max_tokens,
        )
    except Exception as e:
        raise CompletionError(f"Completion with {model} failed: {e}") from e

    choice = response.choices[0]
    usage = response.usage

    return CompletionResponse(
        text=choice.message.content or "",
        input_tokens=usage.prompt_tokens if usage else 0,
        output_tokens=usage.completion_tokens if usage else 0,
        model=model,
    )


async def complete(
    system_prompt: str,
    user_prompt: str,
    model: str = DEFAULT_MODEL,
    max_tokens: int = LLM_MAX_TOKENS,
) -> str:
    """System + user prompt in, text out.

    Raises:
        CompletionError: transport or provider failure
        EmptyCompletionError: the provider answered without any text
    """
    response = await call_llm(
        model,
        [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ],
        max_tokens=max_tokens,
    )
    if not response.text.strip():
        raise EmptyCompletionError(f"{model} returned no text content")

    logger.debug(
        "completed_prompt",
        model=model,
        input_tokens=response.input_tokens,
        output_tokens=response.output_tokens,
    )
    return response.text
