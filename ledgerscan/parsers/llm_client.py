"""Reusable LLM client for document parsing with structured output."""

import asyncio
import json
import logging
from typing import Optional, Type, TypeVar

from litellm import acompletion
from pydantic import BaseModel, ValidationError

from ledgerscan.config import settings

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


class ParsingError(Exception):
    """Raised when LLM-based parsing fails."""

    pass


def is_llm_configured() -> bool:
    """Whether a model call can be attempted at all."""
    if settings.llm_provider == "openai":
        return bool(settings.openai_api_key)
    if settings.llm_provider == "ollama":
        return bool(settings.ollama_host)
    return False


def _get_model_name() -> str:
    """Get the appropriate model name based on provider."""
    if settings.llm_provider == "openai":
        return settings.openai_model
    else:
        return f"ollama/{settings.ollama_model}"


def _get_api_base() -> Optional[str]:
    """Get the API base URL for Ollama."""
    if settings.llm_provider == "ollama":
        return settings.ollama_host
    return None


def _strip_to_json(content: str) -> str:
    """Pull the JSON payload out of a reply that may be wrapped in markdown."""
    if "```" in content:
        parts = content.split("```")
        if len(parts) >= 3:
            json_content = parts[1]
            # Remove language identifier (e.g., "json\n")
            if json_content.lstrip().startswith("json"):
                json_content = json_content.lstrip()[4:]
            content = json_content.strip()
        elif len(parts) == 2:
            # Only one ``` marker (incomplete response)
            content = parts[1].strip()

    # Drop any leading prose before the first { or [
    json_start = min(
        content.find("{") if "{" in content else len(content),
        content.find("[") if "[" in content else len(content),
    )
    if 0 < json_start < len(content):
        content = content[json_start:]
    return content


async def llm_extract_json(
    prompt: str,
    response_model: Type[T],
    system: str | None = None,
    timeout: float | None = None,
    max_retries: int | None = None,
) -> T:
    """
    Call LLM with a prompt and extract structured JSON output.

    Args:
        prompt: The user message to send to the LLM
        response_model: Pydantic model class to parse response into
        system: Optional system instruction
        timeout: Per-attempt timeout in seconds (defaults to settings)
        max_retries: Maximum number of attempts (defaults to settings)

    Returns:
        Instance of response_model with parsed data

    Raises:
        ParsingError: If the LLM is not configured, or the call fails or
            returns invalid JSON after all retries
    """
    if not is_llm_configured():
        raise ParsingError(f"LLM provider '{settings.llm_provider}' is not configured")

    timeout = timeout if timeout is not None else settings.llm_timeout_seconds
    max_retries = max(1, max_retries if max_retries is not None else settings.llm_max_retries)

    messages = []
    if system:
        messages.append({"role": "system", "content": system})
    messages.append({"role": "user", "content": prompt})

    for attempt in range(max_retries):
        try:
            logger.debug(f"LLM attempt {attempt + 1}/{max_retries} model={_get_model_name()}")

            response = await asyncio.wait_for(
                acompletion(
                    model=_get_model_name(),
                    messages=messages,
                    api_base=_get_api_base(),
                    api_key=settings.openai_api_key if settings.llm_provider == "openai" else None,
                    temperature=0.1,  # Low temperature for consistency
                    max_tokens=4096,  # Allow longer responses for transaction lists
                    response_format={"type": "json_object"},
                    timeout=timeout,
                ),
                timeout=timeout,
            )

            content = (response.choices[0].message.content or "").strip()
            if not content:
                raise ParsingError("LLM returned an empty response")
            content = _strip_to_json(content)

            try:
                data = json.loads(content)
            except json.JSONDecodeError as e:
                logger.error(f"Invalid JSON from LLM (attempt {attempt + 1}/{max_retries}): {e}")
                logger.error(f"Content preview: {content[:200]}...")
                if len(content) > 0 and not content.rstrip().endswith("}"):
                    logger.error("Response appears truncated (doesn't end with })")

                if attempt < max_retries - 1:
                    await asyncio.sleep(2**attempt)  # Exponential backoff
                    continue
                raise ParsingError(f"LLM returned invalid JSON: {e}")

            try:
                return response_model.model_validate(data)
            except ValidationError as e:
                logger.error(f"Pydantic validation failed (attempt {attempt + 1}/{max_retries}): {e}")
                if attempt < max_retries - 1:
                    await asyncio.sleep(2**attempt)
                    continue
                raise ParsingError(f"LLM response validation failed: {e}")

        except ParsingError:
            raise

        except TimeoutError:
            logger.warning(f"LLM timeout after {timeout}s (attempt {attempt + 1}/{max_retries})")
            if attempt < max_retries - 1:
                await asyncio.sleep(2**attempt)
            else:
                raise ParsingError(f"LLM call timed out after {max_retries} attempts")

        except Exception as e:
            logger.error(f"LLM call failed (attempt {attempt + 1}/{max_retries}): {e}")
            if attempt < max_retries - 1:
                await asyncio.sleep(2**attempt)
            else:
                raise ParsingError(f"LLM call failed: {e}")

    # Should never reach here
    raise ParsingError("Unexpected error in llm_extract_json")
