"""LLM factory: creates the correct chat model based on LLM_PROVIDER setting."""

from langchain_anthropic import ChatAnthropic
from langchain_core.language_models import BaseChatModel
from langchain_openai import ChatOpenAI
from pydantic import SecretStr

from kubepulse.config import Settings


def llm_configured(settings: Settings) -> bool:
    """Whether the selected provider has an API key."""
    if settings.llm_provider == "anthropic":
        return bool(settings.anthropic_api_key)
    return bool(settings.openai_api_key)


def create_llm(
    settings: Settings,
    temperature: float = 0.0,
    model_override: str | None = None,
) -> BaseChatModel:
    """Create a chat model instance based on the configured provider.

    Args:
        settings: Application settings (provider, keys, model names).
        temperature: LLM temperature (0.0 keeps the oracle's judgments repeatable).
        model_override: Override model name from settings.

    Returns:
        A ChatAnthropic or ChatOpenAI instance.
    """
    if settings.llm_provider == "anthropic":
        return ChatAnthropic(  # pyright: ignore[reportCallIssue]
            model=model_override or settings.anthropic_model,
            temperature=temperature,
            max_tokens=2048,
            api_key=SecretStr(settings.anthropic_api_key),
        )

    return ChatOpenAI(
        model=model_override or settings.openai_model,
        temperature=temperature,
        api_key=SecretStr(settings.openai_api_key),
        base_url=settings.openai_base_url or None,
    )
