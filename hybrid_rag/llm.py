"""
LangChain chat model integration
Factory for the language model used by query transformation and expansion
"""
from typing import Optional

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import HumanMessage
from langchain_openai import ChatOpenAI

from hybrid_rag.config import get_settings


def build_llm(
    model: Optional[str] = None,
    base_url: Optional[str] = None,
    api_key: Optional[str] = None,
    temperature: Optional[float] = None,
    max_tokens: int = 2048,
    **kwargs
) -> BaseChatModel:
    """
    Build a ChatOpenAI instance for an OpenAI-compatible endpoint (LM Studio, vLLM, OpenAI)

    Args:
        model: Model name (optional if the server has only one model loaded)
        base_url: API URL
        api_key: API key (any non-empty value for local servers)
        temperature: Generation temperature
        max_tokens: Max tokens to generate
        **kwargs: Additional ChatOpenAI parameters

    Returns:
        ChatOpenAI instance
    """
    settings = get_settings()
    return ChatOpenAI(
        model=model or settings.llm_model or "local-model",
        base_url=base_url or settings.llm_base_url,
        api_key=api_key or settings.llm_api_key,
        temperature=settings.llm_temperature if temperature is None else temperature,
        max_tokens=max_tokens,
        **kwargs
    )


def complete(llm: BaseChatModel, prompt: str) -> str:
    """Send a single user prompt and return the response text ("" when empty)"""
    response = llm.invoke([HumanMessage(content=prompt)])
    return message_text(getattr(response, "content", response))


def message_text(content) -> str:
    """Plain text of a message content: a string, or a list of content blocks whose text parts are joined"""
    if content is None:
        return ""
    if isinstance(content, list):
        return "".join(
            part.get("text", "") if isinstance(part, dict) else str(part)
            for part in content
        )
    return str(content)
