"""
Pre-retrieval query transformation
"""
import logging
from abc import ABC, abstractmethod
from typing import Optional

from langchain_core.language_models import BaseChatModel
from langchain_core.prompts import PromptTemplate

from hybrid_rag.errors import ConfigurationError, TransformationError
from hybrid_rag.llm import complete
from hybrid_rag.types import Query

logger = logging.getLogger("hybrid_rag.transformers")


DEFAULT_HYDE_TEMPLATE = """Given a user question, write a comprehensive and informative passage that directly answers the question.

The passage should be factual, well-structured, and contain specific details.

Question: {query}

Passage:
"""


def require_placeholders(template: PromptTemplate, *names: str):
    missing = [name for name in names if name not in template.input_variables]
    if missing:
        raise ConfigurationError(
            f"Prompt template is missing required placeholders: {', '.join(missing)}"
        )


def as_prompt_template(template) -> PromptTemplate:
    if isinstance(template, PromptTemplate):
        return template
    return PromptTemplate.from_template(template)


class QueryTransformer(ABC):
    """Rewrites a query before retrieval"""

    @abstractmethod
    def transform(self, query: Query) -> Query:
        pass


class HyDeTransformer(QueryTransformer):
    """
    Hypothetical Document Embeddings

    Replaces the query text with a passage the language model writes as if it
    answered the question; the passage embeds closer to real answers than the
    short question does.
    """

    def __init__(self, llm: BaseChatModel, prompt_template: Optional[PromptTemplate | str] = None):
        if llm is None:
            raise ConfigurationError("llm cannot be None")
        self.llm = llm
        self.prompt_template = as_prompt_template(prompt_template or DEFAULT_HYDE_TEMPLATE)
        require_placeholders(self.prompt_template, "query")

    def transform(self, query: Query) -> Query:
        if query is None:
            raise ValueError("query cannot be None")

        prompt = self.prompt_template.format(query=query.text)
        try:
            passage = complete(self.llm, prompt)
        except Exception as e:
            raise TransformationError(f"HyDE generation failed: {e}") from e

        if not passage or not passage.strip():
            logger.warning("⚠️ [HyDE] Empty hypothetical document, returning the input query unchanged")
            return query

        logger.debug(f"[HyDE] Hypothetical document: {passage[:200]}")
        return query.mutate(text=passage)
