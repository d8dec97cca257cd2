"""
Query augmentation with retrieved context
"""
import logging
from abc import ABC, abstractmethod
from typing import Callable, Optional

from langchain_core.prompts import PromptTemplate

from hybrid_rag.transformers import as_prompt_template, require_placeholders
from hybrid_rag.types import Document, Query

logger = logging.getLogger("hybrid_rag.augmenters")


DEFAULT_CONTEXT_TEMPLATE = """Context information is below.

---------------------
{context}
---------------------

Given the context information and no prior knowledge, answer the query.

Follow these rules:

1. If the answer is not in the context, just say that you don't know.
2. Avoid statements like "Based on the context..." or "The provided information...".

Query: {query}

Answer:
"""

DEFAULT_EMPTY_CONTEXT_TEMPLATE = """The user query is outside your knowledge base.
Politely inform the user that you can't answer it.
"""


def join_document_text(documents: list[Document]) -> str:
    return "\n".join(doc.text for doc in documents)


class QueryAugmenter(ABC):
    """Folds retrieved documents into the query sent to the chat model"""

    @abstractmethod
    def augment(self, query: Query, documents: list[Document]) -> Query:
        pass


class ContextualQueryAugmenter(QueryAugmenter):
    """
    Wraps the query in a context prompt

    With no documents the query is replaced by the empty-context prompt, unless
    allow_empty_context is set, in which case it passes through unchanged.
    """

    def __init__(
        self,
        prompt_template: Optional[PromptTemplate | str] = None,
        empty_context_prompt_template: Optional[PromptTemplate | str] = None,
        allow_empty_context: bool = False,
        document_formatter: Optional[Callable[[list[Document]], str]] = None,
    ):
        self.prompt_template = as_prompt_template(prompt_template or DEFAULT_CONTEXT_TEMPLATE)
        require_placeholders(self.prompt_template, "query", "context")
        self.empty_context_prompt_template = as_prompt_template(
            empty_context_prompt_template or DEFAULT_EMPTY_CONTEXT_TEMPLATE
        )
        self.allow_empty_context = allow_empty_context
        self.document_formatter = document_formatter or join_document_text

    def augment(self, query: Query, documents: list[Document]) -> Query:
        if query is None:
            raise ValueError("query cannot be None")

        if not documents:
            if self.allow_empty_context:
                logger.debug("[AUGMENT] No documents retrieved, query left unchanged")
                return query
            logger.debug("[AUGMENT] No documents retrieved, using the empty-context prompt")
            return Query(text=self.empty_context_prompt_template.format())

        context = self.document_formatter(documents)
        return Query(text=self.prompt_template.format(query=query.text, context=context))
