"""
Pre-retrieval query expansion
"""
import logging
from abc import ABC, abstractmethod
from typing import Optional

from langchain_core.language_models import BaseChatModel
from langchain_core.prompts import PromptTemplate

from hybrid_rag.errors import ConfigurationError, TransformationError
from hybrid_rag.llm import complete
from hybrid_rag.transformers import as_prompt_template, require_placeholders
from hybrid_rag.types import Query

logger = logging.getLogger("hybrid_rag.expanders")


DEFAULT_MULTI_QUERY_TEMPLATE = """You are an expert at information retrieval and search optimization.
Your task is to generate {number} different versions of the given query.

Each variant must cover different perspectives or aspects of the topic,
while maintaining the core intent of the original query. The goal is to
expand the search space and improve the chances of finding relevant information.

Do not explain your choices or add any other text.
Provide the query variants separated by newlines.

Original query: {query}

Query variants:
"""


class QueryExpander(ABC):
    """Turns one query into one or more queries (never zero)"""

    @abstractmethod
    def expand(self, query: Query) -> list[Query]:
        pass


class MultiQueryExpander(QueryExpander):
    """Asks the language model for semantically diverse rewrites of the query"""

    def __init__(
        self,
        llm: BaseChatModel,
        prompt_template: Optional[PromptTemplate | str] = None,
        include_original: bool = False,
        number_of_queries: int = 3,
    ):
        if llm is None:
            raise ConfigurationError("llm cannot be None")
        if number_of_queries < 1:
            raise ConfigurationError(f"number_of_queries must be greater than 0, got {number_of_queries}")

        self.llm = llm
        self.prompt_template = as_prompt_template(prompt_template or DEFAULT_MULTI_QUERY_TEMPLATE)
        require_placeholders(self.prompt_template, "number", "query")
        self.include_original = include_original
        self.number_of_queries = number_of_queries

    def expand(self, query: Query) -> list[Query]:
        if query is None:
            raise ValueError("query cannot be None")

        prompt = self.prompt_template.format(number=self.number_of_queries, query=query.text)
        try:
            response = complete(self.llm, prompt)
        except Exception as e:
            raise TransformationError(f"Query expansion failed: {e}") from e

        if not response or not response.strip():
            logger.warning("⚠️ [EXPAND] Empty query variants, returning the input query")
            return [query]

        variants = [line.strip() for line in response.splitlines() if line.strip()]
        if len(variants) != self.number_of_queries:
            logger.warning(
                f"⚠️ [EXPAND] Expected {self.number_of_queries} query variants, got {len(variants)}; "
                "returning the input query"
            )
            return [query]

        queries = [query.mutate(text=variant) for variant in variants]
        if self.include_original:
            queries.insert(0, query)
        return queries
