"""
Per-request filter and lexical field resolution
"""
from typing import Any, Callable, Optional

from hybrid_rag.errors import FilterParseError
from hybrid_rag.filters import Expression, FilterExpression, Group, parse_filter
from hybrid_rag.types import FILTER_EXPRESSION_KEY, LEXICAL_FIELD_KEY, Query, RetrievalOptions

FilterSupplier = Callable[[], Optional[FilterExpression]]


class FilterResolver:
    """
    Picks the filter for one request

    Precedence: explicit RetrievalOptions, then the query context key, then the
    default supplier. Structured expressions are used verbatim; non-blank text is
    parsed. Malformed text and values of any other type raise FilterParseError.
    None means match everything.
    """

    def __init__(
        self,
        default_supplier: Optional[FilterSupplier] = None,
        context_key: str = FILTER_EXPRESSION_KEY,
        lexical_field_key: str = LEXICAL_FIELD_KEY,
    ):
        self.default_supplier = default_supplier
        self.context_key = context_key
        self.lexical_field_key = lexical_field_key

    def _options(self, query: Query, options: Optional[RetrievalOptions]) -> list[RetrievalOptions]:
        from_context = RetrievalOptions.from_context(query.context, self.context_key, self.lexical_field_key)
        return [options, from_context] if options is not None else [from_context]

    def resolve(self, query: Query, options: Optional[RetrievalOptions] = None) -> Optional[FilterExpression]:
        for candidate in self._options(query, options):
            expression = self._as_expression(candidate.filter_expression)
            if expression is not None:
                return expression

        if self.default_supplier is None:
            return None
        return self.default_supplier()

    def resolve_lexical_field(self, query: Query, options: Optional[RetrievalOptions] = None) -> str:
        """Field override for the lexical branch ("" = index default)"""
        for candidate in self._options(query, options):
            if candidate.lexical_field and candidate.lexical_field.strip():
                return candidate.lexical_field
        return ""

    def _as_expression(self, value: Any) -> Optional[FilterExpression]:
        if isinstance(value, (Expression, Group)):
            return value
        if isinstance(value, str) and value.strip():
            return parse_filter(value)
        if value is not None and not isinstance(value, str):
            raise FilterParseError(f"Unsupported filter expression type {type(value).__name__}", text=repr(value))
        return None
