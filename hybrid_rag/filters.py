"""
Filter expressions over document metadata
Expression tree, text parser, and converters (Qdrant filter / in-memory predicate)
"""
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Union

from qdrant_client import models

from hybrid_rag.errors import FilterParseError


class ExpressionType(str, Enum):
    EQ = "=="
    NE = "!="
    GT = ">"
    GTE = ">="
    LT = "<"
    LTE = "<="
    IN = "IN"
    NIN = "NIN"
    AND = "AND"
    OR = "OR"
    NOT = "NOT"


COMPARISONS = {
    ExpressionType.EQ, ExpressionType.NE,
    ExpressionType.GT, ExpressionType.GTE,
    ExpressionType.LT, ExpressionType.LTE,
    ExpressionType.IN, ExpressionType.NIN,
}


@dataclass(frozen=True)
class Key:
    key: str


@dataclass(frozen=True)
class Value:
    value: Any


@dataclass(frozen=True)
class Expression:
    """Node of the filter tree; NOT has no right operand"""
    type: ExpressionType
    left: Any
    right: Any = None


@dataclass(frozen=True)
class Group:
    content: "FilterExpression"


FilterExpression = Union[Expression, Group]


# =============================================================================
# Text parser
# =============================================================================

_TOKEN_RE = re.compile(r"""
    (?P<ws>\s+)
  | (?P<string>'(?:[^'\\]|\\.)*'|"(?:[^"\\]|\\.)*")
  | (?P<number>[-+]?\d+(?:\.\d+)?(?:[eE][-+]?\d+)?)
  | (?P<op>==|!=|>=|<=|>|<|&&|\|\||!)
  | (?P<punct>[\[\](),])
  | (?P<ident>[A-Za-z_][A-Za-z0-9_.\-]*)
""", re.VERBOSE)

_KEYWORDS = {"AND", "OR", "NOT", "IN", "NIN", "TRUE", "FALSE"}


@dataclass
class _Token:
    kind: str
    text: str
    pos: int


class FilterExpressionParser:
    """
    Parses filter text into a FilterExpression

    Grammar (case-insensitive keywords):
        expr       := or
        or         := and (("||" | "OR") and)*
        and        := not (("&&" | "AND") not)*
        not        := ("!" | "NOT") not | primary
        primary    := "(" expr ")" | comparison
        comparison := key op value | key ("IN" | "NIN" | "NOT IN") list
        value      := 'string' | "string" | number | true | false
    """

    def parse(self, text: str) -> FilterExpression:
        if text is None or not str(text).strip():
            raise FilterParseError("Filter expression text is empty", text=text or "")
        self._text = text
        self._tokens = self._tokenize(text)
        self._idx = 0
        expr = self._parse_or()
        if self._peek() is not None:
            tok = self._peek()
            raise FilterParseError(f"Unexpected token {tok.text!r}", text=text, position=tok.pos)
        return expr

    def _tokenize(self, text: str) -> list[_Token]:
        tokens = []
        pos = 0
        while pos < len(text):
            match = _TOKEN_RE.match(text, pos)
            if match is None:
                raise FilterParseError(f"Unexpected character {text[pos]!r}", text=text, position=pos)
            kind = match.lastgroup
            if kind != "ws":
                value = match.group(kind)
                if kind == "ident" and value.upper() in _KEYWORDS:
                    kind = "keyword"
                    value = value.upper()
                elif kind == "op":
                    value = {"&&": "AND", "||": "OR", "!": "NOT"}.get(value, value)
                    if value in ("AND", "OR", "NOT"):
                        kind = "keyword"
                tokens.append(_Token(kind, value, pos))
            pos = match.end()
        return tokens

    def _peek(self) -> Optional[_Token]:
        return self._tokens[self._idx] if self._idx < len(self._tokens) else None

    def _next(self, expected: str = "token") -> _Token:
        tok = self._peek()
        if tok is None:
            raise FilterParseError(f"Unexpected end of input, expected {expected}", text=self._text,
                                   position=len(self._text))
        self._idx += 1
        return tok

    def _accept_keyword(self, *words: str) -> Optional[str]:
        tok = self._peek()
        if tok is not None and tok.kind == "keyword" and tok.text in words:
            self._idx += 1
            return tok.text
        return None

    def _expect_punct(self, char: str):
        tok = self._next(repr(char))
        if tok.kind != "punct" or tok.text != char:
            raise FilterParseError(f"Expected {char!r}, got {tok.text!r}", text=self._text, position=tok.pos)

    def _parse_or(self) -> FilterExpression:
        left = self._parse_and()
        while self._accept_keyword("OR"):
            left = Expression(ExpressionType.OR, left, self._parse_and())
        return left

    def _parse_and(self) -> FilterExpression:
        left = self._parse_not()
        while self._accept_keyword("AND"):
            left = Expression(ExpressionType.AND, left, self._parse_not())
        return left

    def _parse_not(self) -> FilterExpression:
        tok = self._peek()
        if tok is not None and tok.kind == "keyword" and tok.text == "NOT":
            self._idx += 1
            return Expression(ExpressionType.NOT, self._parse_not())
        return self._parse_primary()

    def _parse_primary(self) -> FilterExpression:
        tok = self._peek()
        if tok is not None and tok.kind == "punct" and tok.text == "(":
            self._idx += 1
            inner = self._parse_or()
            self._expect_punct(")")
            return Group(inner)
        return self._parse_comparison()

    def _parse_comparison(self) -> Expression:
        tok = self._next("filter key")
        if tok.kind == "ident":
            key = Key(tok.text)
        elif tok.kind == "string":
            key = Key(_unquote(tok.text))
        else:
            raise FilterParseError(f"Expected filter key, got {tok.text!r}", text=self._text, position=tok.pos)

        op_tok = self._next("comparison operator")
        if op_tok.kind == "op":
            return Expression(ExpressionType(op_tok.text), key, Value(self._parse_value()))
        if op_tok.kind == "keyword" and op_tok.text == "IN":
            return Expression(ExpressionType.IN, key, Value(self._parse_list()))
        if op_tok.kind == "keyword" and op_tok.text == "NIN":
            return Expression(ExpressionType.NIN, key, Value(self._parse_list()))
        if op_tok.kind == "keyword" and op_tok.text == "NOT" and self._accept_keyword("IN"):
            return Expression(ExpressionType.NIN, key, Value(self._parse_list()))
        raise FilterParseError(f"Expected comparison operator, got {op_tok.text!r}", text=self._text,
                               position=op_tok.pos)

    def _parse_list(self) -> list:
        self._expect_punct("[")
        values = [self._parse_value()]
        while True:
            tok = self._next("',' or ']'")
            if tok.kind == "punct" and tok.text == ",":
                values.append(self._parse_value())
            elif tok.kind == "punct" and tok.text == "]":
                return values
            else:
                raise FilterParseError(f"Expected ',' or ']', got {tok.text!r}", text=self._text, position=tok.pos)

    def _parse_value(self) -> Any:
        tok = self._next("value")
        if tok.kind == "string":
            return _unquote(tok.text)
        if tok.kind == "number":
            return float(tok.text) if any(c in tok.text for c in ".eE") else int(tok.text)
        if tok.kind == "keyword" and tok.text in ("TRUE", "FALSE"):
            return tok.text == "TRUE"
        raise FilterParseError(f"Expected value, got {tok.text!r}", text=self._text, position=tok.pos)


def _unquote(text: str) -> str:
    quote = text[0]
    return text[1:-1].replace("\\" + quote, quote).replace("\\\\", "\\")


def parse_filter(text: str) -> FilterExpression:
    """Parse filter text, raising FilterParseError when malformed"""
    return FilterExpressionParser().parse(text)


def format_expression(expr: Optional[FilterExpression]) -> str:
    """Render an expression back to filter text (None renders as match-all '*')"""
    if expr is None:
        return "*"
    if isinstance(expr, Group):
        return f"({format_expression(expr.content)})"
    if expr.type == ExpressionType.NOT:
        return f"NOT {format_expression(expr.left)}"
    if expr.type in (ExpressionType.AND, ExpressionType.OR):
        return f"{format_expression(expr.left)} {expr.type.value} {format_expression(expr.right)}"
    return f"{expr.left.key} {expr.type.value} {expr.right.value!r}"


# =============================================================================
# Converters
# =============================================================================

def to_qdrant_filter(expr: Optional[FilterExpression], key_prefix: str = "metadata.") -> Optional[models.Filter]:
    """Convert a FilterExpression to a Qdrant Filter (None means no filter)"""
    if expr is None:
        return None
    condition = _to_condition(expr, key_prefix)
    if isinstance(condition, models.Filter):
        return condition
    return models.Filter(must=[condition])


def _to_condition(expr: FilterExpression, prefix: str):
    if isinstance(expr, Group):
        return _to_condition(expr.content, prefix)

    if expr.type == ExpressionType.AND:
        return models.Filter(must=[_to_condition(expr.left, prefix), _to_condition(expr.right, prefix)])
    if expr.type == ExpressionType.OR:
        return models.Filter(should=[_to_condition(expr.left, prefix), _to_condition(expr.right, prefix)])
    if expr.type == ExpressionType.NOT:
        return models.Filter(must_not=[_to_condition(expr.left, prefix)])

    key = prefix + expr.left.key
    value = expr.right.value

    if expr.type == ExpressionType.EQ:
        return _match_condition(key, value)
    if expr.type == ExpressionType.NE:
        return models.Filter(must_not=[_match_condition(key, value)])
    if expr.type == ExpressionType.IN:
        return models.FieldCondition(key=key, match=models.MatchAny(any=list(value)))
    if expr.type == ExpressionType.NIN:
        return models.FieldCondition(key=key, match=models.MatchExcept(**{"except": list(value)}))

    bound = {
        ExpressionType.GT: "gt",
        ExpressionType.GTE: "gte",
        ExpressionType.LT: "lt",
        ExpressionType.LTE: "lte",
    }[expr.type]
    if isinstance(value, str):
        # ISO dates
        return models.FieldCondition(key=key, range=models.DatetimeRange(**{bound: value}))
    return models.FieldCondition(key=key, range=models.Range(**{bound: value}))


def _match_condition(key: str, value: Any):
    if isinstance(value, float) and not value.is_integer():
        return models.FieldCondition(key=key, range=models.Range(gte=value, lte=value))
    if isinstance(value, float):
        value = int(value)
    return models.FieldCondition(key=key, match=models.MatchValue(value=value))


_MISSING = object()


def _lookup(metadata: dict, key: str) -> Any:
    if key in metadata:
        return metadata[key]
    current: Any = metadata
    for part in key.split("."):
        if not isinstance(current, dict) or part not in current:
            return _MISSING
        current = current[part]
    return current


def matches(expr: Optional[FilterExpression], metadata: dict) -> bool:
    """Evaluate a FilterExpression against a metadata dict (None matches everything)"""
    if expr is None:
        return True
    if isinstance(expr, Group):
        return matches(expr.content, metadata)
    if expr.type == ExpressionType.AND:
        return matches(expr.left, metadata) and matches(expr.right, metadata)
    if expr.type == ExpressionType.OR:
        return matches(expr.left, metadata) or matches(expr.right, metadata)
    if expr.type == ExpressionType.NOT:
        return not matches(expr.left, metadata)

    actual = _lookup(metadata, expr.left.key)
    expected = expr.right.value

    if expr.type == ExpressionType.NE:
        return actual is _MISSING or not _equals(actual, expected)
    if expr.type == ExpressionType.NIN:
        return actual is _MISSING or not any(_equals(actual, v) for v in expected)
    if actual is _MISSING:
        return False
    if expr.type == ExpressionType.EQ:
        return _equals(actual, expected)
    if expr.type == ExpressionType.IN:
        return any(_equals(actual, v) for v in expected)

    try:
        if expr.type == ExpressionType.GT:
            return actual > expected
        if expr.type == ExpressionType.GTE:
            return actual >= expected
        if expr.type == ExpressionType.LT:
            return actual < expected
        return actual <= expected
    except TypeError:
        return False


def _equals(actual: Any, expected: Any) -> bool:
    # list-valued metadata (tags) matches when any element matches
    if isinstance(actual, (list, tuple, set)):
        return expected in actual
    return actual == expected
