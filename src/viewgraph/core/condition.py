"""
Condition translator - turns the condition DSL into a SQL predicate.

Grammar:

    expr       := term ((AND | OR) term)*
    term       := comparison | "(" expr ")"
    comparison := field op value | field IS [NOT] NULL
    op         := = | != | <> | > | < | >= | <=
    value      := null | TODAY | number | date | 'string' | "string"
                  | true | false | qualified.column | bare_word

Examples:
    exit_date=null OR exit_date>TODAY
        -> (src.exit_date IS NULL OR src.exit_date > date('now'))
    status=active AND (end_date=null OR end_date>=2024-01-01)
        -> (src.status = 'active' AND (src.end_date IS NULL OR src.end_date >= '2024-01-01'))

AND / OR are emitted in the order written. Only explicit parentheses group.

The condition is parsed into an AST first; rendering is a pure function of
that AST, so bare fields are prefixed exactly once and keywords or already
qualified names are never touched.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Optional, Union

from .errors import ConditionSyntaxError
from .utils import sql_literal


TODAY_SQL = "date('now')"

COMPARISON_OPS = {"=", "!=", "<>", ">", "<", ">=", "<="}
KEYWORDS = {"AND", "OR", "IS", "NOT", "NULL", "TODAY", "TRUE", "FALSE"}

_TOKEN_PATTERN = re.compile(
    r"""
    (?P<ws>\s+)
  | (?P<date>\d{4}-\d{2}-\d{2}(?:[T\s]\d{2}:\d{2}(?::\d{2})?)?)
  | (?P<number>-?\d+(?:\.\d+)?)
  | (?P<string>'(?:[^']|'')*'|"[^"]*")
  | (?P<op>>=|<=|!=|<>|=|>|<)
  | (?P<lparen>\()
  | (?P<rparen>\))
  | (?P<ident>[A-Za-z_]\w*(?:\.[A-Za-z_]\w*)*)
    """,
    re.VERBOSE,
)


# =============================================================================
# AST
# =============================================================================


@dataclass(frozen=True)
class Field:
    """Column reference on the left-hand side of a comparison."""
    name: str

    @property
    def is_qualified(self) -> bool:
        return "." in self.name


@dataclass(frozen=True)
class ColumnRef:
    """Qualified column reference used as a value (e.g. b.entry_date)."""
    name: str


@dataclass(frozen=True)
class Literal:
    """Constant value (string, number or boolean)."""
    value: Union[str, int, float, bool]


@dataclass(frozen=True)
class Null:
    pass


@dataclass(frozen=True)
class Today:
    pass


Value = Union[ColumnRef, Literal, Null, Today]


@dataclass(frozen=True)
class Comparison:
    """{op, left, right} for a single predicate."""
    op: str  # comparison op, or "IS" / "IS NOT" against NULL
    left: Field
    right: Value


@dataclass(frozen=True)
class BoolOp:
    """{op, left, right} for AND / OR, nested left to right as written."""
    op: str  # "AND" | "OR"
    left: "Node"
    right: "Node"


@dataclass(frozen=True)
class Group:
    """Explicit parentheses from the source text."""
    expr: "Node"


Node = Union[Comparison, BoolOp, Group]


# =============================================================================
# Lexer / parser
# =============================================================================


@dataclass(frozen=True)
class _Token:
    kind: str
    text: str
    pos: int


def _tokenize(condition: str) -> list[_Token]:
    tokens: list[_Token] = []
    pos = 0
    while pos < len(condition):
        match = _TOKEN_PATTERN.match(condition, pos)
        if not match:
            raise ConditionSyntaxError(condition, f"unexpected character {condition[pos]!r}", pos)
        kind = match.lastgroup
        text = match.group(kind)
        if kind == "ident" and text.upper() in KEYWORDS:
            kind = "keyword"
            text = text.upper()
        if kind != "ws":
            tokens.append(_Token(kind, text, pos))
        pos = match.end()
    return tokens


class _Parser:
    """Recursive-descent parser over the token list."""

    def __init__(self, condition: str):
        self.condition = condition
        self.tokens = _tokenize(condition)
        self.index = 0

    def parse(self) -> Node:
        if not self.tokens:
            raise ConditionSyntaxError(self.condition, "empty condition")
        node = self._expr()
        if self._peek() is not None:
            token = self._peek()
            raise ConditionSyntaxError(self.condition, f"unexpected {token.text!r}", token.pos)
        return node

    def _peek(self) -> Optional[_Token]:
        return self.tokens[self.index] if self.index < len(self.tokens) else None

    def _next(self, expected: str) -> _Token:
        token = self._peek()
        if token is None:
            raise ConditionSyntaxError(self.condition, f"expected {expected}, got end of input")
        self.index += 1
        return token

    def _expr(self) -> Node:
        node = self._term()
        while True:
            token = self._peek()
            if token is None or token.kind != "keyword" or token.text not in ("AND", "OR"):
                return node
            self.index += 1
            node = BoolOp(op=token.text, left=node, right=self._term())

    def _term(self) -> Node:
        token = self._peek()
        if token is not None and token.kind == "lparen":
            self.index += 1
            inner = self._expr()
            closing = self._next("')'")
            if closing.kind != "rparen":
                raise ConditionSyntaxError(self.condition, f"expected ')', got {closing.text!r}", closing.pos)
            return Group(inner)
        return self._comparison()

    def _comparison(self) -> Comparison:
        token = self._next("field name")
        if token.kind != "ident":
            raise ConditionSyntaxError(self.condition, f"expected field name, got {token.text!r}", token.pos)
        left = Field(token.text)

        op_token = self._next("comparison operator")
        if op_token.kind == "keyword" and op_token.text == "IS":
            negate = False
            nxt = self._next("NULL")
            if nxt.kind == "keyword" and nxt.text == "NOT":
                negate = True
                nxt = self._next("NULL")
            if not (nxt.kind == "keyword" and nxt.text == "NULL"):
                raise ConditionSyntaxError(self.condition, "IS must be followed by [NOT] NULL", nxt.pos)
            return Comparison(op="IS NOT" if negate else "IS", left=left, right=Null())

        if op_token.kind != "op":
            raise ConditionSyntaxError(
                self.condition, f"expected comparison operator, got {op_token.text!r}", op_token.pos
            )
        right = self._value()

        if isinstance(right, Null):
            if op_token.text == "=":
                return Comparison(op="IS", left=left, right=right)
            if op_token.text in ("!=", "<>"):
                return Comparison(op="IS NOT", left=left, right=right)
            raise ConditionSyntaxError(
                self.condition, "null can only be compared with = or !=", op_token.pos
            )
        return Comparison(op=op_token.text, left=left, right=right)

    def _value(self) -> Value:
        token = self._next("value")
        if token.kind == "keyword":
            if token.text == "NULL":
                return Null()
            if token.text == "TODAY":
                return Today()
            if token.text in ("TRUE", "FALSE"):
                return Literal(token.text == "TRUE")
            raise ConditionSyntaxError(self.condition, f"unexpected keyword {token.text!r}", token.pos)
        if token.kind == "number":
            return Literal(float(token.text) if "." in token.text else int(token.text))
        if token.kind == "date":
            return Literal(token.text)
        if token.kind == "string":
            quote = token.text[0]
            body = token.text[1:-1]
            if quote == "'":
                body = body.replace("''", "'")
            return Literal(body)
        if token.kind == "ident":
            if "." in token.text:
                return ColumnRef(token.text)
            return Literal(token.text)
        raise ConditionSyntaxError(self.condition, f"expected value, got {token.text!r}", token.pos)


# =============================================================================
# Translator
# =============================================================================


class ConditionTranslator:
    """
    Parses condition strings and renders them as SQL predicates.

    Usage:
        translator = ConditionTranslator()
        translator.translate("exit_date=null OR exit_date>TODAY", "src")
        # "(src.exit_date IS NULL OR src.exit_date > date('now'))"

    Args:
        today_sql: SQL expression substituted for TODAY
    """

    def __init__(self, today_sql: str = TODAY_SQL):
        self.today_sql = today_sql

    def parse(self, condition: str) -> Node:
        """Parse a condition into its AST. Raises ConditionSyntaxError."""
        return _Parser(condition).parse()

    def render(
        self,
        node: Node,
        alias: str = "",
        resolve: Optional[Callable[[str], str]] = None,
    ) -> str:
        """Render an AST node; bare fields get "{alias}." exactly once."""
        if isinstance(node, BoolOp):
            return f"{self.render(node.left, alias, resolve)} {node.op} {self.render(node.right, alias, resolve)}"
        if isinstance(node, Group):
            return f"({self.render(node.expr, alias, resolve)})"
        left = self._render_field(node.left, alias, resolve)
        return f"{left} {node.op} {self._render_value(node.right)}"

    def translate(
        self,
        condition: str,
        alias: str = "",
        resolve: Optional[Callable[[str], str]] = None,
    ) -> str:
        """
        Translate a condition to a parenthesized SQL predicate.

        Args:
            condition: Condition DSL text
            alias: Table alias for bare fields ("" leaves them unqualified)
            resolve: Optional mapping of field names (e.g. display names) to column names
        """
        return f"({self.render(self.parse(condition), alias, resolve)})"

    def _render_field(self, field: Field, alias: str, resolve: Optional[Callable[[str], str]]) -> str:
        if field.is_qualified:
            return field.name
        name = resolve(field.name) if resolve else field.name
        return f"{alias}.{name}" if alias else name

    def _render_value(self, value: Value) -> str:
        if isinstance(value, Null):
            return "NULL"
        if isinstance(value, Today):
            return self.today_sql
        if isinstance(value, ColumnRef):
            return value.name
        return sql_literal(value.value)


def translate_condition(
    condition: str,
    alias: str = "",
    today_sql: str = TODAY_SQL,
    resolve: Optional[Callable[[str], str]] = None,
) -> str:
    """Convenience wrapper around ConditionTranslator.translate()."""
    return ConditionTranslator(today_sql).translate(condition, alias, resolve)
