"""Boolean search query parser and evaluator.

Supported syntax:
- Simple terms: ``markdown``
- Exact phrases: ``"exact match"``
- AND: ``react AND test``
- OR: ``vue OR react``
- NOT: ``code AND NOT test``
- Grouping: ``(react OR vue) AND tutorial``

Precedence, highest first: parentheses, NOT, AND, OR. Operator keywords are
case-insensitive; quoted operator text is an ordinary term.

Parsing never raises. A malformed logical query degrades to a single literal
term and the parse error is reported in ``ParseResult.error``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Union

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator


# ========== AST ==========


@dataclass(frozen=True)
class Term:
    """Leaf node: a search term, optionally an exact phrase."""

    value: str
    exact: bool = False


@dataclass(frozen=True)
class And:
    left: QueryNode
    right: QueryNode


@dataclass(frozen=True)
class Or:
    left: QueryNode
    right: QueryNode


@dataclass(frozen=True)
class Not:
    operand: QueryNode


QueryNode = Union[Term, And, Or, Not]


@dataclass
class ParseResult:
    """Result of parsing a search query."""

    ast: QueryNode | None
    is_logical_query: bool
    terms: list[str] = field(default_factory=list)
    error: str | None = None


class QuerySyntaxError(ValueError):
    """Raised internally by the parser; never escapes parse_search_query."""


# ========== Lexer ==========

TERM = "TERM"
AND = "AND"
OR = "OR"
NOT = "NOT"
LPAREN = "LPAREN"
RPAREN = "RPAREN"
EOF = "EOF"

_OPERATORS = {"AND": AND, "OR": OR, "NOT": NOT}


@dataclass(frozen=True)
class Token:
    type: str
    value: str
    exact: bool = False


def tokenize(query: str) -> list[Token]:
    """Split a query into tokens, ending with an EOF token.

    Quoted runs become exact TERM tokens (backslash escapes the next
    character, an unclosed quote runs to the end of input). Bare words
    become operator tokens when they spell AND/OR/NOT in any case.
    """
    tokens: list[Token] = []
    i = 0
    n = len(query)

    while i < n:
        char = query[i]

        if char.isspace():
            i += 1
            continue

        if char == "(":
            tokens.append(Token(LPAREN, "("))
            i += 1
            continue

        if char == ")":
            tokens.append(Token(RPAREN, ")"))
            i += 1
            continue

        if char == '"':
            i += 1
            chars: list[str] = []
            while i < n and query[i] != '"':
                if query[i] == "\\" and i + 1 < n:
                    i += 1
                chars.append(query[i])
                i += 1
            i += 1  # closing quote (or past the end)
            tokens.append(Token(TERM, "".join(chars), exact=True))
            continue

        start = i
        while i < n and not query[i].isspace() and query[i] not in '()"':
            i += 1
        word = query[start:i]
        op = _OPERATORS.get(word.upper())
        tokens.append(Token(op, word) if op else Token(TERM, word))

    tokens.append(Token(EOF, ""))
    return tokens


# ========== Parser ==========


class Parser:
    """Recursive-descent parser over a token list.

    Grammar::

        expression := or_expr
        or_expr    := and_expr (OR and_expr)*
        and_expr   := not_expr (AND not_expr)*
        not_expr   := NOT not_expr | primary
        primary    := TERM | LPAREN expression RPAREN
    """

    def __init__(self, tokens: list[Token]):
        self._tokens = tokens
        self._pos = 0
        self.terms: list[str] = []

    @property
    def _current(self) -> Token:
        return self._tokens[self._pos]

    def _eat(self, token_type: str) -> Token:
        token = self._current
        if token.type != token_type:
            raise QuerySyntaxError(
                f"Unexpected token: expected {token_type}, got {token.type}"
            )
        self._pos += 1
        return token

    def parse(self) -> QueryNode:
        if self._current.type == EOF:
            raise QuerySyntaxError("Empty query")

        node = self._or_expr()

        if self._current.type != EOF:
            raise QuerySyntaxError("Unexpected tokens after expression")
        return node

    def _or_expr(self) -> QueryNode:
        node = self._and_expr()
        while self._current.type == OR:
            self._eat(OR)
            node = Or(node, self._and_expr())
        return node

    def _and_expr(self) -> QueryNode:
        node = self._not_expr()
        while self._current.type == AND:
            self._eat(AND)
            node = And(node, self._not_expr())
        return node

    def _not_expr(self) -> QueryNode:
        if self._current.type == NOT:
            self._eat(NOT)
            return Not(self._not_expr())
        return self._primary()

    def _primary(self) -> QueryNode:
        token = self._current

        if token.type == TERM:
            self._eat(TERM)
            self.terms.append(token.value)
            return Term(token.value, exact=token.exact)

        if token.type == LPAREN:
            self._eat(LPAREN)
            node = self._or_expr()
            self._eat(RPAREN)
            return node

        raise QuerySyntaxError(f"Unexpected token: {token.type}")


def _is_quote_wrapped(text: str) -> bool:
    return len(text) >= 2 and text.startswith('"') and text.endswith('"')


def parse_search_query(query: str) -> ParseResult:
    """
    Parse a search query into an AST.

    Args:
        query: Raw user query

    Returns:
        ParseResult. Queries without operator keywords are a single term
        (exact if fully quote-wrapped) with ``is_logical_query`` False.
        Malformed logical queries degrade to one literal term with
        ``error`` set.
    """
    if not query or not query.strip():
        return ParseResult(ast=None, is_logical_query=False, terms=[])

    trimmed = query.strip()
    tokens = tokenize(trimmed)

    if not any(t.type in (AND, OR, NOT) for t in tokens):
        if _is_quote_wrapped(trimmed):
            value = trimmed[1:-1]
            return ParseResult(
                ast=Term(value, exact=True),
                is_logical_query=False,
                terms=[value],
            )
        return ParseResult(
            ast=Term(trimmed), is_logical_query=False, terms=[trimmed]
        )

    parser = Parser(tokens)
    try:
        ast = parser.parse()
    except QuerySyntaxError as e:
        return ParseResult(
            ast=Term(trimmed),
            is_logical_query=False,
            terms=[trimmed],
            error=str(e),
        )

    return ParseResult(ast=ast, is_logical_query=True, terms=parser.terms)


parse = parse_search_query


def evaluate_query(
    node: QueryNode,
    item: Any,
    matcher: Callable[[str, Any, bool], bool],
) -> bool:
    """
    Evaluate a query AST against an item.

    Args:
        node: Query AST
        item: Anything the matcher understands
        matcher: ``matcher(term, item, exact) -> bool``; must be
            side-effect free, since AND/OR short-circuit

    Returns:
        True if the item satisfies the query.
    """
    if isinstance(node, Term):
        return bool(matcher(node.value, item, node.exact))
    if isinstance(node, And):
        return evaluate_query(node.left, item, matcher) and evaluate_query(
            node.right, item, matcher
        )
    if isinstance(node, Or):
        return evaluate_query(node.left, item, matcher) or evaluate_query(
            node.right, item, matcher
        )
    if isinstance(node, Not):
        return not evaluate_query(node.operand, item, matcher)
    raise TypeError(f"Not a query node: {node!r}")


def extract_terms(node: QueryNode) -> list[str]:
    """Return the literal terms of a query, depth-first, left to right."""
    return [term.value for term in iter_terms(node)]


def iter_terms(node: QueryNode) -> Iterator[Term]:
    """Yield the Term leaves of a query in evaluation order."""
    if isinstance(node, Term):
        yield node
    elif isinstance(node, (And, Or)):
        yield from iter_terms(node.left)
        yield from iter_terms(node.right)
    elif isinstance(node, Not):
        yield from iter_terms(node.operand)


def positive_terms(node: QueryNode) -> list[Term]:
    """Terms that appear under an even number of NOTs."""
    found: list[Term] = []

    def walk(n: QueryNode, negated: bool) -> None:
        if isinstance(n, Term):
            if not negated:
                found.append(n)
        elif isinstance(n, (And, Or)):
            walk(n.left, negated)
            walk(n.right, negated)
        elif isinstance(n, Not):
            walk(n.operand, not negated)

    walk(node, False)
    return found


def query_node_to_string(node: QueryNode) -> str:
    """Render a fully parenthesized query string (for logs and tests)."""
    if isinstance(node, Term):
        return f'"{node.value}"' if node.exact else node.value
    if isinstance(node, And):
        left = query_node_to_string(node.left)
        right = query_node_to_string(node.right)
        return f"({left} AND {right})"
    if isinstance(node, Or):
        left = query_node_to_string(node.left)
        right = query_node_to_string(node.right)
        return f"({left} OR {right})"
    if isinstance(node, Not):
        return f"NOT {query_node_to_string(node.operand)}"
    raise TypeError(f"Not a query node: {node!r}")
