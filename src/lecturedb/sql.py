"""
Statement translation over a token stream.

Application code writes statements with positional ``?`` placeholders and a
source-dialect vocabulary. Translation runs three passes, each over a fresh
tokenization of the statement:

    SQL → GROUP_CONCAT rewrite → identity-retrieval rewrite → bind placeholders

Tokenization keeps string literals, quoted identifiers and comments intact so
that a ``?`` inside them is never treated as a parameter marker.

Main entry point:
- `translate(sql, params, strategy)` - Full translation for a dialect strategy

Individual passes:
- `rewrite_group_concat()` - GROUP_CONCAT(x) to the dialect's string aggregation
- `rewrite_identity_insert()` - Single-row INSERT returns the generated identity
- `bind_placeholders()` - ``?`` markers to ``:pN`` named bindings
"""
import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import TYPE_CHECKING, Any

import sqlalchemy as sa
from lecturedb.exceptions import PlaceholderMismatchError
from lecturedb.types import ParameterBinding, make_binding

if TYPE_CHECKING:
    from lecturedb.strategy.base import DialectStrategy

logger = logging.getLogger(__name__)

# =============================================================================
# Data Structures
# =============================================================================


class TokenType(Enum):
    """Token types identified during SQL scanning."""
    STRING_LITERAL = auto()
    QUOTED_IDENT = auto()       # "name" or [name]
    COMMENT = auto()
    POSITIONAL_PH = auto()      # ?
    WORD = auto()
    OPEN_PAREN = auto()
    CLOSE_PAREN = auto()
    COMMA = auto()
    SEMICOLON = auto()
    WHITESPACE = auto()
    SYMBOL = auto()


@dataclass(slots=True)
class Token:
    """Token from SQL scanning."""
    type: TokenType
    text: str
    start: int
    end: int

    @property
    def significant(self) -> bool:
        return self.type not in {TokenType.WHITESPACE, TokenType.COMMENT}

    def is_word(self, *words: str) -> bool:
        return self.type is TokenType.WORD and self.text.upper() in words


@dataclass(slots=True)
class TranslatedQuery:
    """Statement ready for execution plus its bindings."""
    sql: str
    bindings: list[ParameterBinding] = field(default_factory=list)
    returns_identity: bool = False
    identity_column: str | None = None

    def statement(self) -> sa.TextClause:
        """Build the executable SQLAlchemy text clause."""
        clause = sa.text(self.sql)
        if self.bindings:
            clause = clause.bindparams(*[b.bindparam() for b in self.bindings])
        return clause


# =============================================================================
# Tokenizer
# =============================================================================

_TOKENIZE = re.compile(r"""
    (?P<string>N?'(?:[^']|'')*')
    |(?P<quoted>"(?:[^"]|"")*"|\[(?:[^\]]|\]\])*\])
    |(?P<comment>--[^\n]*|/\*.*?\*/)
    |(?P<qmark>\?)
    |(?P<word>\w+)
    |(?P<open_paren>\()
    |(?P<close_paren>\))
    |(?P<comma>,)
    |(?P<semicolon>;)
    |(?P<space>\s+)
    |(?P<symbol>.)
""", re.VERBOSE | re.DOTALL)

_GROUP_TYPES = {
    'string': TokenType.STRING_LITERAL,
    'quoted': TokenType.QUOTED_IDENT,
    'comment': TokenType.COMMENT,
    'qmark': TokenType.POSITIONAL_PH,
    'word': TokenType.WORD,
    'open_paren': TokenType.OPEN_PAREN,
    'close_paren': TokenType.CLOSE_PAREN,
    'comma': TokenType.COMMA,
    'semicolon': TokenType.SEMICOLON,
    'space': TokenType.WHITESPACE,
    'symbol': TokenType.SYMBOL,
}

# A colon that sa.text() would read as a bind parameter
_BIND_COLON = re.compile(r'(?<![:\w\\]):(?=\w)')


def tokenize_sql(sql: str) -> list[Token]:
    """Scan SQL into tokens in a single pass.

    Parameters
        sql: SQL statement

    Returns
        List of tokens whose texts concatenate back to `sql`
    """
    return [
        Token(_GROUP_TYPES[match.lastgroup], match.group(0), match.start(), match.end())
        for match in _TOKENIZE.finditer(sql)
        ]


def _next_significant(tokens: list[Token], start: int) -> int | None:
    for i in range(start, len(tokens)):
        if tokens[i].significant:
            return i
    return None


def _matching_paren(tokens: list[Token], open_idx: int) -> int | None:
    """Index of the CLOSE_PAREN balancing the OPEN_PAREN at `open_idx`."""
    depth = 0
    for i in range(open_idx, len(tokens)):
        if tokens[i].type is TokenType.OPEN_PAREN:
            depth += 1
        elif tokens[i].type is TokenType.CLOSE_PAREN:
            depth -= 1
            if depth == 0:
                return i
    return None


def count_placeholders(sql: str) -> int:
    """Count genuine positional placeholders in a statement."""
    if not sql or '?' not in sql:
        return 0
    return sum(1 for t in tokenize_sql(sql) if t.type is TokenType.POSITIONAL_PH)


# =============================================================================
# Rewrites
# =============================================================================

_NOT_SINGLE_ARGUMENT = {'DISTINCT', 'ALL', 'ORDER', 'SEPARATOR'}


def _is_single_argument(arg: list[Token]) -> bool:
    """True for a single plain argument expression."""
    depth = 0
    significant = [t for t in arg if t.significant]
    if not significant:
        return False
    for tok in significant:
        if tok.type is TokenType.OPEN_PAREN:
            depth += 1
        elif tok.type is TokenType.CLOSE_PAREN:
            depth -= 1
        elif depth == 0 and tok.type is TokenType.COMMA:
            return False
        elif depth == 0 and tok.is_word(*_NOT_SINGLE_ARGUMENT):
            return False
    return True


def rewrite_group_concat(sql: str, strategy: 'DialectStrategy') -> str:
    """Rewrite ``GROUP_CONCAT(expr)`` calls into the dialect's string aggregation.

    Only single-argument calls are rewritten; anything else is left as is.

    >>> from lecturedb.strategy import get_strategy
    >>> rewrite_group_concat('SELECT GROUP_CONCAT(s.name) FROM s', get_strategy('mssql'))
    "SELECT STRING_AGG(CAST(s.name AS NVARCHAR(MAX)), ', ') FROM s"
    """
    if not sql or 'group_concat' not in sql.lower():
        return sql

    tokens = tokenize_sql(sql)
    parts: list[str] = []
    i = 0
    while i < len(tokens):
        tok = tokens[i]
        if tok.is_word('GROUP_CONCAT'):
            open_idx = _next_significant(tokens, i + 1)
            if open_idx is not None and tokens[open_idx].type is TokenType.OPEN_PAREN:
                close_idx = _matching_paren(tokens, open_idx)
                if close_idx is not None:
                    arg = tokens[open_idx + 1:close_idx]
                    if _is_single_argument(arg):
                        expr = ''.join(t.text for t in arg).strip()
                        parts.append(strategy.string_agg(expr))
                        i = close_idx + 1
                        continue
                    logger.debug(f'Leaving GROUP_CONCAT call untouched: {sql[tok.start:tokens[close_idx].end]}')
        parts.append(tok.text)
        i += 1
    return ''.join(parts)


@dataclass(slots=True)
class InsertShape:
    """Positions of a single-row ``INSERT INTO t (cols) VALUES (vals)``."""
    table: str
    columns: str
    values: str
    values_keyword: Token
    values_close: Token


def _table_name_end(tokens: list[Token], idx: int) -> int | None:
    """Index of the last token of a (possibly dotted) table name at `idx`."""
    name_types = {TokenType.WORD, TokenType.QUOTED_IDENT}
    if idx is None or tokens[idx].type not in name_types:
        return None
    end = idx
    while True:
        dot = _next_significant(tokens, end + 1)
        if dot is None or tokens[dot].type is not TokenType.SYMBOL or tokens[dot].text != '.':
            return end
        part = _next_significant(tokens, dot + 1)
        if part is None or tokens[part].type not in name_types:
            return None
        end = part


def match_single_row_insert(sql: str) -> InsertShape | None:
    """Recognize ``INSERT INTO table (cols) VALUES (vals)`` with one VALUES row.

    Returns None for multi-row VALUES, INSERT ... SELECT, statements that
    already return rows, and anything followed by more SQL.
    """
    if not sql or 'insert' not in sql.lower():
        return None

    tokens = tokenize_sql(sql)
    idx = _next_significant(tokens, 0)
    if idx is None or not tokens[idx].is_word('INSERT'):
        return None
    idx = _next_significant(tokens, idx + 1)
    if idx is None or not tokens[idx].is_word('INTO'):
        return None

    table_start = _next_significant(tokens, idx + 1)
    table_end = _table_name_end(tokens, table_start)
    if table_end is None:
        return None

    cols_open = _next_significant(tokens, table_end + 1)
    if cols_open is None or tokens[cols_open].type is not TokenType.OPEN_PAREN:
        return None
    cols_close = _matching_paren(tokens, cols_open)
    if cols_close is None:
        return None

    values_kw = _next_significant(tokens, cols_close + 1)
    if values_kw is None or not tokens[values_kw].is_word('VALUES'):
        return None
    vals_open = _next_significant(tokens, values_kw + 1)
    if vals_open is None or tokens[vals_open].type is not TokenType.OPEN_PAREN:
        return None
    vals_close = _matching_paren(tokens, vals_open)
    if vals_close is None:
        return None

    rest = _next_significant(tokens, vals_close + 1)
    if rest is not None:
        if tokens[rest].type is not TokenType.SEMICOLON or _next_significant(tokens, rest + 1) is not None:
            return None

    def text(first: int, last: int) -> str:
        return ''.join(t.text for t in tokens[first:last + 1])

    return InsertShape(
        table=text(table_start, table_end),
        columns=text(cols_open + 1, cols_close - 1).strip(),
        values=text(vals_open + 1, vals_close - 1).strip(),
        values_keyword=tokens[values_kw],
        values_close=tokens[vals_close],
        )


def rewrite_identity_insert(sql: str, strategy: 'DialectStrategy',
                            identity_column: str = 'id') -> tuple[str, bool]:
    """Make a single-row INSERT also return the generated identity value.

    Returns the (possibly rewritten) SQL and whether the rewrite applied.
    Table, column list and value list are kept verbatim.
    """
    shape = match_single_row_insert(sql)
    if shape is None:
        if sql and sql.lstrip().upper().startswith('INSERT'):
            logger.debug('INSERT shape not recognized; identity will be unavailable')
        return sql, False

    clause = strategy.identity_clause(identity_column)
    if strategy.identity_position == 'before_values':
        pos = shape.values_keyword.start
        return f'{sql[:pos]}{clause} {sql[pos:]}', True

    pos = shape.values_close.end
    return f'{sql[:pos]} {clause}{sql[pos:]}', True


# =============================================================================
# Placeholder binding
# =============================================================================

def _escape_bind_colons(text: str) -> str:
    return _BIND_COLON.sub(r'\\:', text)


def bind_placeholders(sql: str, params: Sequence[Any]) -> tuple[str, list[ParameterBinding]]:
    """Replace the i-th ``?`` marker with ``:p<i>`` and build its binding.

    Colons elsewhere in the statement are escaped so sa.text() does not read
    them as bind parameters.

    Raises
        PlaceholderMismatchError: placeholder count differs from len(params)
    """
    params = list(params or ())
    tokens = tokenize_sql(sql)
    placeholder_count = sum(1 for t in tokens if t.type is TokenType.POSITIONAL_PH)
    if placeholder_count != len(params):
        raise PlaceholderMismatchError(placeholder_count, len(params))

    parts: list[str] = []
    pending: list[str] = []
    bindings: list[ParameterBinding] = []
    for tok in tokens:
        if tok.type is TokenType.POSITIONAL_PH:
            parts.append(_escape_bind_colons(''.join(pending)))
            pending = []
            binding = make_binding(len(bindings), params[len(bindings)])
            parts.append(f':{binding.name}')
            bindings.append(binding)
        else:
            pending.append(tok.text)
    parts.append(_escape_bind_colons(''.join(pending)))
    return ''.join(parts), bindings


# =============================================================================
# Main Entry Point
# =============================================================================

def translate(sql: str, params: Sequence[Any] | None, strategy: 'DialectStrategy',
              identity_column: str = 'id') -> TranslatedQuery:
    """Translate a positional-placeholder statement for a dialect.

    Parameters
        sql: Statement with ``?`` placeholders
        params: Ordered scalar parameters (or `Param` tags)
        strategy: Target dialect strategy
        identity_column: Column returned by rewritten INSERT statements

    Returns
        TranslatedQuery with SQL, bindings and identity flag
    """
    if not sql or not sql.strip():
        raise ValueError('SQL statement is empty')

    translated = rewrite_group_concat(sql, strategy)
    translated, returns_identity = rewrite_identity_insert(translated, strategy, identity_column)
    translated, bindings = bind_placeholders(translated, params or ())

    return TranslatedQuery(
        sql=translated,
        bindings=bindings,
        returns_identity=returns_identity,
        identity_column=identity_column if returns_identity else None,
        )
