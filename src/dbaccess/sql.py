"""
SQL placeholder processing with a single-pass tokenizer.

    SQL → Tokenize → Rewrite placeholders → (sql, args)
           (once)       (one pass)

Statements reach this module with `?` (positional) or `:name` (named)
placeholders. Both are rewritten to the connection dialect's positional
marker so the driver only ever sees one parameter style. String literals,
quoted identifiers, comments and PostgreSQL `::` casts are never rewritten.

Main entry points:
- `bind_positional()` - Rewrite `?` markers for a dialect
- `bind_named()` - Resolve `:name` markers to an ordered argument tuple
- `has_returning_clause()` - Check if an insert already returns columns
- `strip_statement_end()` - Drop trailing comments and semicolons
- `insert_target_table()` - Find the table an INSERT writes to
- `quote_identifier()` - Quote table/column names
"""
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any

from dbaccess.exceptions import BindingError


class TokenType(Enum):
    """Token types identified during SQL parsing."""
    SQL_TEXT = auto()
    STRING_LITERAL = auto()
    QUOTED_IDENTIFIER = auto()
    COMMENT = auto()
    CAST = auto()               # ::type
    POSITIONAL_PH = auto()      # ?
    NAMED_PH = auto()           # :name


@dataclass(slots=True)
class Token:
    """Token from SQL parsing."""
    type: TokenType
    text: str
    start: int
    end: int
    name: str | None = None


_TOKENIZE = re.compile(r"""
    (?P<string>'(?:[^']|'')*')
    |(?P<ident>"(?:[^"]|"")*")
    |(?P<line_comment>--[^\n]*)
    |(?P<block_comment>/\*.*?\*/)
    |(?P<cast>::)
    |(?P<named>:(?P<pname>[A-Za-z_][A-Za-z0-9_]*))
    |(?P<qmark>\?)
""", re.VERBOSE | re.DOTALL)

_RETURNING = re.compile(r'\bRETURNING\b', re.IGNORECASE)
_STATEMENT_END = re.compile(r'[\s;]+$')

_IDENT = r'(?:"(?:[^"]|"")+"|[A-Za-z_][\w$]*)'
_INSERT_TARGET = re.compile(
    rf'^\s*(?:INSERT|REPLACE)\s+(?:OR\s+\w+\s+)?INTO\s+(?P<first>{_IDENT})(?:\s*\.\s*(?P<second>{_IDENT}))?',
    re.IGNORECASE)


def tokenize_sql(sql: str) -> list[Token]:
    """Parse SQL into tokens in a single pass.

    Parameters
        sql: SQL query string

    Returns
        List of tokens preserving all SQL text
    """
    tokens = []
    last_end = 0

    for match in _TOKENIZE.finditer(sql):
        start, end = match.span()

        if start > last_end:
            tokens.append(Token(
                type=TokenType.SQL_TEXT,
                text=sql[last_end:start],
                start=last_end,
                end=start
            ))

        name = None
        if match.group('string'):
            ttype = TokenType.STRING_LITERAL
        elif match.group('ident'):
            ttype = TokenType.QUOTED_IDENTIFIER
        elif match.group('line_comment') or match.group('block_comment'):
            ttype = TokenType.COMMENT
        elif match.group('cast'):
            ttype = TokenType.CAST
        elif match.group('named'):
            ttype = TokenType.NAMED_PH
            name = match.group('pname')
        else:
            ttype = TokenType.POSITIONAL_PH

        tokens.append(Token(type=ttype, text=match.group(0), start=start, end=end, name=name))
        last_end = end

    if last_end < len(sql):
        tokens.append(Token(
            type=TokenType.SQL_TEXT,
            text=sql[last_end:],
            start=last_end,
            end=len(sql)
        ))

    return tokens


def _escape(text: str, escape_percent: bool) -> str:
    return text.replace('%', '%%') if escape_percent else text


def bind_positional(sql: str, values: Sequence[Any], placeholder: str = '?',
                    escape_percent: bool = False) -> tuple[str, tuple | None]:
    """Rewrite `?` markers to the dialect's marker.

    Values are passed through in order; a count mismatch is left for the
    driver to report. Without values the SQL is returned verbatim and the
    argument tuple is None, so the driver runs it as a plain query.

    Parameters
        sql: SQL with `?` placeholders
        values: Parameter values in placeholder order
        placeholder: Dialect marker ('?' or '%s')
        escape_percent: Double literal `%` for drivers using `%s` markers

    Returns
        Tuple of (processed_sql, args)
    """
    if not values:
        return sql, None

    parts = []
    for token in tokenize_sql(sql):
        if token.type == TokenType.POSITIONAL_PH:
            parts.append(placeholder)
        else:
            parts.append(_escape(token.text, escape_percent))

    return ''.join(parts), tuple(values)


def bind_named(sql: str, values: Mapping[str, Any], placeholder: str = '?',
               escape_percent: bool = False) -> tuple[str, tuple | None]:
    """Resolve `:name` markers to the dialect's positional marker.

    A name may appear several times; its value is repeated in the argument
    tuple. Entries of `values` that the SQL never references are ignored.

    Raises
        BindingError: If the SQL references a name missing from `values`
    """
    tokens = tokenize_sql(sql)
    if not any(token.type == TokenType.NAMED_PH for token in tokens):
        return sql, None

    parts = []
    args = []
    for token in tokens:
        if token.type == TokenType.NAMED_PH:
            if token.name not in values:
                raise BindingError(token.name, sql)
            args.append(values[token.name])
            parts.append(placeholder)
        else:
            parts.append(_escape(token.text, escape_percent))

    return ''.join(parts), tuple(args)


def strip_statement_end(sql: str) -> str:
    """Drop trailing comments, whitespace and semicolons.

    Leaves the statement ready for a clause to be appended; a trailing `--`
    comment would otherwise swallow it.
    """
    tokens = tokenize_sql(sql)
    while tokens:
        last = tokens[-1]
        if last.type == TokenType.COMMENT:
            tokens.pop()
            continue
        if last.type == TokenType.SQL_TEXT:
            text = _STATEMENT_END.sub('', last.text)
            if not text:
                tokens.pop()
                continue
            return ''.join(token.text for token in tokens[:-1]) + text
        break
    return ''.join(token.text for token in tokens)


def has_returning_clause(sql: str) -> bool:
    """Check if SQL carries its own RETURNING clause."""
    return any(token.type == TokenType.SQL_TEXT and _RETURNING.search(token.text)
               for token in tokenize_sql(sql))


def _unquote(identifier: str) -> str:
    if identifier.startswith('"'):
        return identifier[1:-1].replace('""', '"')
    return identifier


def insert_target_table(sql: str) -> tuple[str | None, str] | None:
    """Find the (schema, table) an INSERT statement writes to.

    Returns
        (schema or None, table) with quotes removed, or None when `sql` is
        not a plain INSERT/REPLACE
    """
    match = _INSERT_TARGET.search(sql)
    if not match:
        return None
    first, second = match.group('first'), match.group('second')
    if second is None:
        return None, _unquote(first)
    return _unquote(first), _unquote(second)


def quote_identifier(identifier: str, dialect: str = 'postgresql') -> str:
    """Safely quote database identifiers.

    Parameters
        identifier: Table or column name
        dialect: Database dialect

    Returns
        Quoted identifier

    Raises
        ValueError: If dialect is unsupported
    """
    if dialect in {'postgresql', 'sqlite'}:
        return '"' + identifier.replace('"', '""') + '"'

    raise ValueError(f'Unknown dialect: {dialect}')
