"""Single-table extraction from dump text.

A single forward pass over the dump's statements.  The DDL span is the
``CREATE TABLE <name>`` statement; after it, ``INSERT INTO <name>``
statements are collected until a ``CREATE TABLE`` for another table
appears once this table's data has started.  mysqldump interleaves each
table's DDL and data, so that is the next table; pg_dump writes every
``CREATE TABLE`` before any data, so the scan carries on into the data
section.

Statement boundaries come from the same quote- and escape-aware scanner
the restore fallback uses, so parentheses or terminators inside string
literals and quoted identifiers (``'a); DROP'``) never end a span early,
and several statements sharing one line are still told apart.  Data
loaded with ``COPY ... FROM stdin`` is not recognized; db-vault's own
dumps use INSERT statements.

Usage:
    found = extract_table(dump_text, "users", get_dialect("mysql"))
    if found is None:
        ...  # no CREATE TABLE for users
    else:
        await client.execute_script(found.sql)
"""

import bisect
import re
from dataclasses import dataclass, field

from db_vault.dialects.base import Dialect
from db_vault.restore.statements import iter_statements, strip_leading_comments


@dataclass
class TableRange:
    """DDL and data statements for one table.

    Spans are zero-based, inclusive line numbers in the dump text.
    """

    table: str
    ddl: str
    ddl_span: tuple[int, int]
    inserts: list[str] = field(default_factory=list)
    insert_spans: list[tuple[int, int]] = field(default_factory=list)

    @property
    def sql(self) -> str:
        """Executable script: DDL then inserts, each terminated."""
        return "".join(f"{stmt};\n" for stmt in [self.ddl, *self.inserts])

    @property
    def statement_count(self) -> int:
        return 1 + len(self.inserts)


def _patterns(dialect: Dialect) -> tuple[re.Pattern, re.Pattern]:
    ident = dialect.identifier_pattern()
    qualified = rf"(?:(?:{ident})\.)?(?P<name>{ident})"
    create = re.compile(
        rf"CREATE\s+(?:(?:GLOBAL\s+|LOCAL\s+)?(?:TEMPORARY|TEMP|UNLOGGED)\s+)?TABLE\s+"
        rf"(?:IF\s+NOT\s+EXISTS\s+)?{qualified}",
        re.IGNORECASE,
    )
    insert = re.compile(
        rf"(?:INSERT|REPLACE)\s+(?:IGNORE\s+)?INTO\s+{qualified}", re.IGNORECASE
    )
    return create, insert


def _same_table(dialect: Dialect, token: str, table: str) -> bool:
    name = dialect.unquote_identifier(token)
    if name == table:
        return True
    # Unquoted identifiers are case-insensitive
    return token == name and name.lower() == table.lower()


class _LineIndex:
    def __init__(self, text: str) -> None:
        self._starts = [0] + [m.end() for m in re.finditer("\n", text)]

    def line_of(self, offset: int) -> int:
        return bisect.bisect_right(self._starts, offset) - 1


def list_tables(text: str, dialect: Dialect) -> list[str]:
    """Names of all tables created in ``text``, in order of appearance."""
    create_re, _ = _patterns(dialect)
    seen: list[str] = []
    for stmt in iter_statements(text, dialect):
        m = create_re.match(strip_leading_comments(stmt.text))
        if m:
            name = dialect.unquote_identifier(m.group("name"))
            if name not in seen:
                seen.append(name)
    return seen


def extract_table(text: str, table: str, dialect: Dialect) -> TableRange | None:
    """Extract the CREATE TABLE and data statements for ``table``.

    Args:
        text: Decoded dump text.
        table: Unquoted table name.
        dialect: Dialect of the dump (identifier quoting, escapes).

    Returns:
        ``TableRange`` (possibly with no inserts), or None when the dump has
        no ``CREATE TABLE`` for ``table``.
    """
    create_re, insert_re = _patterns(dialect)
    lines = _LineIndex(text)
    found: TableRange | None = None

    for stmt in iter_statements(text, dialect):
        code = strip_leading_comments(stmt.text)
        code_start = stmt.end - len(code)
        span = (lines.line_of(code_start), lines.line_of(max(stmt.end - 1, code_start)))

        create = create_re.match(code)
        if found is None:
            if create and _same_table(dialect, create.group("name"), table):
                found = TableRange(table=table, ddl=code, ddl_span=span)
            continue

        if create and not _same_table(dialect, create.group("name"), table):
            if found.inserts:
                break
            continue
        insert = insert_re.match(code)
        if insert and _same_table(dialect, insert.group("name"), table):
            found.inserts.append(code)
            found.insert_spans.append(span)

    return found
