"""SQL replay: bulk execution with a statement-by-statement fallback.

``iter_statements`` is a character scanner that understands quoted
strings and identifiers, backslash escapes (MySQL), dollar quoting
(PostgreSQL), comments, and mysqldump's client-side ``DELIMITER``
command.  It only splits on terminators outside all of those.
"""

import logging
import re
from collections.abc import Iterator
from dataclasses import dataclass, field

from db_vault.adapters.base import DatabaseClient
from db_vault.dialects.base import Dialect
from db_vault.errors import ConnectionLostError, RestoreExecutionError

logger = logging.getLogger(__name__)

MAX_LOGGED_ERRORS = 5

_PRIVILEGE_RE = re.compile(
    r"(?:CREATE\s+USER|GRANT|REVOKE|SET\s+PASSWORD|ALTER\s+ROLE|CREATE\s+ROLE)\b",
    re.IGNORECASE,
)
_LEADING_COMMENT_RE = re.compile(r"\s*(?:--[^\n]*(?:\n|$)|#[^\n]*(?:\n|$)|/\*(?!!).*?\*/)", re.DOTALL)
_DOLLAR_TAG_RE = re.compile(r"\$(?:[A-Za-z_][A-Za-z0-9_]*)?\$")
_DELIMITER_RE = re.compile(r"DELIMITER[ \t]+(\S+)[^\n]*(?:\n|$)", re.IGNORECASE)


@dataclass(frozen=True)
class Statement:
    """One statement and its character span in the script (terminator excluded)."""

    text: str
    start: int
    end: int


def iter_statements(sql: str, dialect: Dialect) -> Iterator[Statement]:
    """Yield statements in order, without their terminators.

    Comment-only fragments are dropped.  MySQL ``/*! ... */`` version
    comments count as code.
    """
    delimiter = ";"
    n = len(sql)
    i = 0
    start = 0
    quote: str | None = None
    has_code = False

    while i < n:
        ch = sql[i]

        if quote is not None:
            if ch == "\\" and dialect.backslash_escapes and quote != "`":
                i += 2
                continue
            if ch == quote:
                quote = None
            i += 1
            continue

        if not has_code and dialect.client_delimiters and ch in "Dd":
            m = _DELIMITER_RE.match(sql, i)
            if m and (i == 0 or sql[i - 1] == "\n"):
                delimiter = m.group(1)
                i = start = m.end()
                continue

        if ch in ("'", '"', "`"):
            quote = ch
            has_code = True
            i += 1
            continue

        if sql.startswith("--", i) or (ch == "#" and dialect.hash_comments):
            end = sql.find("\n", i)
            i = n if end == -1 else end + 1
            continue

        if sql.startswith("/*", i):
            if sql.startswith("/*!", i):
                has_code = True
            end = sql.find("*/", i + 2)
            i = n if end == -1 else end + 2
            continue

        if ch == "$" and dialect.dollar_quotes:
            m = _DOLLAR_TAG_RE.match(sql, i)
            if m:
                end = sql.find(m.group(0), m.end())
                i = n if end == -1 else end + len(m.group(0))
                has_code = True
                continue

        if sql.startswith(delimiter, i):
            if has_code:
                yield from _statement(sql, start, i)
            i = start = i + len(delimiter)
            has_code = False
            continue

        if not ch.isspace():
            has_code = True
        i += 1

    if has_code:
        yield from _statement(sql, start, n)


def _statement(sql: str, start: int, end: int) -> Iterator[Statement]:
    raw = sql[start:end]
    text = raw.strip()
    if text:
        offset = start + (len(raw) - len(raw.lstrip()))
        yield Statement(text, offset, offset + len(text))


def split_statements(sql: str, dialect: Dialect) -> list[str]:
    """Split a script into statement texts (see ``iter_statements``)."""
    return [s.text for s in iter_statements(sql, dialect)]


def strip_leading_comments(statement: str) -> str:
    pos = 0
    while m := _LEADING_COMMENT_RE.match(statement, pos):
        if m.end() == pos:
            break
        pos = m.end()
    return statement[pos:].lstrip()


def is_privilege_statement(statement: str) -> bool:
    """True for user/role management statements that restores skip."""
    return _PRIVILEGE_RE.match(strip_leading_comments(statement)) is not None


@dataclass
class ReplayOutcome:
    """How a script was applied."""

    strategy: str  # "bulk" | "statements"
    executed: int = 0
    failed: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)


def _preview(statement: str, limit: int = 120) -> str:
    flat = " ".join(statement.split())
    return flat if len(flat) <= limit else flat[:limit] + "..."


async def replay(
    client: DatabaseClient,
    sql: str,
    dialect: Dialect,
    *,
    max_logged_errors: int = MAX_LOGGED_ERRORS,
    on_fallback=None,
) -> ReplayOutcome:
    """Apply ``sql``: whole script first, then one statement at a time.

    Args:
        client: Open client on the target database.
        sql: Script text.
        dialect: Dialect used to split statements.
        max_logged_errors: Statement errors beyond this are counted only.
        on_fallback: Called with no arguments when falling back.

    Raises:
        ConnectionLostError: The connection dropped (no further statements run).
        RestoreExecutionError: No statement succeeded and at least one failed.
    """
    try:
        await client.execute_script(sql)
        logger.info("Script applied in a single round trip")
        return ReplayOutcome(strategy="bulk")
    except RestoreExecutionError as e:
        logger.warning("Bulk execution failed, replaying statement by statement: %s", e.message)

    if on_fallback is not None:
        on_fallback()

    outcome = ReplayOutcome(strategy="statements")
    statements = split_statements(sql, dialect)
    for index, statement in enumerate(statements, start=1):
        if is_privilege_statement(statement):
            outcome.skipped += 1
            logger.debug("Skipping privilege statement: %s", _preview(statement))
            continue
        try:
            await client.execute(statement)
            outcome.executed += 1
        except ConnectionLostError as e:
            logger.error(
                "Connection lost at statement %d of %d; stopping", index, len(statements)
            )
            raise e.at_stage("statement_fallback")
        except RestoreExecutionError as e:
            outcome.failed += 1
            if outcome.failed <= max_logged_errors:
                message = f"statement {index}: {e.message} [{_preview(statement)}]"
                outcome.errors.append(message)
                logger.warning("Statement failed: %s", message)

    if outcome.failed > max_logged_errors:
        logger.warning("%d further statement errors not logged", outcome.failed - max_logged_errors)
    logger.info(
        "Statement replay: %d executed, %d failed, %d skipped",
        outcome.executed,
        outcome.failed,
        outcome.skipped,
    )

    if outcome.executed == 0 and outcome.failed > 0:
        raise RestoreExecutionError(
            f"No statements succeeded ({outcome.failed} failed)", stage="statement_fallback"
        )
    return outcome
