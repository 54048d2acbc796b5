"""Table reference extraction and per-cell access validation.

This is a regex heuristic, not a SQL parser. It looks for identifiers after
``FROM`` and ``[INNER|LEFT|RIGHT|FULL|CROSS] [OUTER] JOIN`` (plus comma
separated ``FROM a, b`` lists), skips CTE names and the ``FROM`` inside
``EXTRACT(... FROM col)`` style calls, and matches subquery ``FROM`` clauses
at every nesting depth, so it over-approximates rather than misses.

Known blind spots: string literals containing ``FROM``/``JOIN`` produce false
positives, and reserved words used as table names or quoted names that are
not plain identifiers are not reported. Comments are stripped first.

Callers go through :func:`extract_table_refs`, so the heuristic can be
replaced by a real parser without touching export/import.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable

# Words that can follow FROM/JOIN (or sit where an alias would) but are never tables
_KEYWORDS = frozenset({
    "SELECT", "WHERE", "ON", "USING", "GROUP", "ORDER", "HAVING", "LIMIT",
    "OFFSET", "UNION", "INTERSECT", "EXCEPT", "WINDOW", "QUALIFY", "LATERAL",
    "JOIN", "INNER", "LEFT", "RIGHT", "FULL", "CROSS", "OUTER", "NATURAL",
    "AS", "AND", "OR", "NOT", "SET", "VALUES", "RETURNING", "FETCH", "FOR",
})

# Functions whose argument syntax uses FROM without referencing a table
_FROM_FUNCTIONS = frozenset({"EXTRACT", "SUBSTRING", "TRIM", "POSITION", "OVERLAY"})

_PART = r"""(?:"[^"]+"|`[^`]+`|'[^']+'|[A-Za-z_]\w*)"""
# A possibly qualified reference that is not a table function call
_REF = rf"({_PART}(?:\s*\.\s*{_PART})*)(?!\w|\s*[(.])"
_ALIAS = r"(?:\s+(?:AS\s+)?(?!(?:{kw})\b)[A-Za-z_]\w*)?".format(kw="|".join(sorted(_KEYWORDS)))

_FROM_PATTERN = re.compile(rf"\bFROM\s+{_REF}", re.IGNORECASE)
_JOIN_PATTERN = re.compile(
    rf"\b(?:(?:INNER|LEFT|RIGHT|FULL|CROSS)(?:\s+OUTER)?\s+)?JOIN\s+{_REF}",
    re.IGNORECASE,
)
_COMMA_REF_PATTERN = re.compile(rf"{_ALIAS}\s*,\s*{_REF}", re.IGNORECASE)
_PART_PATTERN = re.compile(_PART)
_CTE_PATTERN = re.compile(
    r"""(?:\bWITH(?:\s+RECURSIVE)?|,)\s*["`]?([A-Za-z_]\w*)["`]?\s*"""
    r"""(?:\([^)]*\)\s*)?AS\s*(?:NOT\s+)?(?:MATERIALIZED\s*)?\(""",
    re.IGNORECASE,
)
_LINE_COMMENT = re.compile(r"--[^\n]*")
_BLOCK_COMMENT = re.compile(r"/\*.*?\*/", re.DOTALL)
_IDENTIFIER = re.compile(r"^[A-Za-z_]\w*$")


def _strip_comments(sql: str) -> str:
    return _LINE_COMMENT.sub(" ", _BLOCK_COMMENT.sub(" ", sql))


def _table_name(ref: str) -> str | None:
    """Reduce ``schema."table"`` to ``table``; None if it is not an identifier."""
    parts = _PART_PATTERN.findall(ref)
    if not parts:
        return None
    name = parts[-1]
    if name[0] in "\"'`":
        name = name[1:-1]
    elif name.upper() in _KEYWORDS:
        return None
    if not _IDENTIFIER.match(name):
        return None
    return name


def _enclosing_function(sql: str, pos: int) -> str | None:
    """Name of the function whose parentheses enclose ``pos``, if any."""
    depth = 0
    for i in range(pos - 1, -1, -1):
        ch = sql[i]
        if ch == ")":
            depth += 1
        elif ch == "(":
            if depth == 0:
                match = re.search(r"([A-Za-z_]\w*)\s*$", sql[:i])
                return match.group(1).upper() if match else None
            depth -= 1
    return None


def extract_cte_names(sql: str) -> set[str]:
    """Lower-cased names defined by ``WITH [RECURSIVE] name AS (...)`` clauses."""
    return {m.group(1).lower() for m in _CTE_PATTERN.finditer(_strip_comments(sql))}


def _extract_ordered(sql: str) -> list[str]:
    """Referenced tables in order of first appearance, de-duplicated case-insensitively."""
    clean = _strip_comments(sql)
    cte_names = extract_cte_names(clean)
    found: list[tuple[int, str]] = []

    for match in _FROM_PATTERN.finditer(clean):
        if _enclosing_function(clean, match.start()) in _FROM_FUNCTIONS:
            continue
        found.append((match.start(1), match.group(1)))
        pos = match.end()
        while True:
            more = _COMMA_REF_PATTERN.match(clean, pos)
            if not more:
                break
            found.append((more.start(1), more.group(1)))
            pos = more.end()

    for match in _JOIN_PATTERN.finditer(clean):
        found.append((match.start(1), match.group(1)))

    seen: set[str] = set()
    tables: list[str] = []
    for _, ref in sorted(found):
        name = _table_name(ref)
        if name is None:
            continue
        key = name.lower()
        if key in seen or key in cte_names:
            continue
        seen.add(key)
        tables.append(name)
    return tables


def extract_table_refs(sql: str) -> set[str]:
    """Extract the table names referenced by a SQL statement.

    Names are returned as written (case preserved). Two spellings that differ
    only in case count as one table; the first one seen is kept.

    >>> sorted(extract_table_refs("SELECT * FROM users u JOIN orders o ON u.id = o.user_id"))
    ['orders', 'users']
    >>> extract_table_refs("SELECT 1")
    set()
    """
    return set(_extract_ordered(sql))


def normalize_table_refs(tables: Iterable[str]) -> list[str]:
    """Lower-case and sort table names for storage."""
    return sorted({t.lower() for t in tables})


# --- Access validation ---


@dataclass
class AccessCheck:
    """Outcome of validating a query against a cell's selected tables."""

    valid: bool
    error: str | None = None


NO_TABLES_SELECTED = "No tables are selected for this cell. Please select at least one table."


def validate_table_access(sql: str, allowed_tables: Iterable[str]) -> AccessCheck:
    """Check that every table the query references is in ``allowed_tables``.

    An empty allow-list always fails: a cell needs an explicit table scope
    before it can run, even for ``SELECT 1``. Queries without any table
    reference pass. Comparison is case-insensitive and the error names every
    table that is not allowed.
    """
    allowed = {t.lower() for t in allowed_tables}
    if not allowed:
        return AccessCheck(valid=False, error=NO_TABLES_SELECTED)

    referenced = _extract_ordered(sql)
    if not referenced:
        return AccessCheck(valid=True)

    unauthorized = [t for t in referenced if t.lower() not in allowed]
    if unauthorized:
        table_list = ", ".join(f"'{t}'" for t in unauthorized)
        return AccessCheck(
            valid=False,
            error=(
                f"Query references table(s) {table_list} which are not selected for this "
                "cell. Please select these tables or modify your query."
            ),
        )
    return AccessCheck(valid=True)
