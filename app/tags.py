"""
Tag filter engine.

Translates a tag query such as ``["tech", "-muted"]`` into SQL predicates on a
JSON ``tags`` column. A plain tag must be present in the row's tag set; a tag
prefixed with ``-`` must be absent. Empty entries are ignored. Callers AND the
returned predicates together, e.g. ``select(...).where(*tag_predicates(...))``.

Membership is evaluated with SQLite's ``json_each`` over the row's own
column, so the check works on the decoded array regardless of how it is
serialized.
"""

from __future__ import annotations

from typing import Iterable, List

from sqlalchemy import bindparam, text
from sqlalchemy.sql.elements import TextClause

EXCLUDE_PREFIX = "-"


def parse_tag_query(raw: str) -> List[str]:
    """Split a comma-separated tag query (``"tech,-muted"``) into a list."""
    if not raw:
        return []
    return [tag.strip() for tag in raw.split(",") if tag.strip()]


def _membership(column_sql: str, param: str, tag: str, negate: bool) -> TextClause:
    keyword = "NOT EXISTS" if negate else "EXISTS"
    return text(
        f"{keyword} (SELECT 1 FROM json_each({column_sql}) "
        f"WHERE json_each.value = :{param})"
    ).bindparams(bindparam(param, tag))


def tag_predicates(tags_column, tags: Iterable[str]) -> List[TextClause]:
    """
    Build one predicate per non-empty tag.

    Args:
        tags_column: ORM attribute or Column holding the JSON tag array,
            e.g. ``FeedRecord.tags``
        tags: Tag query; ``-name`` excludes ``name``

    Returns:
        Predicates to be combined with AND
    """
    column = tags_column.expression
    column_sql = f"{column.table.name}.{column.name}"

    predicates: List[TextClause] = []
    for tag in tags:
        if not tag:
            continue
        negate = tag.startswith(EXCLUDE_PREFIX)
        value = tag[len(EXCLUDE_PREFIX) :] if negate else tag
        if not value:
            continue
        param = f"{column.table.name}_tag_{len(predicates)}"
        predicates.append(_membership(column_sql, param, value, negate))
    return predicates
