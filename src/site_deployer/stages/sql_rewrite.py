"""PostgreSQL -> MySQL text rewrite for plain pg_dump output.

This is an ordered list of regular-expression substitutions, not a SQL
parser. Statements that do not match these exact shapes pass through
untranslated or get mangled; the rule order is part of the contract.
"""

from __future__ import annotations

import re
from typing import List, NamedTuple, Pattern

MYSQL_HEADER = (
    "/* MySQL compatible export from PostgreSQL */\n"
    "SET NAMES utf8mb4;\n"
    "SET FOREIGN_KEY_CHECKS = 0;\n\n"
)
MYSQL_FOOTER = "\nSET FOREIGN_KEY_CHECKS = 1;\n"


class RewriteRule(NamedTuple):
    name: str
    pattern: Pattern[str]
    replacement: str


def _rule(name: str, pattern: str, replacement: str, flags: int = 0) -> RewriteRule:
    return RewriteRule(name, re.compile(pattern, flags), replacement)


REWRITE_RULES: List[RewriteRule] = [
    _rule("create-table-if-not-exists", r"CREATE TABLE IF NOT EXISTS", "CREATE TABLE"),
    _rule("boolean-cast", r"::boolean", ""),
    _rule("true-literal", r"\btrue\b", "1"),
    _rule("false-literal", r"\bfalse\b", "0"),
    _rule("array-open", r"ARRAY\[", ""),
    _rule("array-close-cast", r"\]::", ""),
    _rule("text-cast", r"::text", ""),
    _rule("varchar-cast", r"::varchar", ""),
    _rule("integer-cast", r"::integer", ""),
    _rule("bigint-cast", r"::bigint", ""),
    _rule("timestamp-cast", r"::timestamp", ""),
    _rule("uuid-default", r"uuid DEFAULT gen_random_uuid\(\)", "varchar(36)", re.IGNORECASE),
    _rule("uuid-not-null", r"uuid NOT NULL", "varchar(36) NOT NULL", re.IGNORECASE),
    _rule("uuid", r"uuid", "varchar(36)", re.IGNORECASE),
    _rule("sequence-default", r"DEFAULT nextval\('[^']+'\)", "AUTO_INCREMENT", re.IGNORECASE),
    _rule("create-extension", r"CREATE EXTENSION IF NOT EXISTS[^;]+;", "", re.IGNORECASE),
    _rule("create-index-if-not-exists", r"CREATE INDEX IF NOT EXISTS", "CREATE INDEX"),
    _rule("primary-key-cascade", r"PRIMARY KEY.*CASCADE", "PRIMARY KEY", re.IGNORECASE),
    _rule("line-comment", r"--.*$", "", re.MULTILINE),
    _rule("jsonb", r"jsonb", "json", re.IGNORECASE),
]


def rewrite_postgres_to_mysql(sql: str) -> str:
    """Apply every rule in order and wrap the result in the MySQL header/footer."""
    for rule in REWRITE_RULES:
        sql = rule.pattern.sub(rule.replacement, sql)
    return MYSQL_HEADER + sql + MYSQL_FOOTER
