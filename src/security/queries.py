"""Read-only SQL classification.

A deliberately conservative keyword heuristic, not a SQL parser. A query is
read-only when it starts with a read verb and contains no write verb
anywhere. Identifiers or string literals containing a write verb (for
example a ``created_at`` column) are rejected as well; this is accepted.
"""

from shared.logging import get_logger
from security.outcome import ValidationOutcome

logger = get_logger(__name__)

READ_ONLY_PREFIXES: tuple[str, ...] = ("SELECT", "SHOW", "DESCRIBE", "EXPLAIN", "WITH")
WRITE_KEYWORDS: tuple[str, ...] = (
    "INSERT", "UPDATE", "DELETE", "DROP", "CREATE", "ALTER", "TRUNCATE",
)


def is_read_only(sql: str) -> bool:
    """Return True if ``sql`` passes both the prefix and the keyword check."""
    normalized = sql.strip().upper()
    return (
        any(normalized.startswith(prefix) for prefix in READ_ONLY_PREFIXES)
        and not any(keyword in normalized for keyword in WRITE_KEYWORDS)
    )


def validate_query(sql: str) -> ValidationOutcome[str]:
    """Classify ``sql`` and return it unchanged when it is read-only."""
    if is_read_only(sql):
        return ValidationOutcome.success(sql)

    logger.warning("Query rejected as not read-only")
    return ValidationOutcome.failure(
        "Only read-only queries are allowed. Found potentially modifying SQL."
    )
