"""PostgreSQL domain - read-only queries and schema introspection.

Queries must pass the read-only classifier before they reach the
database. Results are fetched from a server-side cursor and capped at
the configured row limit.
"""

from typing import Any, Optional

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import URL, Connection, Engine
from sqlalchemy.exc import OperationalError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from shared.config import PostgresSettings
from shared.logging import get_logger
from shared.models import ToolResult
from shared.schema import create_schema, integer_property, string_property
from domains.base import BaseDomain
from mcp_server.registry import ToolRegistry
from security.queries import validate_query

logger = get_logger(__name__)

SYSTEM_SCHEMAS = {"information_schema", "pg_catalog", "pg_toast"}


class PostgresDomain(BaseDomain):
    """
    PostgreSQL Domain.

    Provides tools for:
    - Running read-only queries
    - Describing tables and columns
    - Checking connectivity
    """

    name = "database"

    def __init__(self, settings: PostgresSettings, engine: Optional[Engine] = None) -> None:
        self.settings = settings
        self._engine = engine

    @property
    def engine(self) -> Engine:
        """Engine created on first use; no connection is opened at startup."""
        if self._engine is None:
            url = URL.create(
                "postgresql+psycopg2",
                username=self.settings.username,
                password=self.settings.password or None,
                host=self.settings.host,
                port=self.settings.port,
                database=self.settings.database,
            )
            self._engine = create_engine(
                url,
                pool_pre_ping=True,
                connect_args={"connect_timeout": self.settings.connect_timeout},
            )
        return self._engine

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        retry=retry_if_exception_type(OperationalError),
        reraise=True
    )
    def connect(self) -> Connection:
        """Open a connection, retrying transient connection failures."""
        return self.engine.connect()

    def _row_limit(self, max_rows: Optional[int]) -> int:
        if not max_rows or max_rows <= 0:
            return self.settings.max_rows
        return min(max_rows, self.settings.max_rows)

    # Operations

    async def query(
        self,
        sql: str,
        params: Optional[dict[str, Any]] = None,
        max_rows: Optional[int] = None
    ) -> ToolResult:
        outcome = validate_query(sql)
        if not outcome.ok:
            logger.warning("Query rejected", reason=outcome.reason)
            return self._rejected(outcome)
        return await self._run("execute query", self._query, sql, params or {}, self._row_limit(max_rows))

    def _query(self, sql: str, params: dict[str, Any], limit: int) -> ToolResult:
        with self.connect() as conn:
            conn = conn.execution_options(
                stream_results=True,
                max_row_buffer=limit,
                postgresql_readonly=True,
            )
            result = conn.execute(text(sql), params)
            columns = list(result.keys())
            rows = result.fetchmany(limit)
            result.close()

        logger.info("Query executed", rows=len(rows), limit=limit)
        return ToolResult.success(format_table(columns, rows, limit))

    async def get_schema(self) -> ToolResult:
        return await self._run("read schema", self._get_schema)

    def _get_schema(self) -> ToolResult:
        inspector = inspect(self.engine)
        lines: list[str] = []

        for schema in sorted(inspector.get_schema_names()):
            if schema in SYSTEM_SCHEMAS or schema.startswith("pg_"):
                continue
            for table in sorted(inspector.get_table_names(schema=schema)):
                lines.append(f"{schema}.{table}")
                for column in inspector.get_columns(table, schema=schema):
                    nullable = "NULL" if column.get("nullable", True) else "NOT NULL"
                    default = column.get("default")
                    suffix = f" DEFAULT {default}" if default is not None else ""
                    lines.append(f"  {column['name']} {column['type']} {nullable}{suffix}")

        return ToolResult.success("\n".join(lines) if lines else "No tables found")

    async def test_connection(self) -> ToolResult:
        return await self._run("connect", self._test_connection)

    def _test_connection(self) -> ToolResult:
        with self.connect() as conn:
            version = conn.execute(text("SELECT version()")).scalar()

        return ToolResult.success(
            f"Connected to {self.settings.host}:{self.settings.port}/{self.settings.database}\n{version}"
        )

    # Registration

    def register(self, registry: ToolRegistry) -> None:
        async def query(args: dict) -> ToolResult:
            return await self.query(args["query"], args.get("params"), args.get("maxRows"))

        async def get_schema(args: dict) -> ToolResult:
            return await self.get_schema()

        async def test_connection(args: dict) -> ToolResult:
            return await self.test_connection()

        registry.register(
            name="postgresQuery",
            description="Run a read-only SQL query (SELECT, SHOW, DESCRIBE, EXPLAIN, WITH)",
            input_schema=create_schema(
                {
                    "query": string_property("SQL query; use :name placeholders for parameters"),
                    "params": {
                        "type": "object",
                        "description": "Values for named query parameters",
                    },
                    "maxRows": integer_property(
                        "Maximum rows to return", 1, self.settings.max_rows
                    ),
                },
                required=["query"],
            ),
            handler=query,
        )
        registry.register(
            name="postgresGetSchema",
            description="Describe the tables and columns of the database",
            input_schema=create_schema({}),
            handler=get_schema,
        )
        registry.register(
            name="postgresTestConnection",
            description="Check that the database is reachable",
            input_schema=create_schema({}),
            handler=test_connection,
        )

        logger.info("Database domain registered", tool_count=3)


def format_table(columns: list[str], rows: list[Any], limit: int) -> str:
    """Render rows as a pipe-separated table."""
    if not columns:
        return "Query returned no columns"

    lines = [" | ".join(columns), "-" * max(3, len(" | ".join(columns)))]
    for row in rows:
        lines.append(" | ".join("NULL" if value is None else str(value) for value in row))

    summary = f"({len(rows)} rows)"
    if len(rows) >= limit:
        summary = f"({len(rows)} rows, limited to {limit})"
    lines.append(summary)
    return "\n".join(lines)


def register_database_domain(registry: ToolRegistry, settings: PostgresSettings) -> PostgresDomain:
    """Create the database domain and register its tools."""
    domain = PostgresDomain(settings)
    domain.register(registry)
    return domain
