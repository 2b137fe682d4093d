"""
Database snapshots for the site updater.

SqlAlchemyDatabase is the Database capability (SQLAlchemy Core, reflection
based, so it works against whatever schema the application has).
DatabaseSnapshotter serializes every table to one JSON document and restores
it again. Two document layouts are supported:

basic:
    {"<table>": {"structure": "<DDL>", "data": [{...}, ...]}, ...}

portable:
    {"metadata": {"driver": "sqlite", "created_at": "...", "version": "1.0"},
     "tables": {"<table>": {"columns": {"<col>": {"type": "integer",
                                                  "nullable": false}},
                            "records": [{...}, ...]}}}

The portable layout rebuilds tables from engine-neutral type names and is
required when the dump is restored into a different database engine.
"""

from __future__ import annotations

import base64
import json
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from datetime import UTC, date, datetime, time
from decimal import Decimal
from pathlib import Path
from typing import TYPE_CHECKING, Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    Integer,
    LargeBinary,
    MetaData,
    Numeric,
    SmallInteger,
    String,
    Table,
    Text,
    Time,
    create_engine,
    func,
    inspect,
    select,
)
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.schema import CreateTable, DropTable
from sqlalchemy.types import TypeEngine

from site_updater.errors import RecoveryError, SnapshotError
from site_updater.logging import get_logger
from site_updater.updates.operations import timestamp_slug

if TYPE_CHECKING:
    from site_updater.context import OperationContext
    from site_updater.updates.capabilities import Database

logger = get_logger(__name__)

DUMP_FORMAT_VERSION = "1.0"
DEFAULT_BATCH_SIZE = 100

# =============================================================================
# Portable type mapping
# =============================================================================

# Most specific first: Text is a String, BigInteger is an Integer, Float is
# a Numeric.
_TYPE_TO_PORTABLE: tuple[tuple[type[TypeEngine[Any]], str], ...] = (
    (BigInteger, "bigint"),
    (SmallInteger, "smallint"),
    (Integer, "integer"),
    (Boolean, "boolean"),
    (Float, "float"),
    (Numeric, "decimal"),
    (DateTime, "datetime"),
    (Date, "date"),
    (Time, "time"),
    (JSON, "json"),
    (Text, "text"),
    (String, "string"),
    (LargeBinary, "binary"),
)

_PORTABLE_TO_TYPE: dict[str, Any] = {
    "string": lambda: String(255),
    "text": Text,
    "integer": Integer,
    "smallint": SmallInteger,
    "bigint": BigInteger,
    "boolean": Boolean,
    "decimal": lambda: Numeric(18, 6),
    "float": Float,
    "date": Date,
    "datetime": DateTime,
    "time": Time,
    "json": JSON,
    "binary": LargeBinary,
}


def portable_type_name(column_type: TypeEngine[Any]) -> str:
    """Map a SQLAlchemy column type to a portable type name."""
    for sa_type, name in _TYPE_TO_PORTABLE:
        if isinstance(column_type, sa_type):
            return name
    return "string"


def sqlalchemy_type(portable_name: str) -> TypeEngine[Any]:
    """Map a portable type name back to a SQLAlchemy type; unknown names become strings."""
    factory = _PORTABLE_TO_TYPE.get(portable_name.lower(), _PORTABLE_TO_TYPE["string"])
    return factory()


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime | date | time):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, bytes | bytearray | memoryview):
        return base64.b64encode(bytes(value)).decode("ascii")
    return str(value)


def _python_type(column: Column[Any]) -> type | None:
    try:
        return column.type.python_type
    except NotImplementedError:
        return None


def _coerce_value(value: Any, python_type: type | None) -> Any:
    """Convert a JSON-decoded value back to what the column type expects."""
    if value is None or python_type is None:
        return value
    if python_type is datetime and isinstance(value, str):
        return datetime.fromisoformat(value)
    if python_type is date and isinstance(value, str):
        return date.fromisoformat(value[:10])
    if python_type is time and isinstance(value, str):
        return time.fromisoformat(value)
    if python_type is Decimal and not isinstance(value, Decimal):
        return Decimal(str(value))
    if python_type is bool and isinstance(value, int | str):
        if isinstance(value, str):
            return value.strip().lower() in ("1", "true", "t", "yes")
        return bool(value)
    if python_type is bytes and isinstance(value, str):
        return base64.b64decode(value)
    return value


# =============================================================================
# Database capability
# =============================================================================


class _SqlAlchemyTableWriter:
    """TableWriter bound to one connection with integrity checks disabled."""

    def __init__(self, conn: Connection, batch_size: int) -> None:
        self._conn = conn
        self._batch_size = batch_size

    def drop_table(self, name: str) -> None:
        self._conn.execute(DropTable(Table(name, MetaData()), if_exists=True))

    def execute_ddl(self, ddl: str) -> None:
        self._conn.exec_driver_sql(ddl)

    def create_table(self, name: str, columns: Mapping[str, Mapping[str, Any]]) -> None:
        table = Table(
            name,
            MetaData(),
            *(
                Column(
                    col_name,
                    sqlalchemy_type(str(column.get("type", "string"))),
                    nullable=bool(column.get("nullable", True)),
                )
                for col_name, column in columns.items()
            ),
        )
        table.create(self._conn)

    def insert_rows(self, name: str, rows: Sequence[Mapping[str, Any]]) -> int:
        """
        Insert rows in fixed-size batches.

        Returns:
            Number of insert statements executed.
        """
        if not rows:
            return 0
        table = Table(name, MetaData(), autoload_with=self._conn)
        types = {column.name: _python_type(column) for column in table.columns}
        batches = 0
        for start in range(0, len(rows), self._batch_size):
            chunk = [
                {key: _coerce_value(value, types.get(key)) for key, value in row.items()}
                for row in rows[start : start + self._batch_size]
            ]
            self._conn.execute(table.insert(), chunk)
            batches += 1
        return batches


class SqlAlchemyDatabase:
    """
    Database capability backed by a SQLAlchemy engine.

    Args:
        url: SQLAlchemy database URL.
        engine: Existing engine (takes precedence over url).
        batch_size: Rows per insert statement during restore.
    """

    def __init__(
        self,
        url: str | None = None,
        *,
        engine: Engine | None = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> None:
        if engine is None:
            if not url:
                raise ValueError("Either url or engine is required")
            engine = create_engine(url)
        self.engine = engine
        self.batch_size = batch_size

    @property
    def dialect_name(self) -> str:
        return self.engine.dialect.name

    def _reflect(self, name: str) -> Table:
        return Table(name, MetaData(), autoload_with=self.engine)

    def table_names(self) -> list[str]:
        return inspect(self.engine).get_table_names()

    def table_ddl(self, name: str) -> str:
        return str(CreateTable(self._reflect(name)).compile(dialect=self.engine.dialect)).strip()

    def table_columns(self, name: str) -> dict[str, dict[str, Any]]:
        return {
            column["name"]: {
                "type": portable_type_name(column["type"]),
                "nullable": bool(column.get("nullable", True)),
            }
            for column in inspect(self.engine).get_columns(name)
        }

    def fetch_rows(self, name: str) -> list[dict[str, Any]]:
        table = self._reflect(name)
        with self.engine.connect() as conn:
            return [dict(row) for row in conn.execute(select(table)).mappings()]

    def count_rows(self, name: str) -> int:
        table = self._reflect(name)
        with self.engine.connect() as conn:
            return conn.execute(select(func.count()).select_from(table)).scalar_one()

    def _disable_constraints(self, conn: Connection) -> Any:
        dialect = self.dialect_name
        if dialect == "sqlite":
            previous = conn.exec_driver_sql("PRAGMA foreign_keys").scalar()
            conn.exec_driver_sql("PRAGMA foreign_keys=OFF")
            return previous
        if dialect in ("mysql", "mariadb"):
            conn.exec_driver_sql("SET FOREIGN_KEY_CHECKS=0")
        elif dialect == "postgresql":
            conn.exec_driver_sql("SET CONSTRAINTS ALL DEFERRED")
        else:
            logger.debug("No constraint toggling for dialect", extra={"dialect": dialect})
        return None

    def _enable_constraints(self, conn: Connection, previous: Any) -> None:
        dialect = self.dialect_name
        if dialect == "sqlite":
            conn.exec_driver_sql(f"PRAGMA foreign_keys={'ON' if previous else 'OFF'}")
        elif dialect in ("mysql", "mariadb"):
            conn.exec_driver_sql("SET FOREIGN_KEY_CHECKS=1")
        elif dialect == "postgresql":
            conn.exec_driver_sql("SET CONSTRAINTS ALL IMMEDIATE")

    @contextmanager
    def restoring(self) -> Iterator[_SqlAlchemyTableWriter]:
        """
        Yield a table writer with referential-integrity enforcement disabled.

        The work is committed when the block exits normally and rolled back
        otherwise; enforcement is restored on both paths.
        """
        with self.engine.connect() as conn:
            previous = self._disable_constraints(conn)
            try:
                yield _SqlAlchemyTableWriter(conn, self.batch_size)
                conn.commit()
            except Exception:
                conn.rollback()
                raise
            finally:
                self._enable_constraints(conn, previous)
                conn.commit()

    def dispose(self) -> None:
        self.engine.dispose()


# =============================================================================
# Snapshotter
# =============================================================================


class DatabaseSnapshotter:
    """
    Backs up and restores all tables of a database.

    Args:
        database: Database capability.
        dump_format: "portable" (default) or "basic".
    """

    def __init__(self, database: Database, *, dump_format: str = "portable") -> None:
        if dump_format not in ("basic", "portable"):
            raise ValueError(f"Unknown dump format: {dump_format}")
        self.database = database
        self.dump_format = dump_format

    def build_document(self) -> dict[str, Any]:
        """Serialize the whole database in the configured layout."""
        names = self.database.table_names()
        if self.dump_format == "basic":
            return {
                name: {
                    "structure": self.database.table_ddl(name),
                    "data": self.database.fetch_rows(name),
                }
                for name in names
            }
        return {
            "metadata": {
                "driver": self.database.dialect_name,
                "created_at": datetime.now(UTC).isoformat(),
                "version": DUMP_FORMAT_VERSION,
            },
            "tables": {
                name: {
                    "columns": self.database.table_columns(name),
                    "records": self.database.fetch_rows(name),
                }
                for name in names
            },
        }

    def backup(self, directory: Path, ctx: OperationContext | None = None) -> Path:
        """
        Write a dump of every table into `directory`.

        Returns:
            Path of the dump file.

        Raises:
            SnapshotError: If reading the database or writing the file fails.
        """
        try:
            document = self.build_document()
            directory.mkdir(parents=True, exist_ok=True)
            dump_path = directory / f"database_backup_{timestamp_slug()}.json"
            dump_path.write_text(json.dumps(document, default=_json_default), encoding="utf-8")
        except (SQLAlchemyError, OSError, TypeError, ValueError) as e:
            raise SnapshotError(
                f"Database backup failed: {e}",
                details={"directory": str(directory), "format": self.dump_format},
            ) from e

        table_count = len(document["tables"]) if self.dump_format == "portable" else len(document)
        if ctx is not None:
            ctx.info(f"Database backup created with {table_count} tables")
        logger.info(
            "Database backup created",
            extra={"path": str(dump_path), "tables": table_count},
        )
        return dump_path

    @staticmethod
    def is_portable(document: Mapping[str, Any]) -> bool:
        """Whether a decoded dump uses the portable layout."""
        metadata = document.get("metadata")
        return (
            isinstance(metadata, Mapping)
            and "driver" in metadata
            and isinstance(document.get("tables"), Mapping)
        )

    def restore(self, dump_path: Path, ctx: OperationContext | None = None) -> None:
        """
        Rebuild every table in a dump and reload its rows.

        Each table is dropped if present, recreated (from the stored DDL, or
        from portable column types) and refilled in batches, with
        referential-integrity enforcement disabled throughout.

        Raises:
            RecoveryError: If the dump cannot be read or applied.
        """
        try:
            document = json.loads(dump_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise RecoveryError(
                f"Unreadable database dump: {dump_path.name}",
                details={"path": str(dump_path), "error": str(e)},
            ) from e
        if not isinstance(document, dict):
            raise RecoveryError("Database dump must be a JSON object", details={"path": str(dump_path)})

        portable = self.is_portable(document)
        tables: Mapping[str, Any] = document["tables"] if portable else document

        try:
            with self.database.restoring() as writer:
                for name, table in tables.items():
                    writer.drop_table(name)
                    if portable:
                        writer.create_table(name, table.get("columns", {}))
                        rows = table.get("records", [])
                    else:
                        writer.execute_ddl(table["structure"])
                        rows = table.get("data", [])
                    writer.insert_rows(name, rows)
        except (SQLAlchemyError, KeyError, TypeError, ValueError) as e:
            raise RecoveryError(
                f"Database restore failed: {e}",
                details={"path": str(dump_path)},
            ) from e

        if ctx is not None:
            ctx.info(f"Database restored ({len(tables)} tables)")
        logger.info(
            "Database restored",
            extra={"path": str(dump_path), "tables": len(tables), "portable": portable},
        )
