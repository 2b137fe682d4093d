"""
Tests for database snapshots.

This test module validates:
- Portable type mapping
- Backup and restore of SQLite databases in both dump layouts
- Batched inserts and constraint handling during restore
- Error translation to SnapshotError / RecoveryError
"""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path

import pytest
from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    insert,
)
from sqlalchemy.exc import OperationalError

from site_updater.context import OperationContext
from site_updater.errors import RecoveryError, SnapshotError
from site_updater.updates.database import (
    DatabaseSnapshotter,
    SqlAlchemyDatabase,
    portable_type_name,
    sqlalchemy_type,
)

# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def database(tmp_path: Path) -> SqlAlchemyDatabase:
    """SQLite database with an empty table and a 250-row table."""
    engine = create_engine(f"sqlite:///{tmp_path / 'app.sqlite3'}")
    metadata = MetaData()
    Table("jobs", metadata, Column("id", Integer, primary_key=True), Column("payload", Text))
    users = Table(
        "users",
        metadata,
        Column("id", Integer, primary_key=True),
        Column("name", String(50), nullable=False),
        Column("created_at", DateTime),
    )
    metadata.create_all(engine)
    with engine.begin() as conn:
        conn.execute(
            insert(users),
            [
                {"id": i, "name": f"user{i}", "created_at": datetime(2024, 1, 1, 12, 0, i % 60)}
                for i in range(1, 251)
            ],
        )
    db = SqlAlchemyDatabase(engine=engine, batch_size=100)
    yield db
    db.dispose()


def _wipe_users(db: SqlAlchemyDatabase) -> None:
    with db.engine.begin() as conn:
        conn.exec_driver_sql("DELETE FROM users")
        conn.exec_driver_sql("INSERT INTO users (id, name) VALUES (999, 'intruder')")


# =============================================================================
# Tests for Type Mapping
# =============================================================================


class TestTypeMapping:
    """Tests for portable type names."""

    def test_known_types(self) -> None:
        assert portable_type_name(Integer()) == "integer"
        assert portable_type_name(String(20)) == "string"
        assert portable_type_name(Text()) == "text"
        assert portable_type_name(DateTime()) == "datetime"

    def test_unknown_portable_name_falls_back_to_string(self) -> None:
        assert isinstance(sqlalchemy_type("geometry"), String)
        assert isinstance(sqlalchemy_type("INTEGER"), Integer)


# =============================================================================
# Tests for SqlAlchemyDatabase
# =============================================================================


class TestSqlAlchemyDatabase:
    """Tests for the SQLAlchemy capability."""

    def test_requires_url_or_engine(self) -> None:
        with pytest.raises(ValueError):
            SqlAlchemyDatabase()

    def test_introspection(self, database: SqlAlchemyDatabase) -> None:
        assert database.dialect_name == "sqlite"
        assert sorted(database.table_names()) == ["jobs", "users"]
        assert database.count_rows("users") == 250
        assert database.table_columns("users")["name"] == {"type": "string", "nullable": False}
        assert database.table_ddl("users").startswith("CREATE TABLE users")

    def test_inserts_are_batched(self, database: SqlAlchemyDatabase) -> None:
        rows = [{"id": i, "payload": "x"} for i in range(250)]

        with database.restoring() as writer:
            batches = writer.insert_rows("jobs", rows)
            empty = writer.insert_rows("jobs", [])

        assert batches == 3
        assert empty == 0
        assert database.count_rows("jobs") == 250

    def test_restoring_rolls_back_on_error(self, database: SqlAlchemyDatabase) -> None:
        with pytest.raises(RuntimeError), database.restoring() as writer:
            writer.insert_rows("jobs", [{"id": 1, "payload": "x"}])
            raise RuntimeError("boom")

        assert database.count_rows("jobs") == 0

    def test_foreign_keys_disabled_then_restored(self, tmp_path: Path) -> None:
        engine = create_engine(f"sqlite:///{tmp_path / 'fk.sqlite3'}")
        metadata = MetaData()
        Table("parents", metadata, Column("id", Integer, primary_key=True))
        Table(
            "children",
            metadata,
            Column("id", Integer, primary_key=True),
            Column("parent_id", Integer, ForeignKey("parents.id")),
        )
        metadata.create_all(engine)
        db = SqlAlchemyDatabase(engine=engine)

        @event.listens_for(engine, "connect")
        def _enable_foreign_keys(dbapi_connection, connection_record) -> None:
            dbapi_connection.execute("PRAGMA foreign_keys=ON")

        # Child rows may reference parents restored later in the same pass.
        with db.restoring() as writer:
            writer.insert_rows("children", [{"id": 1, "parent_id": 42}])
            writer.insert_rows("parents", [{"id": 42}])

        assert db.count_rows("children") == 1
        with engine.connect() as conn:
            assert conn.exec_driver_sql("PRAGMA foreign_keys").scalar() == 1
        db.dispose()


# =============================================================================
# Tests for DatabaseSnapshotter
# =============================================================================


class TestDatabaseSnapshotter:
    """Tests for backup and restore."""

    def test_unknown_format(self, database: SqlAlchemyDatabase) -> None:
        with pytest.raises(ValueError):
            DatabaseSnapshotter(database, dump_format="sql")

    def test_portable_document_layout(self, database: SqlAlchemyDatabase) -> None:
        document = DatabaseSnapshotter(database).build_document()

        assert document["metadata"]["driver"] == "sqlite"
        assert document["metadata"]["version"] == "1.0"
        assert document["tables"]["jobs"]["records"] == []
        assert len(document["tables"]["users"]["records"]) == 250
        assert DatabaseSnapshotter.is_portable(document)

    def test_basic_document_layout(self, database: SqlAlchemyDatabase) -> None:
        document = DatabaseSnapshotter(database, dump_format="basic").build_document()

        assert set(document) == {"jobs", "users"}
        assert "CREATE TABLE" in document["users"]["structure"]
        assert not DatabaseSnapshotter.is_portable(document)

    @pytest.mark.parametrize("dump_format", ["portable", "basic"])
    def test_backup_then_restore(
        self,
        tmp_path: Path,
        database: SqlAlchemyDatabase,
        ctx: OperationContext,
        dump_format: str,
    ) -> None:
        snapshotter = DatabaseSnapshotter(database, dump_format=dump_format)
        dump_path = snapshotter.backup(tmp_path / "dumps", ctx)

        assert dump_path.name.startswith("database_backup_")
        json.loads(dump_path.read_text())

        _wipe_users(database)
        snapshotter.restore(dump_path, ctx)

        rows = database.fetch_rows("users")
        assert len(rows) == 250
        assert database.count_rows("jobs") == 0
        assert {row["name"] for row in rows} == {f"user{i}" for i in range(1, 251)}
        first = min(rows, key=lambda row: row["id"])
        assert first["created_at"] == datetime(2024, 1, 1, 12, 0, 1)
        assert ctx.entries[-1].message == "Database restored (2 tables)"

    def test_backup_failure(self, tmp_path: Path) -> None:
        class BrokenDatabase(SqlAlchemyDatabase):
            def table_names(self) -> list[str]:
                raise OperationalError("SELECT", {}, Exception("database is locked"))

        db = BrokenDatabase(engine=create_engine("sqlite://"))

        with pytest.raises(SnapshotError):
            DatabaseSnapshotter(db).backup(tmp_path)

    def test_restore_unreadable_dump(self, tmp_path: Path, database: SqlAlchemyDatabase) -> None:
        dump = tmp_path / "dump.json"
        dump.write_text("{truncated")

        with pytest.raises(RecoveryError):
            DatabaseSnapshotter(database).restore(dump)

    def test_restore_invalid_basic_dump(self, tmp_path: Path, database: SqlAlchemyDatabase) -> None:
        dump = tmp_path / "dump.json"
        dump.write_text(json.dumps({"users": {"data": []}}))

        with pytest.raises(RecoveryError):
            DatabaseSnapshotter(database).restore(dump)
