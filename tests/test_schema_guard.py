from __future__ import annotations

import unittest

from sqlalchemy import create_engine, text
from sqlalchemy.pool import StaticPool

from clockin.db import Base
from clockin.services.schema_guard import verify_runtime_schema


def _engine():  # type: ignore[no-untyped-def]
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine


class SchemaGuardTests(unittest.TestCase):
    def test_verify_runtime_schema_ok_when_tables_exist(self) -> None:
        result = verify_runtime_schema(_engine(), require_migrations=False)

        self.assertTrue(result.ok)
        self.assertEqual(result.issues, [])
        self.assertEqual(result.warnings, [])

    def test_missing_alembic_version_table_is_reported(self) -> None:
        result = verify_runtime_schema(_engine())

        self.assertFalse(result.ok)
        self.assertEqual(result.issues, ["ALEMBIC_VERSION_MISSING"])

    def test_empty_alembic_version_is_reported(self) -> None:
        engine = _engine()
        with engine.begin() as connection:
            connection.execute(text("CREATE TABLE alembic_version (version_num VARCHAR(32) NOT NULL)"))

        result = verify_runtime_schema(engine)

        self.assertIn("ALEMBIC_VERSION_EMPTY", result.issues)

    def test_stamped_database_passes(self) -> None:
        engine = _engine()
        with engine.begin() as connection:
            connection.execute(text("CREATE TABLE alembic_version (version_num VARCHAR(32) NOT NULL)"))
            connection.execute(text("INSERT INTO alembic_version (version_num) VALUES ('0001_initial')"))

        result = verify_runtime_schema(engine)

        self.assertTrue(result.ok)
        self.assertEqual(result.to_dict()["issue_count"], 0)

    def test_missing_table_and_columns_are_reported(self) -> None:
        engine = _engine()
        with engine.begin() as connection:
            connection.execute(text("DROP TABLE system_flags"))
            connection.execute(text("DROP TABLE penalties"))
            connection.execute(text("CREATE TABLE penalties (id VARCHAR(200) PRIMARY KEY, user_id VARCHAR(128))"))

        result = verify_runtime_schema(engine, require_migrations=False)

        self.assertFalse(result.ok)
        self.assertIn("MISSING_TABLE:system_flags", result.issues)
        self.assertTrue(
            any(item.startswith("MISSING_COLUMNS:penalties:amount") for item in result.issues),
            result.issues,
        )


if __name__ == "__main__":
    unittest.main()
