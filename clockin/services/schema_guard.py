from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine


@dataclass(frozen=True, slots=True)
class SchemaGuardResult:
    ok: bool
    checked_at_utc: datetime
    issues: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "checked_at_utc": self.checked_at_utc.isoformat(),
            "issues": list(self.issues),
            "warnings": list(self.warnings),
            "issue_count": len(self.issues),
            "warning_count": len(self.warnings),
        }


REQUIRED_TABLE_COLUMNS: dict[str, set[str]] = {
    "users": {"id", "role", "is_active", "full_leave_balance", "medical_leave_balance", "maternity_leave_balance"},
    "company_settings": {"id", "timezone", "time_windows", "grace_periods", "penalty_rules", "working_days"},
    "attendance_records": {
        "id",
        "user_id",
        "attendance_date",
        "check1_status",
        "check2_status",
        "check3_status",
        "status",
        "leave_request_id",
        "leave_backfill",
        "version_id",
    },
    "penalties": {"id", "user_id", "violation_type", "violation_field", "date_incurred", "amount", "status"},
    "leave_requests": {"id", "user_id", "leave_type", "start_date", "end_date", "total_days", "status"},
    "system_flags": {"id", "status", "heartbeat_at"},
}

REQUIRED_ENUM_VALUES: dict[str, set[str]] = {
    "check_status": {"on_time", "late", "early_leave", "missed"},
    "daily_status": {"present", "half_day_absent", "in_progress", "absent", "on_leave"},
}


def verify_runtime_schema(engine: Engine, *, require_migrations: bool = True) -> SchemaGuardResult:
    issues: list[str] = []
    warnings: list[str] = []
    checked_at_utc = datetime.now(timezone.utc)
    inspector = inspect(engine)
    table_names = set(inspector.get_table_names())

    for table_name, required_columns in REQUIRED_TABLE_COLUMNS.items():
        if table_name not in table_names:
            issues.append(f"MISSING_TABLE:{table_name}")
            continue
        column_names = {str(item.get("name")) for item in inspector.get_columns(table_name)}
        missing_columns = sorted(item for item in required_columns if item not in column_names)
        if missing_columns:
            issues.append(f"MISSING_COLUMNS:{table_name}:{','.join(missing_columns)}")

    # Native enum types only exist on PostgreSQL.
    if engine.dialect.name == "postgresql":
        enum_values_by_name: dict[str, set[str]] = {}
        for enum_item in inspector.get_enums() or []:
            name = str(enum_item.get("name") or "").strip()
            labels = enum_item.get("labels")
            if name and isinstance(labels, list):
                enum_values_by_name[name] = {str(label) for label in labels}

        for enum_name, required_values in REQUIRED_ENUM_VALUES.items():
            if enum_name not in enum_values_by_name:
                warnings.append(f"ENUM_NOT_FOUND:{enum_name}")
                continue
            missing_values = sorted(item for item in required_values if item not in enum_values_by_name[enum_name])
            if missing_values:
                issues.append(f"MISSING_ENUM_VALUES:{enum_name}:{','.join(missing_values)}")

    if require_migrations:
        if "alembic_version" not in table_names:
            issues.append("ALEMBIC_VERSION_MISSING")
        else:
            with engine.connect() as connection:
                row = connection.execute(text("SELECT version_num FROM alembic_version LIMIT 1")).scalar()
            if not (str(row).strip() if row is not None else ""):
                issues.append("ALEMBIC_VERSION_EMPTY")

    return SchemaGuardResult(
        ok=len(issues) == 0,
        checked_at_utc=checked_at_utc,
        issues=issues,
        warnings=warnings,
    )
