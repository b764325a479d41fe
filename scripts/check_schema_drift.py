"""Compare the ORM models with the configured database.

Exit codes: 0 when the schema matches, 1 when differences were found, 2 when
the check itself could not run.
"""

from __future__ import annotations

import sys
from collections import Counter

from alembic.autogenerate import api as ag_api
from alembic.runtime.migration import MigrationContext

from drawengine.config import EngineSettings
from drawengine.db.engine import make_engine
from drawengine.models import Base


def _flatten(ops) -> list:
    flat = []
    for op in ops:
        sub_ops = getattr(op, "ops", None)
        if sub_ops:
            flat.extend(_flatten(sub_ops))
        else:
            flat.append(op)
    return flat


def _table_of(op) -> str:
    for attr in ("table_name", "source_table"):
        name = getattr(op, attr, None)
        if name:
            return name
    table = getattr(op, "table", None)
    return getattr(table, "name", "?")


def main() -> int:
    settings = EngineSettings.from_env()
    engine = make_engine(settings.database_url)
    url_display = engine.url.render_as_string(hide_password=True)
    try:
        with engine.connect() as connection:
            context = MigrationContext.configure(
                connection=connection,
                opts={
                    "compare_type": True,
                    "compare_server_default": True,
                    "render_as_batch": connection.dialect.name == "sqlite",
                },
            )
            revision = context.get_current_revision()
            migration = ag_api.produce_migrations(context, Base.metadata)
    except Exception as exc:
        print(f"Schema drift check: ERROR for {url_display}: {exc}", file=sys.stderr)
        return 2

    upgrade_ops = migration.upgrade_ops
    if upgrade_ops is None:
        print(f"Schema drift check: ERROR for {url_display}: missing upgrade ops.")
        return 2
    if upgrade_ops.is_empty():
        print(f"Schema drift check: OK for {url_display} at revision {revision}.")
        return 0

    ops = _flatten(upgrade_ops.ops or [])
    per_table = Counter(_table_of(op) for op in ops)
    print(
        f"Schema drift check: FAILED for {url_display} at revision {revision}: "
        f"{len(ops)} differences."
    )
    for table, count in sorted(per_table.items()):
        print(f"  {table}: {count}")
    for op in ops:
        print(f"  - {op}")
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
