"""Compare the raffle models with the live database schema.

Exit codes: 0 when in sync, 1 when differences exist, 2 on errors.
"""

from __future__ import annotations

import sys

from alembic.autogenerate import api as ag_api
from alembic.runtime.migration import MigrationContext

from raffledraw.db.engine import make_engine
from raffledraw.models import Base


def _describe(op, depth: int = 0) -> list[str]:
    lines = [f"{'  ' * depth}- {op}"]
    for child in getattr(op, "ops", None) or []:
        lines.extend(_describe(child, depth + 1))
    return lines


def diff_lines(connection) -> list[str]:
    """Return a readable line per pending autogenerate operation."""
    context = MigrationContext.configure(
        connection=connection,
        opts={
            "compare_type": True,
            "compare_server_default": True,
            "render_as_batch": connection.dialect.name == "sqlite",
        },
    )
    upgrade_ops = ag_api.produce_migrations(context, Base.metadata).upgrade_ops
    if upgrade_ops is None:
        raise RuntimeError("autogenerate produced no upgrade operations")
    lines: list[str] = []
    for op in upgrade_ops.ops or []:
        lines.extend(_describe(op))
    return lines


def main(argv: list[str]) -> int:
    engine = make_engine(argv[1] if len(argv) > 1 else None)
    target = engine.url.render_as_string(hide_password=True)
    try:
        with engine.connect() as connection:
            lines = diff_lines(connection)
    except Exception as exc:
        print(f"Schema drift check: ERROR for {target}: {exc}", file=sys.stderr)
        return 2
    if not lines:
        print(f"Schema drift check: OK for {target}.")
        return 0
    print(f"Schema drift check: {len(lines)} difference(s) for {target}:")
    print("\n".join(lines))
    return 1


if __name__ == "__main__":
    raise SystemExit(main(sys.argv))
