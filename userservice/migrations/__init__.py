"""Schema migrations, managed by Alembic.

Revisions live in ``versions/`` and are written by hand. The
``alembic_version`` table is the ledger: :func:`apply_migrations` upgrades to
``head`` and only the revisions past the recorded one run, so it is safe to
call on every start-up.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Set

from alembic import command
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory
from alembic.script.revision import RevisionError
from alembic.util import CommandError
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from ..errors import MigrationError

logger = logging.getLogger("userservice.migrations")

SCRIPT_LOCATION = Path(__file__).resolve().parent
LEDGER_TABLE = "alembic_version"


@dataclass(frozen=True)
class Migration:
    """A single revision in the migration chain."""

    version: str
    name: str


def build_config() -> Config:
    """Alembic configuration pointing at the bundled revisions."""

    config = Config()
    config.set_main_option("script_location", str(SCRIPT_LOCATION))
    return config


def known_migrations() -> List[Migration]:
    """Every revision shipped with this release, oldest first."""

    script = ScriptDirectory.from_config(build_config())
    revisions = list(script.walk_revisions("base", "heads"))
    revisions.reverse()
    return [Migration(revision.revision, revision.doc) for revision in revisions]


def applied_versions(engine: Engine) -> Set[str]:
    """Return the revisions already applied (empty before the first run)."""

    script = ScriptDirectory.from_config(build_config())
    with engine.connect() as conn:
        heads = MigrationContext.configure(conn).get_current_heads()

    applied: Set[str] = set()
    for head in heads:
        try:
            applied.update(revision.revision for revision in script.iterate_revisions(head, "base"))
        except (CommandError, RevisionError) as exc:
            raise MigrationError(
                f"Database records migration {head} which this release does not know about",
                version=head,
            ) from exc
    return applied


def pending_migrations(engine: Engine) -> List[Migration]:
    done = applied_versions(engine)
    return [migration for migration in known_migrations() if migration.version not in done]


def apply_migrations(engine: Engine) -> List[Migration]:
    """Upgrade the database to the newest revision and return what ran."""

    try:
        pending = pending_migrations(engine)
    except SQLAlchemyError as exc:
        raise MigrationError(f"Unable to read the migration ledger: {exc}") from exc

    if not pending:
        logger.info("Schema is up to date; no pending migrations")
        return []

    config = build_config()
    completed: List[str] = []
    config.attributes["completed"] = completed
    try:
        with engine.begin() as conn:
            config.attributes["connection"] = conn
            command.upgrade(config, "head")
    except Exception as exc:
        failed = next(
            (migration for migration in pending if migration.version not in completed),
            pending[-1],
        )
        raise MigrationError(
            f"Migration {failed.version} ({failed.name}) failed: {exc}",
            version=failed.version,
        ) from exc

    logger.info("Applied %d migration(s)", len(pending))
    return pending


__all__ = [
    "LEDGER_TABLE",
    "Migration",
    "applied_versions",
    "apply_migrations",
    "build_config",
    "known_migrations",
    "pending_migrations",
]
