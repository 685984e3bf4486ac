"""
Schema evolution manager - forward migration and guarded rollback

Versions are Alembic revisions under migrations/versions. The applied
revision lives in the alembic_version table, so every operator session sees
the same state. Operations are expected to be run one at a time (no internal
locking).
"""
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from alembic import command
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory
from alembic.util import CommandError
from sqlalchemy import inspect, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from nodescore.domain.errors import DestructiveActionRequiresConfirmation, MigrationStateError
from nodescore.infrastructure.db.session import get_engine

logger = logging.getLogger(__name__)

BASELINE_REVISION = "a3f1c9d2e7b4"
NODE_CENTRIC_REVISION = "b8e2d4f6a1c3"

# Tables whose rows are lost when the revision is rolled back
DESTRUCTIVE_TABLES = {
    NODE_CENTRIC_REVISION: ("node_metrics", "opportunities"),
    BASELINE_REVISION: ("taxonomy_nodes",),
}

# Revision scripts ship with the source tree, not the installed package
MIGRATIONS_DIR = Path(__file__).resolve().parents[2] / "migrations"


class SchemaState(str, Enum):
    UNAPPLIED = "unapplied"
    APPLIED = "applied"


@dataclass(frozen=True)
class SchemaStatus:
    version: str
    state: SchemaState
    current_revision: str | None


@dataclass(frozen=True)
class MigrationResult:
    ok: bool
    version: str
    state: SchemaState
    changed: bool
    message: str


class SchemaEvolutionManager:
    """
    apply / rollback / status over the Alembic revision chain

    Example:
        >>> manager = SchemaEvolutionManager(engine)
        >>> manager.apply(NODE_CENTRIC_REVISION).changed
        True
        >>> manager.rollback(NODE_CENTRIC_REVISION)
        Traceback (most recent call last):
        DestructiveActionRequiresConfirmation: Rolling back b8e2d4f6a1c3 permanently deletes ...
    """

    def __init__(self, engine: Engine | None = None, script_location: Path | str | None = None):
        self.engine = engine if engine is not None else get_engine()
        self.config = Config()
        location = str(script_location or MIGRATIONS_DIR)
        self.config.set_main_option("script_location", location)
        try:
            self.script = ScriptDirectory.from_config(self.config)
        except CommandError as exc:
            raise MigrationStateError(
                f"Migration scripts not found at {location}; run from a source checkout "
                f"or pass script_location"
            ) from exc

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def status(self, version: str = NODE_CENTRIC_REVISION) -> SchemaStatus:
        self._resolve(version)
        with self.engine.connect() as conn:
            current = self._current_revision(conn)
        return SchemaStatus(version=version, state=self._state_of(version, current), current_revision=current)

    def preview_rollback(self, version: str = NODE_CENTRIC_REVISION) -> dict[str, int]:
        """Row counts per table that rolling back `version` would destroy"""
        self._resolve(version)
        tables = DESTRUCTIVE_TABLES.get(version, ())
        with self.engine.connect() as conn:
            existing = set(inspect(conn).get_table_names())
            return {
                table: conn.execute(text(f"SELECT COUNT(*) FROM {table}")).scalar_one()
                for table in tables
                if table in existing
            }

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def apply(self, version: str = NODE_CENTRIC_REVISION) -> MigrationResult:
        """
        Upgrade the schema up to and including `version`

        Already applied is a no-op (changed=False). Execution failures are
        rolled back and reported with ok=False.

        Raises:
            MigrationStateError: unknown version
        """
        self._resolve(version)
        if self.status(version).state is SchemaState.APPLIED:
            return MigrationResult(True, version, SchemaState.APPLIED, False, f"{version} already applied")

        try:
            self._run(command.upgrade, version)
        except (SQLAlchemyError, CommandError) as exc:
            logger.exception("Schema upgrade to %s failed", version)
            return MigrationResult(False, version, self.status(version).state, False, f"Upgrade failed: {exc}")

        logger.info("Schema upgraded to %s", version)
        return MigrationResult(True, version, SchemaState.APPLIED, True, f"{version} applied")

    def rollback(self, version: str = NODE_CENTRIC_REVISION, acknowledge_data_loss: bool = False) -> MigrationResult:
        """
        Downgrade `version` to its predecessor

        Not applied is a no-op. Only the most recent applied revision can be
        rolled back.

        Raises:
            MigrationStateError: unknown version, or later revisions still applied
            DestructiveActionRequiresConfirmation: acknowledge_data_loss is False
        """
        revision = self._resolve(version)
        current = self.status(version).current_revision
        if self._state_of(version, current) is SchemaState.UNAPPLIED:
            return MigrationResult(True, version, SchemaState.UNAPPLIED, False, f"{version} is not applied")
        if current != version:
            raise MigrationStateError(
                f"Cannot roll back {version}: revision {current} depends on it and is still applied"
            )

        doomed = self.preview_rollback(version)
        if not acknowledge_data_loss:
            raise DestructiveActionRequiresConfirmation(version, doomed)

        target = revision.down_revision or "base"
        try:
            self._run(command.downgrade, target)
        except (SQLAlchemyError, CommandError) as exc:
            logger.exception("Schema rollback of %s failed", version)
            return MigrationResult(False, version, self.status(version).state, False, f"Rollback failed: {exc}")

        logger.warning("Schema %s rolled back to %s, dropped rows: %s", version, target, doomed)
        return MigrationResult(True, version, SchemaState.UNAPPLIED, True, f"{version} rolled back")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _resolve(self, version: str):
        try:
            revision = self.script.get_revision(version)
        except CommandError as exc:
            raise MigrationStateError(f"Unknown schema version: {version!r}") from exc
        if revision is None:
            raise MigrationStateError(f"Unknown schema version: {version!r}")
        return revision

    def _current_revision(self, conn: Connection) -> str | None:
        heads = MigrationContext.configure(conn).get_current_heads()
        if len(heads) > 1:
            raise MigrationStateError(f"Multiple schema heads applied: {', '.join(heads)}")
        return heads[0] if heads else None

    def _state_of(self, version: str, current: str | None) -> SchemaState:
        if current is None:
            return SchemaState.UNAPPLIED
        applied = {rev.revision for rev in self.script.iterate_revisions(current, "base")}
        return SchemaState.APPLIED if version in applied else SchemaState.UNAPPLIED

    def _run(self, operation, target: str) -> None:
        # env.py picks the connection up from config.attributes
        with self.engine.begin() as conn:
            self.config.attributes["connection"] = conn
            try:
                operation(self.config, target)
            finally:
                self.config.attributes.pop("connection", None)
