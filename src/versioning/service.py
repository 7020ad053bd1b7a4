"""Module versioning service: publish, rollback, history, archive.

Every fallible step (state checks, loading the target version, building
the snapshot or restored rule set) runs before the first write. All writes
go through the caller's session, so publish and rollback commit or roll
back as one unit of work (see ``src.db.session.get_async_session``).

Errors follow the service convention: ``KeyError`` for a missing module or
version, ``ValueError`` for an invalid argument or lifecycle transition.
"""

from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from src.models.common import ModuleStatus, utc_now
from src.models.module import (
    DomainExpertiseModule,
    DomainExpertiseVersion,
    RuleSet,
    VersionComparison,
)
from src.repositories.expertise import (
    ExpertiseModuleRepository,
    ExpertiseVersionRepository,
    module_from_row,
    version_from_row,
)
from src.versioning.snapshots import (
    build_snapshot,
    check_transition,
    compare_snapshots,
    rollback_changelog,
)

logger = logging.getLogger(__name__)


class ModuleVersioningService:
    """Publishes immutable versions of a module and restores old ones.

    Parameters
    ----------
    session:
        Unit-of-work session. The service flushes but never commits.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._modules = ExpertiseModuleRepository(session)
        self._versions = ExpertiseVersionRepository(session)

    async def _require_module(self, module_id: UUID) -> DomainExpertiseModule:
        row = await self._modules.get_module(module_id)
        if row is None:
            msg = f"Module {module_id} not found."
            raise KeyError(msg)
        return module_from_row(row)

    # ------------------------------------------------------------------
    # Publish / rollback
    # ------------------------------------------------------------------

    async def publish(
        self,
        module_id: UUID,
        changelog: str,
        published_by: UUID | None = None,
        *,
        restored_from_version: int | None = None,
    ) -> DomainExpertiseVersion:
        """Snapshot the live rule graph as version ``current_version + 1``.

        The new version becomes the only active one; the module moves to
        ``published``.

        Raises
        ------
        ValueError
            If the changelog is empty or the module is archived.
        KeyError
            If the module does not exist.
        """
        if not changelog or not changelog.strip():
            msg = "A changelog is required to publish."
            raise ValueError(msg)

        module = await self._require_module(module_id)
        check_transition(module.status, ModuleStatus.PUBLISHED)

        rule_set = await self._modules.load_rule_set(module_id)
        snapshot = build_snapshot(module, rule_set)
        now = utc_now()
        version = DomainExpertiseVersion(
            module_id=module_id,
            version=module.current_version + 1,
            changelog=changelog.strip(),
            published_by=published_by,
            published_at=now,
            is_active=True,
            restored_from_version=restored_from_version,
            snapshot=snapshot,
        )

        await self._versions.deactivate_all(module_id)
        await self._versions.create(version)
        await self._modules.update_status(
            module_id,
            status=ModuleStatus.PUBLISHED,
            modified_by=published_by,
            current_version=version.version,
            published_at=now,
        )
        logger.info(
            "Published module %s version %d (%d decoders, %d drivers, %d markers)",
            module_id,
            version.version,
            len(snapshot.decoders),
            len(snapshot.value_drivers),
            len(snapshot.authenticity_markers),
        )
        return version

    async def rollback(
        self,
        module_id: UUID,
        version_id: UUID,
        rolled_back_by: UUID | None = None,
        reason: str | None = None,
    ) -> DomainExpertiseVersion:
        """Restore a historical snapshot and publish it as a new version.

        Restored definitions keep their original ids. No version row is
        deleted or renumbered; the new version records
        ``restored_from_version``.

        Raises
        ------
        KeyError
            If the module does not exist, or the version does not exist or
            belongs to another module.
        ValueError
            If the module is archived.
        """
        module = await self._require_module(module_id)
        check_transition(module.status, ModuleStatus.PUBLISHED)

        row = await self._versions.get(version_id)
        if row is None or row.module_id != module_id:
            msg = f"Version {version_id} not found for module {module_id}."
            raise KeyError(msg)
        target = version_from_row(row)
        restored = target.snapshot.to_rule_set()

        await self._modules.replace_rule_set(module_id, restored)
        logger.info(
            "Restored module %s to the content of version %d", module_id, target.version,
        )
        return await self.publish(
            module_id,
            rollback_changelog(target.version, reason),
            rolled_back_by,
            restored_from_version=target.version,
        )

    async def archive(
        self, module_id: UUID, archived_by: UUID | None = None,
    ) -> DomainExpertiseModule:
        """Move a module to the terminal ``archived`` state."""
        module = await self._require_module(module_id)
        check_transition(module.status, ModuleStatus.ARCHIVED)
        row = await self._modules.update_status(
            module_id, status=ModuleStatus.ARCHIVED, modified_by=archived_by,
        )
        logger.info("Archived module %s", module_id)
        return module_from_row(row)

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    async def list_versions(self, module_id: UUID) -> list[DomainExpertiseVersion]:
        """All versions of a module, newest first."""
        await self._require_module(module_id)
        rows = await self._versions.list_for_module(module_id)
        return [version_from_row(r) for r in rows]

    async def get_version(self, module_id: UUID, version_id: UUID) -> DomainExpertiseVersion:
        row = await self._versions.get(version_id)
        if row is None or row.module_id != module_id:
            msg = f"Version {version_id} not found for module {module_id}."
            raise KeyError(msg)
        return version_from_row(row)

    async def get_active_version(self, module_id: UUID) -> DomainExpertiseVersion | None:
        row = await self._versions.get_active(module_id)
        return version_from_row(row) if row is not None else None

    async def compare_versions(
        self, module_id: UUID, from_version: int, to_version: int,
    ) -> VersionComparison:
        old = await self._versions.get_by_number(module_id, from_version)
        new = await self._versions.get_by_number(module_id, to_version)
        if old is None or new is None:
            missing = from_version if old is None else to_version
            msg = f"Version {missing} not found for module {module_id}."
            raise KeyError(msg)
        return compare_snapshots(
            version_from_row(old).snapshot,
            version_from_row(new).snapshot,
            from_version=from_version,
            to_version=to_version,
        )

    async def load_published_rule_set(self, module_id: UUID) -> RuleSet:
        """Rule set of the active published version, for serving the engines."""
        active = await self.get_active_version(module_id)
        if active is None:
            msg = f"Module {module_id} has no published version."
            raise KeyError(msg)
        return active.snapshot.to_rule_set()
