"""
Content Management Service - allow-list administration and lifecycle.

Only the owner of a unit or an admin principal may manage it. Deletion is
soft: the unit moves to the recycle bin with a purge deadline and can be
restored until purge_expired() removes it and its stored bytes.
"""

from datetime import UTC, datetime, timedelta
from uuid import UUID

from structlog import get_logger

from studio_access.config import settings
from studio_access.exceptions import AuthorizationError, ContentNotFoundError, StorageError
from studio_access.models.api import ContentKind, ContentStatus
from studio_access.models.domain import ContentUnit, LifecycleChange, Principal
from studio_access.services.entitlements import EntitlementStore
from studio_access.services.storage import StorageBackend

logger = get_logger(__name__)

MANAGE_PERMISSION = "content:manage"


def _utc_now() -> datetime:
    return datetime.now(UTC)


def can_manage(unit: ContentUnit, principal: Principal) -> bool:
    return principal.is_admin or principal.principal_id == unit.owner_id


class ContentService:
    """Owner and admin operations on galleries and uploads."""

    def __init__(
        self,
        store: EntitlementStore,
        storage: StorageBackend | None = None,
        retention_days: int | None = None,
    ) -> None:
        self.store = store
        self.storage = storage
        self.retention_days = retention_days or settings.recycle_bin_retention_days

    async def list_accessible(
        self, principal: Principal
    ) -> tuple[list[ContentUnit], list[ContentUnit]]:
        """Active galleries and uploads the principal can open."""
        galleries = await self.store.list_accessible(ContentKind.GALLERY, principal.principal_id)
        uploads = await self.store.list_accessible(ContentKind.UPLOAD, principal.principal_id)
        return galleries, uploads

    async def grant_access(
        self, actor: Principal, kind: ContentKind, content_id: UUID, principal_id: str
    ) -> bool:
        """
        Add principal_id to the unit's allow-list.

        Returns:
            False when the principal was already allow-listed

        Raises:
            ContentNotFoundError: Unknown unit
            AuthorizationError: Actor is neither owner nor admin
        """
        await self._managed_unit(actor, kind, content_id)

        async with self.store.transaction():
            added = await self.store.add_to_allow_list(
                kind, content_id, principal_id, granted_by=actor.principal_id
            )

        logger.info(
            "allow_list_updated",
            content_kind=kind.value,
            content_id=str(content_id),
            principal_id=principal_id,
            granted_by=actor.principal_id,
            added=added,
        )
        return added

    async def archive(
        self, actor: Principal, kind: ContentKind, content_id: UUID
    ) -> LifecycleChange:
        await self._managed_unit(actor, kind, content_id)
        async with self.store.transaction():
            await self.store.set_status(kind, content_id, ContentStatus.ARCHIVED)

        logger.info("content_archived", content_kind=kind.value, content_id=str(content_id))
        return LifecycleChange(kind=kind, content_id=content_id, status=ContentStatus.ARCHIVED)

    async def delete(
        self,
        actor: Principal,
        kind: ContentKind,
        content_id: UUID,
        reason: str | None = None,
    ) -> LifecycleChange:
        """Move a unit to the recycle bin."""
        await self._managed_unit(actor, kind, content_id)
        expires_at = _utc_now() + timedelta(days=self.retention_days)

        async with self.store.transaction():
            await self.store.set_status(kind, content_id, ContentStatus.DELETED)
            await self.store.add_recycle_bin_entry(
                kind, content_id, actor.principal_id, reason, expires_at
            )

        logger.info(
            "content_moved_to_recycle_bin",
            content_kind=kind.value,
            content_id=str(content_id),
            deleted_by=actor.principal_id,
            expires_at=expires_at.isoformat(),
        )
        return LifecycleChange(
            kind=kind,
            content_id=content_id,
            status=ContentStatus.DELETED,
            recycle_bin_expires_at=expires_at,
        )

    async def restore(
        self, actor: Principal, kind: ContentKind, content_id: UUID
    ) -> LifecycleChange:
        """Reactivate an archived or deleted unit."""
        await self._managed_unit(actor, kind, content_id)
        async with self.store.transaction():
            await self.store.set_status(kind, content_id, ContentStatus.ACTIVE)
            await self.store.remove_recycle_bin_entry(kind, content_id)

        logger.info("content_restored", content_kind=kind.value, content_id=str(content_id))
        return LifecycleChange(kind=kind, content_id=content_id, status=ContentStatus.ACTIVE)

    async def purge_expired(self, now: datetime | None = None) -> int:
        """
        Permanently remove recycle-bin entries past their deadline.

        Stored bytes are deleted first; a storage failure leaves the entry
        in place for the next run.
        """
        cutoff = now or _utc_now()
        expired = await self.store.get_expired_recycle_bin_entries(cutoff)

        purged = 0
        for kind, content_id in expired:
            unit = await self.store.get_content(kind, content_id)
            if unit is not None and unit.stored_file is not None and self.storage is not None:
                stored = unit.stored_file
                try:
                    await self.storage.delete(stored.storage_key, stored.bucket)
                except StorageError as exc:
                    logger.warning(
                        "recycle_bin_purge_storage_failed",
                        content_kind=kind.value,
                        content_id=str(content_id),
                        error=exc.message,
                    )
                    continue

            async with self.store.transaction():
                if unit is not None:
                    await self.store.delete_content(kind, content_id)
                await self.store.remove_recycle_bin_entry(kind, content_id)
            purged += 1

        logger.info("recycle_bin_purged", purged=purged, expired=len(expired))
        return purged

    async def _managed_unit(
        self, actor: Principal, kind: ContentKind, content_id: UUID
    ) -> ContentUnit:
        unit = await self.store.get_content(kind, content_id)
        if unit is None:
            raise ContentNotFoundError(kind, content_id)
        if not can_manage(unit, actor):
            logger.warning(
                "content_manage_forbidden",
                content_kind=kind.value,
                content_id=str(content_id),
                principal_id=actor.principal_id,
            )
            raise AuthorizationError(MANAGE_PERMISSION)
        return unit
