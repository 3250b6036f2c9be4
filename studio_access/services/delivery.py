"""
Signed Delivery Service - issues time-boxed download URLs after access checks.

Every URL is produced only after the access evaluator grants the caller.
Non-granted decisions are returned unchanged so callers can surface the
exact gate (authenticate, pay, denied). A gallery download signs each
contained active upload with one shared expiry and reports failures per item.
"""

from datetime import UTC, datetime, timedelta
from uuid import UUID

from structlog import get_logger

from studio_access.config import settings
from studio_access.exceptions import StorageError
from studio_access.models.api import ContentKind
from studio_access.models.domain import (
    BatchDownload,
    ContentUnit,
    Decision,
    Denied,
    DownloadItem,
    Principal,
    Rejection,
    SignedLink,
    SingleDownload,
)
from studio_access.observability import metrics
from studio_access.observability.tracing import traced
from studio_access.services.access import NOT_FOUND, evaluate, evaluate_upload, is_granted
from studio_access.services.entitlements import EntitlementStore
from studio_access.services.storage import StorageBackend

logger = get_logger(__name__)

DOWNLOAD_DISABLED = "downloads disabled"
NO_FILE = "no stored file"


def _utc_now() -> datetime:
    return datetime.now(UTC)


class SignedDeliveryService:
    """Access-checked download URL issuance."""

    def __init__(
        self,
        store: EntitlementStore,
        storage: StorageBackend,
        ttl_seconds: int | None = None,
    ) -> None:
        self.store = store
        self.storage = storage
        self.ttl_seconds = ttl_seconds or settings.download_url_ttl_seconds

    async def check_access(
        self,
        kind: ContentKind,
        content_id: UUID,
        principal: Principal | None,
        via_gallery_id: UUID | None = None,
    ) -> Decision:
        """Evaluate access without issuing anything. Inactive units are not found."""
        _, decision = await self._decide(kind, content_id, principal, via_gallery_id)
        return decision

    @traced("signed_delivery")
    async def issue_download(
        self,
        kind: ContentKind,
        content_id: UUID,
        principal: Principal | None,
        via_gallery_id: UUID | None = None,
    ) -> SingleDownload | BatchDownload | Rejection:
        """
        Issue a download for an upload or a whole gallery.

        Raises:
            StorageError: Signing a single upload failed
        """
        unit, decision = await self._decide(kind, content_id, principal, via_gallery_id)
        if unit is None or not is_granted(decision):
            logger.info(
                "download_rejected",
                content_kind=kind.value,
                content_id=str(content_id),
                principal_id=principal.principal_id if principal else None,
                decision=decision.kind.value,
            )
            return Rejection(decision)

        if kind is ContentKind.GALLERY:
            return await self._issue_gallery(unit)
        return await self._issue_upload(unit)

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    async def _decide(
        self,
        kind: ContentKind,
        content_id: UUID,
        principal: Principal | None,
        via_gallery_id: UUID | None,
    ) -> tuple[ContentUnit | None, Decision]:
        unit = await self.store.get_content(kind, content_id)
        if unit is None or not unit.is_active:
            decision: Decision = Denied(NOT_FOUND)
        elif kind is ContentKind.UPLOAD and via_gallery_id is not None:
            gallery = await self._active_gallery(via_gallery_id)
            decision = evaluate_upload(unit, principal, gallery)
        else:
            decision = evaluate(unit, principal)

        metrics.record_access_decision(kind.value, decision.kind.value)
        return unit, decision

    async def _active_gallery(self, gallery_id: UUID) -> ContentUnit | None:
        gallery = await self.store.get_content(ContentKind.GALLERY, gallery_id)
        if gallery is None or not gallery.is_active:
            return None
        return gallery

    async def _issue_upload(self, unit: ContentUnit) -> SingleDownload | Rejection:
        stored = unit.stored_file
        if stored is None:
            return Rejection(Denied(NO_FILE))

        expires_at = _utc_now() + timedelta(seconds=self.ttl_seconds)
        url = await self.storage.signed_url(stored.storage_key, stored.bucket, self.ttl_seconds)

        metrics.record_signed_urls(ContentKind.UPLOAD.value, 1)
        logger.info(
            "download_url_issued",
            upload_id=str(unit.content_id),
            expires_at=expires_at.isoformat(),
        )
        return SingleDownload(unit=unit, link=SignedLink(url=url, expires_at=expires_at))

    async def _issue_gallery(self, gallery: ContentUnit) -> BatchDownload | Rejection:
        if not gallery.download_enabled:
            return Rejection(Denied(DOWNLOAD_DISABLED))

        contained = await self.store.get_gallery_items(gallery.content_id)
        uploads = [upload for upload in contained if upload.is_active]
        expires_at = _utc_now() + timedelta(seconds=self.ttl_seconds)

        items: list[DownloadItem] = []
        for upload in uploads:
            stored = upload.stored_file
            if stored is None:
                items.append(
                    DownloadItem(
                        upload_id=upload.content_id,
                        file_name=upload.title,
                        content_type="",
                        error=NO_FILE,
                    )
                )
                continue

            try:
                url = await self.storage.signed_url(
                    stored.storage_key, stored.bucket, self.ttl_seconds
                )
            except StorageError as exc:
                logger.warning(
                    "gallery_item_sign_failed",
                    gallery_id=str(gallery.content_id),
                    upload_id=str(upload.content_id),
                    error=exc.message,
                )
                items.append(
                    DownloadItem(
                        upload_id=upload.content_id,
                        file_name=stored.file_name,
                        content_type=stored.content_type,
                        error=exc.message,
                    )
                )
                continue

            items.append(
                DownloadItem(
                    upload_id=upload.content_id,
                    file_name=stored.file_name,
                    content_type=stored.content_type,
                    url=url,
                )
            )

        batch = BatchDownload(gallery=gallery, expires_at=expires_at, items=tuple(items))
        metrics.record_signed_urls(ContentKind.GALLERY.value, len(items) - batch.failed_count)
        logger.info(
            "gallery_download_issued",
            gallery_id=str(gallery.content_id),
            item_count=len(items),
            failed_count=batch.failed_count,
        )
        return batch
