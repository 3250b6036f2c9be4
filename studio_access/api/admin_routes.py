"""
Admin API routes for managing content access and lifecycle.

Protected by principal JWT authentication. Allow-list and lifecycle routes
accept the unit's owner or an admin; recycle-bin purging requires admin.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from structlog import get_logger

from studio_access.api.dependencies import (
    get_admin_principal,
    get_content_service,
    get_principal,
)
from studio_access.exceptions import AuthorizationError, ContentNotFoundError
from studio_access.models.api import (
    AllowListRequest,
    AllowListResponse,
    ContentPath,
    ContentStatusResponse,
    LifecycleRequest,
    RecycleBinPurgeResponse,
)
from studio_access.models.domain import LifecycleChange, Principal
from studio_access.services.content import ContentService

logger = get_logger(__name__)
router = APIRouter(prefix="/v1/admin", tags=["admin"])


def _status_response(change: LifecycleChange) -> ContentStatusResponse:
    return ContentStatusResponse(
        kind=change.kind,
        content_id=change.content_id,
        status=change.status,
        recycle_bin_expires_at=change.recycle_bin_expires_at,
    )


def _management_error(exc: Exception) -> HTTPException:
    if isinstance(exc, ContentNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Content not found")
    return HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail="Only the owner or an admin can manage this content",
    )


@router.post(
    "/recycle-bin/purge",
    response_model=RecycleBinPurgeResponse,
)
async def purge_recycle_bin(
    admin: Principal = Depends(get_admin_principal),
    service: ContentService = Depends(get_content_service),
) -> RecycleBinPurgeResponse:
    """Permanently remove content whose recycle-bin retention has lapsed."""
    purged = await service.purge_expired()
    logger.info("recycle_bin_purge_requested", principal_id=admin.principal_id, purged=purged)
    return RecycleBinPurgeResponse(purged=purged)


@router.post(
    "/{content_path}/{content_id}/allow-list",
    response_model=AllowListResponse,
)
async def add_to_allow_list(
    content_path: ContentPath,
    content_id: UUID,
    request: AllowListRequest,
    principal: Principal = Depends(get_principal),
    service: ContentService = Depends(get_content_service),
) -> AllowListResponse:
    """
    Grant a principal access to private content.

    Adding a principal twice is a no-op (added=false).
    """
    kind = content_path.kind
    try:
        added = await service.grant_access(principal, kind, content_id, request.principal_id)
    except (ContentNotFoundError, AuthorizationError) as exc:
        raise _management_error(exc) from exc

    return AllowListResponse(
        kind=kind,
        content_id=content_id,
        principal_id=request.principal_id,
        added=added,
    )


@router.post("/{content_path}/{content_id}/archive", response_model=ContentStatusResponse)
async def archive_content(
    content_path: ContentPath,
    content_id: UUID,
    principal: Principal = Depends(get_principal),
    service: ContentService = Depends(get_content_service),
) -> ContentStatusResponse:
    """Archive content. Archived content is not delivered."""
    try:
        change = await service.archive(principal, content_path.kind, content_id)
    except (ContentNotFoundError, AuthorizationError) as exc:
        raise _management_error(exc) from exc
    return _status_response(change)


@router.post("/{content_path}/{content_id}/delete", response_model=ContentStatusResponse)
async def delete_content(
    content_path: ContentPath,
    content_id: UUID,
    request: LifecycleRequest | None = None,
    principal: Principal = Depends(get_principal),
    service: ContentService = Depends(get_content_service),
) -> ContentStatusResponse:
    """Move content to the recycle bin until its retention lapses."""
    reason = request.reason if request else None
    try:
        change = await service.delete(principal, content_path.kind, content_id, reason)
    except (ContentNotFoundError, AuthorizationError) as exc:
        raise _management_error(exc) from exc
    return _status_response(change)


@router.post("/{content_path}/{content_id}/restore", response_model=ContentStatusResponse)
async def restore_content(
    content_path: ContentPath,
    content_id: UUID,
    principal: Principal = Depends(get_principal),
    service: ContentService = Depends(get_content_service),
) -> ContentStatusResponse:
    """Restore archived or deleted content to active."""
    try:
        change = await service.restore(principal, content_path.kind, content_id)
    except (ContentNotFoundError, AuthorizationError) as exc:
        raise _management_error(exc) from exc
    return _status_response(change)
