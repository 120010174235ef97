"""Resource endpoints guarded by the policy evaluator."""

from typing import Any

from fastapi import APIRouter, Body, status

from rowguard.api.deps import CurrentSubject, ResourceServiceDep

router = APIRouter(prefix="/resources", tags=["resources"])


@router.get("/{resource_type}")
async def list_rows(
    resource_type: str,
    subject: CurrentSubject,
    service: ResourceServiceDep,
) -> list[dict[str, Any]]:
    """List the rows the caller may read. Unreadable rows are filtered out, not refused."""
    return service.list(subject, resource_type)


@router.post("/{resource_type}", status_code=status.HTTP_201_CREATED)
async def create_row(
    resource_type: str,
    subject: CurrentSubject,
    service: ResourceServiceDep,
    payload: dict[str, Any] = Body(...),
) -> dict[str, Any]:
    return service.create(subject, resource_type, payload)


@router.get("/{resource_type}/{row_id}")
async def get_row(
    resource_type: str,
    row_id: str,
    subject: CurrentSubject,
    service: ResourceServiceDep,
) -> dict[str, Any]:
    return service.get(subject, resource_type, row_id)


@router.patch("/{resource_type}/{row_id}")
async def update_row(
    resource_type: str,
    row_id: str,
    subject: CurrentSubject,
    service: ResourceServiceDep,
    changes: dict[str, Any] = Body(...),
) -> dict[str, Any]:
    return service.update(subject, resource_type, row_id, changes)


@router.delete("/{resource_type}/{row_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_row(
    resource_type: str,
    row_id: str,
    subject: CurrentSubject,
    service: ResourceServiceDep,
) -> None:
    service.delete(subject, resource_type, row_id)
