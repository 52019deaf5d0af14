from fastapi import APIRouter, Depends, Query

from gateway.api.errors import to_http_exception
from gateway.core.auth import Principal
from gateway.core.errors import GatewayError
from gateway.core.security import require_admin
from gateway.schemas.namespaces import AdminNamespaceDeleteRequest, HistoryOut, NamespaceDeleteOut, NamespaceOut
from gateway.services.namespaces import get_namespace_service

router = APIRouter()


@router.get("/customers/{customer_id}/namespaces", response_model=list[NamespaceOut])
async def list_customer_namespaces(
    customer_id: str,
    principal: Principal = Depends(require_admin),
    service=Depends(get_namespace_service),
) -> list[NamespaceOut]:
    try:
        records = await service.list_by_customer(customer_id, actor=principal.actor)
    except GatewayError as exc:
        raise to_http_exception(exc) from exc
    return [NamespaceOut(**record) for record in records]


@router.delete("/namespaces/{name}", response_model=NamespaceDeleteOut)
async def delete_customer_namespace(
    name: str,
    payload: AdminNamespaceDeleteRequest,
    principal: Principal = Depends(require_admin),
    service=Depends(get_namespace_service),
) -> NamespaceDeleteOut:
    try:
        await service.delete(name, payload.customer_id, actor=principal.actor)
    except GatewayError as exc:
        raise to_http_exception(exc) from exc
    return NamespaceDeleteOut(name=name)


@router.get("/customers/{customer_id}/history", response_model=list[HistoryOut])
async def list_customer_history(
    customer_id: str,
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    _: Principal = Depends(require_admin),
    service=Depends(get_namespace_service),
) -> list[HistoryOut]:
    try:
        records = await service.list_history(customer_id, limit=limit, offset=offset)
    except GatewayError as exc:
        raise to_http_exception(exc) from exc
    return [HistoryOut(**record) for record in records]
