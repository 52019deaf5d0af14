from fastapi import APIRouter, Depends, status

from gateway.api.errors import to_http_exception
from gateway.core.auth import Principal
from gateway.core.errors import GatewayError
from gateway.core.security import get_tenant_principal
from gateway.schemas.namespaces import NamespaceCreateRequest, NamespaceDeleteOut, NamespaceOut
from gateway.services.namespaces import get_namespace_service

router = APIRouter()


@router.post("", response_model=NamespaceOut, status_code=status.HTTP_201_CREATED)
async def create_namespace(
    payload: NamespaceCreateRequest,
    principal: Principal = Depends(get_tenant_principal),
    service=Depends(get_namespace_service),
) -> NamespaceOut:
    try:
        record = await service.create(payload.name, principal.customer_id, principal.actor)
    except GatewayError as exc:
        raise to_http_exception(exc) from exc
    return NamespaceOut(**record)


@router.get("", response_model=list[NamespaceOut])
async def list_namespaces(
    principal: Principal = Depends(get_tenant_principal),
    service=Depends(get_namespace_service),
) -> list[NamespaceOut]:
    try:
        records = await service.list_by_customer(principal.customer_id, actor=principal.actor)
    except GatewayError as exc:
        raise to_http_exception(exc) from exc
    return [NamespaceOut(**record) for record in records]


@router.get("/{name}", response_model=NamespaceOut)
async def get_namespace(
    name: str,
    principal: Principal = Depends(get_tenant_principal),
    service=Depends(get_namespace_service),
) -> NamespaceOut:
    try:
        record = await service.get(name, principal.customer_id, actor=principal.actor)
    except GatewayError as exc:
        raise to_http_exception(exc) from exc
    return NamespaceOut(**record)


@router.delete("/{name}", response_model=NamespaceDeleteOut)
async def delete_namespace(
    name: str,
    principal: Principal = Depends(get_tenant_principal),
    service=Depends(get_namespace_service),
) -> NamespaceDeleteOut:
    try:
        await service.delete(name, principal.customer_id, actor=principal.actor)
    except GatewayError as exc:
        raise to_http_exception(exc) from exc
    return NamespaceDeleteOut(name=name)
