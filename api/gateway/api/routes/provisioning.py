from fastapi import APIRouter, Depends, Path, Query, status

from gateway.api.errors import to_http_exception
from gateway.core.auth import Principal
from gateway.core.errors import GatewayError
from gateway.core.security import get_tenant_principal
from gateway.schemas.provisioning import ActiveJobOut, JobStatusOut, ProvisionOut, ProvisionRequest
from gateway.services.provisioning import get_provisioning_service

router = APIRouter()


@router.post("", response_model=ProvisionOut, status_code=status.HTTP_202_ACCEPTED)
async def provision_instance(
    payload: ProvisionRequest,
    principal: Principal = Depends(get_tenant_principal),
    service=Depends(get_provisioning_service),
) -> ProvisionOut:
    try:
        result = await service.provision(
            template_name=payload.template_name,
            instance_name=payload.instance_name,
            username=payload.username,
            password=payload.password,
            customer_id=principal.customer_id,
            created_by=principal.actor,
            parameters=payload.parameters,
        )
    except GatewayError as exc:
        raise to_http_exception(exc) from exc

    return ProvisionOut(
        job_id=result.job_id,
        status=result.status,
        instance_name=result.instance_name,
        customer_id=result.customer_id,
    )


@router.get("/check", response_model=ActiveJobOut)
async def check_active_job(
    template_name: str = Query(min_length=1),
    principal: Principal = Depends(get_tenant_principal),
    service=Depends(get_provisioning_service),
) -> ActiveJobOut:
    try:
        result = await service.check_active_job(customer_id=principal.customer_id, template_name=template_name)
    except GatewayError as exc:
        raise to_http_exception(exc) from exc

    if result is None:
        return ActiveJobOut(active=False)
    return ActiveJobOut(active=True, job_id=result.job_id, status=result.status)


@router.get("/{job_id}/status", response_model=JobStatusOut)
async def get_job_status(
    job_id: int = Path(gt=0),
    principal: Principal = Depends(get_tenant_principal),
    service=Depends(get_provisioning_service),
) -> JobStatusOut:
    try:
        result = await service.get_job_status(job_id)
    except GatewayError as exc:
        raise to_http_exception(exc) from exc
    return JobStatusOut(job_id=result.job_id, status=result.status)
