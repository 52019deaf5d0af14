from typing import Any

import httpx
from fastapi import Depends, Header, HTTPException, status

from gateway.core.auth import Principal, extract_client_roles
from gateway.core.config import Settings, get_settings


async def get_tenant_principal(
    settings: Settings = Depends(get_settings),
    authorization: str | None = Header(default=None, alias="Authorization"),
) -> Principal:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="authorization header with bearer token required",
        )

    token = authorization.split(" ", maxsplit=1)[1].strip()
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="empty bearer token")

    if not settings.oidc_userinfo_url:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="OIDC auth is not configured",
        )

    claims = await _fetch_userinfo(
        userinfo_url=settings.oidc_userinfo_url,
        token=token,
        timeout_seconds=settings.auth_timeout_seconds,
    )
    subject = claims.get("sub")
    if not isinstance(subject, str) or not subject:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid bearer token")

    customer_id = claims.get("customer_id")
    if not isinstance(customer_id, str) or not customer_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="customer_id claim missing from token")

    email = claims.get("email")
    return Principal(
        subject=subject,
        customer_id=customer_id,
        email=email if isinstance(email, str) and email else None,
        roles=extract_client_roles(claims, settings.oidc_audience),
    )


async def require_admin(
    principal: Principal = Depends(get_tenant_principal),
    settings: Settings = Depends(get_settings),
) -> Principal:
    try:
        principal.require_role(settings.admin_role)
    except PermissionError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
    return principal


async def _fetch_userinfo(*, userinfo_url: str, token: str, timeout_seconds: float) -> dict[str, Any]:
    try:
        async with httpx.AsyncClient(timeout=timeout_seconds) as client:
            response = await client.get(userinfo_url, headers={"Authorization": f"Bearer {token}"})
    except httpx.HTTPError as exc:  # pragma: no cover - network dependent
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="token verification unavailable",
        ) from exc

    if response.status_code in {401, 403}:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid or expired token")
    if response.status_code != 200:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="token verification failed",
        )

    payload = response.json()
    if not isinstance(payload, dict):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid bearer token")
    return payload
