from datetime import datetime

from pydantic import BaseModel


class NamespaceCreateRequest(BaseModel):
    name: str


class NamespaceOut(BaseModel):
    name: str
    customer_id: str
    created_by: str
    created_at: datetime | None = None
    updated_at: datetime | None = None


class NamespaceDeleteOut(BaseModel):
    name: str
    deleted: bool = True


class AdminNamespaceDeleteRequest(BaseModel):
    customer_id: str


class HistoryOut(BaseModel):
    id: int
    customer_id: str
    resource_type: str
    action_type: str
    status: str
    target_name: str
    actor: str
    details: str | None = None
    error_message: str | None = None
    created_at: datetime | None = None
