from typing import Any

from pydantic import BaseModel, Field


class ProvisionRequest(BaseModel):
    template_name: str = Field(min_length=1)
    instance_name: str = Field(min_length=1)
    username: str | None = None
    password: str | None = None
    parameters: dict[str, Any] = Field(default_factory=dict)


class ProvisionOut(BaseModel):
    job_id: int
    status: str
    instance_name: str | None = None
    customer_id: str | None = None


class ActiveJobOut(BaseModel):
    active: bool
    job_id: int | None = None
    status: str | None = None


class JobStatusOut(BaseModel):
    job_id: int
    status: str
