from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "tenant-gateway-api"
    environment: str = "dev"
    database_url: str | None = None
    database_pool_min_size: int = 1
    database_pool_max_size: int = 10
    awx_url: str | None = None
    awx_username: str | None = None
    awx_password: str | None = None
    awx_token: str | None = None
    awx_bearer: str | None = None
    awx_insecure: bool = False
    awx_timeout_seconds: float = 30.0
    kube_url: str | None = None
    kube_token: str | None = None
    kube_insecure: bool = False
    kube_timeout_seconds: float = 30.0
    kube_namespace_node_selector: str | None = None
    job_poll_interval_seconds: float = Field(default=5.0, gt=0)
    job_poll_max_consecutive_failures: int = 5
    monitor_shutdown_grace_seconds: float = 35.0
    provision_dedupe_enabled: bool = True
    resume_monitors_on_startup: bool = True
    oidc_userinfo_url: str | None = None
    oidc_audience: str = "tenant-gateway"
    admin_role: str = "api:gateway-admin"
    auth_timeout_seconds: float = 5.0
    otel_enabled: bool = True
    otel_service_name: str = "tenant-gateway-api"
    otel_exporter_otlp_endpoint: str | None = None
    otel_exporter_otlp_headers: str | None = None
    otel_trace_sample_ratio: float = 1.0
    otel_log_correlation: bool = True

    model_config = SettingsConfigDict(env_prefix="GW_", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    return Settings()
