from dataclasses import dataclass, field


@dataclass(slots=True)
class Principal:
    subject: str
    customer_id: str
    email: str | None = None
    roles: set[str] = field(default_factory=set)

    @property
    def actor(self) -> str:
        return self.email or self.subject

    def require_role(self, role: str) -> None:
        if role not in self.roles:
            raise PermissionError(f"missing required role: {role}")


def extract_client_roles(claims: dict, audience: str) -> set[str]:
    resource_access = claims.get("resource_access")
    if not isinstance(resource_access, dict):
        return set()
    client = resource_access.get(audience)
    if not isinstance(client, dict):
        return set()
    roles = client.get("roles")
    if not isinstance(roles, list):
        return set()
    return {role for role in roles if isinstance(role, str) and role}
