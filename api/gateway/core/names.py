import re

from gateway.core.errors import ValidationError

NAMESPACE_NAME_RE = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$")
NAMESPACE_NAME_MIN_LENGTH = 2
NAMESPACE_NAME_MAX_LENGTH = 63


def validate_namespace_name(raw_name: str | None) -> str:
    """Return the name if it is a DNS-1123 label the cluster will accept."""
    name = (raw_name or "").strip()
    if not name:
        raise ValidationError("namespace name is required")
    if not NAMESPACE_NAME_MIN_LENGTH <= len(name) <= NAMESPACE_NAME_MAX_LENGTH:
        raise ValidationError(
            f"namespace name must be {NAMESPACE_NAME_MIN_LENGTH}-{NAMESPACE_NAME_MAX_LENGTH} characters",
        )
    if not NAMESPACE_NAME_RE.match(name):
        raise ValidationError(
            "namespace name must consist of lowercase alphanumerics or '-' and start and end with an alphanumeric",
        )
    return name
