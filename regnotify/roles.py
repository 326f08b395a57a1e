from __future__ import annotations

from dataclasses import dataclass

SUPPORTED_ROLES = (
    "api",
    "worker-notify",
    "all",
)

# Roles that run the sync, dispatch and reaper jobs in-process.
SCHEDULER_ROLES = frozenset({"worker-notify", "all"})
# Roles that serve the admin HTTP surface.
ADMIN_API_ROLES = frozenset({"api", "all"})


@dataclass(frozen=True)
class RuntimeRole:
    name: str

    @property
    def runs_scheduler(self) -> bool:
        return self.name in SCHEDULER_ROLES

    @property
    def serves_admin_api(self) -> bool:
        return self.name in ADMIN_API_ROLES


def validate_role(role: str) -> RuntimeRole:
    if role in SUPPORTED_ROLES:
        return RuntimeRole(name=role)

    supported = ", ".join(SUPPORTED_ROLES)
    raise ValueError(
        f"Unsupported role '{role}'. Supported roles: {supported}. "
        "Note: database migrations are applied externally."
    )
