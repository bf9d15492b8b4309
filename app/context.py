from dataclasses import dataclass, field
from typing import Optional

from app.models.role import RoleName, permissions_for


@dataclass(frozen=True)
class RequestContext:
    """
    The authenticated principal for one request.

    Built by ``app.dependencies.get_request_context`` and handed to service
    operations explicitly; services never read ambient session state.
    """
    user_id:     Optional[int]
    role:        RoleName
    permissions: frozenset[str] = field(default_factory=frozenset)
    driver_id:   Optional[int] = None   # set when the principal is a driver

    @classmethod
    def for_role(cls, user_id: Optional[int], role: RoleName, driver_id: Optional[int] = None) -> "RequestContext":
        return cls(user_id=user_id, role=role, permissions=permissions_for(role), driver_id=driver_id)

    def has_permission(self, name: str) -> bool:
        return self.role == RoleName.SUPER_ADMIN or name in self.permissions

    def has_any(self, *names: str) -> bool:
        return any(self.has_permission(n) for n in names)
