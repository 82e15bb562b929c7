"""
TenantContext — the verified caller handle threaded through every service call.

Built once per request by the tenant-context middleware from the decoded
JWT. Services take it as their first argument and use ``ctx.tenant_id`` for
every query, so an unscoped query is visible at the call site.
"""

from dataclasses import dataclass

from shopfloor.core.roles import Role


@dataclass(frozen=True)
class TenantContext:
    tenant_id: int
    actor_id: int
    role: Role

    @classmethod
    def for_user(cls, user) -> "TenantContext":
        return cls(tenant_id=user.tenant_id, actor_id=user.id, role=Role(user.role))

    @property
    def is_admin(self) -> bool:
        return self.role.is_admin
