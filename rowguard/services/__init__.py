# Services package

from rowguard.services.identity import (
    AdminAllowList,
    CompositeAdminAllowList,
    DatabaseAdminAllowList,
    EmailAdminAllowList,
    IdentityResolver,
    build_admin_allow_list,
)

__all__ = [
    # Identity
    "IdentityResolver",
    "AdminAllowList",
    "EmailAdminAllowList",
    "DatabaseAdminAllowList",
    "CompositeAdminAllowList",
    "build_admin_allow_list",
]
