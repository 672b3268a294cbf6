"""
Role names with special meaning to the access decision engine.

PLATFORM_SUPER_ADMIN bypasses every check, including plan restrictions.
TENANT_SUPER_ADMIN bypasses role grants only, after plan and existence
checks have passed.
"""

PLATFORM_SUPER_ADMIN = "Super Administrator"
TENANT_SUPER_ADMIN = "tenant_super_administrator"

BYPASS_ROLES = frozenset({PLATFORM_SUPER_ADMIN, TENANT_SUPER_ADMIN})
