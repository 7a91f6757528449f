from fastapi import Depends, HTTPException, status

from app.auth.dependencies import get_current_user
from app.auth.schemas import CurrentUser

FINANCE_MODULE = "finance"

# Roles that see every module without an explicit grant
ADMIN_ROLES = frozenset({"SUPER_ADMIN", "PLATFORM_ADMIN", "ADMIN"})


def require_finance(action: str):
    """
    Dependency factory: the caller needs `finance.<action>` (read, create or update) unless
    their role is an admin role. Resolves to the acting user so routes can record who acted.

    Example:
        current_user: CurrentUser = Depends(require_finance("update"))
    """

    async def _checker(current_user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if current_user.role in ADMIN_ROLES:
            return current_user
        if not current_user.can(FINANCE_MODULE, action):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Missing permission {FINANCE_MODULE}.{action}",
            )
        return current_user

    return _checker
