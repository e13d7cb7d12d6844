from dataclasses import dataclass

from fastapi import HTTPException, Request, status

from erp.errors import PermissionDenied

ADMIN_ROLE_CODE = 'ADMIN'


@dataclass(frozen=True)
class CallerContext:
    user_id: int
    username: str
    role_code: str
    role_id: int | None
    branch_id: int | None

    @property
    def is_admin(self) -> bool:
        return self.role_code == ADMIN_ROLE_CODE


def get_current_caller(request: Request) -> CallerContext:
    caller = getattr(request.state, 'caller', None)
    if not caller:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED)
    return caller


def assert_branch_scope(caller: CallerContext, target_branch_id: int | None) -> None:
    if caller.is_admin:
        return
    if caller.branch_id is None or caller.branch_id != target_branch_id:
        raise PermissionDenied('You do not have access to this branch')


def branch_filter(caller: CallerContext) -> int | None:
    """Branch id that listings must be restricted to, or None for unrestricted callers."""
    if caller.is_admin:
        return None
    return caller.branch_id
