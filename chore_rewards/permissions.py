import logging
from dataclasses import dataclass
from typing import Optional

from .errors import PermissionDeniedError
from .models import User, UserRole

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeleteCapability:
    """Proof that an admin asked for a delete inside their own family."""

    user_id: str
    family_id: str


class AuthorizationGate:
    def __init__(self, strict_role_checking: bool = True):
        self.strict_role_checking = strict_role_checking

    def assert_role(
        self,
        actual_role,
        required_role: UserRole = UserRole.admin,
        message: str = "Only family admins can perform this action",
    ) -> None:
        if actual_role is None:
            if self.strict_role_checking:
                raise PermissionDeniedError(f"{message} (your role could not be determined)")
            logger.warning("Permitting action without a known role: %s", message)
            return
        if UserRole.parse(actual_role) != required_role:
            raise PermissionDeniedError(message)

    def assert_family_admin(self, user: Optional[User], family_id: str, message: str) -> None:
        if user is None or user.family_id != family_id or user.role != UserRole.admin:
            raise PermissionDeniedError(message)

    def issue_delete_capability(self, user: User) -> DeleteCapability:
        if user.role != UserRole.admin or not user.family_id:
            raise PermissionDeniedError("Only family admins can delete tasks and rewards")
        return DeleteCapability(user_id=user.id, family_id=user.family_id)

    def require_delete_capability(
        self, capability: Optional[DeleteCapability], family_id: str
    ) -> None:
        if capability is None:
            raise PermissionDeniedError("Deleting requires permission from a family admin")
        if capability.family_id != family_id:
            raise PermissionDeniedError("You can only delete items that belong to your family")
