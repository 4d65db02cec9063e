import logging
from typing import Optional

from .errors import InvalidFieldError, NotFoundOrForbiddenError, PermissionDeniedError
from .models import Family, User, UserRole
from .saga import Saga
from .store import LedgerStore

logger = logging.getLogger(__name__)


class FamilyService:
    def __init__(self, store: LedgerStore):
        self.store = store

    def create_family(self, name: str, admin_id: str) -> Family:
        """Create a family and make its founder the admin."""
        name = (name or "").strip()
        if not name:
            raise InvalidFieldError("A family needs a name")
        founder = self.store.get_row(User, admin_id)
        if founder is None:
            raise NotFoundOrForbiddenError("User not found")
        if founder.family_id:
            raise PermissionDeniedError("You already belong to a family")
        saga = Saga(f"family {name!r} founded by {admin_id}")
        family = saga.run_step(
            lambda: self.store.insert_row(Family, name=name, admin_id=admin_id),
            compensate=lambda created: self.store.delete_row(Family, created.id),
        )
        saga.run_step(
            lambda: self.store.update_row(
                User,
                admin_id,
                {"family_id": family.id, "role": UserRole.admin},
                expected={"family_id": None},
            )
        )
        logger.info("Family %s created by %s", family.id, admin_id)
        return family

    def join_family(self, family_id: str, user_id: str) -> Family:
        """Join an existing family as a member. The family id is the invitation code."""
        family = self.get_family((family_id or "").strip())
        if family is None:
            raise NotFoundOrForbiddenError("No family matches that invitation code")
        user = self.store.get_row(User, user_id)
        if user is None:
            raise NotFoundOrForbiddenError("User not found")
        if user.family_id and user.family_id != family.id:
            raise PermissionDeniedError("You already belong to another family")
        if user.family_id != family.id:
            self.store.update_row(User, user_id, {"family_id": family.id, "role": UserRole.member})
            logger.info("User %s joined family %s", user_id, family.id)
        return family

    def get_family(self, family_id: str) -> Optional[Family]:
        if not family_id:
            return None
        return self.store.get_row(Family, family_id)

    def get_family_members(self, family_id: str) -> list[User]:
        members = self.store.query_rows(User, {"family_id": family_id}, order_by="created_at")
        # admins first
        return sorted(members, key=lambda member: member.role != UserRole.admin)

    def get_admin_ids(self, family_id: str) -> list[str]:
        admins = self.store.query_rows(User, {"family_id": family_id, "role": UserRole.admin})
        return [admin.id for admin in admins]
