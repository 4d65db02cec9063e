import logging
from typing import Optional

from .errors import (
    InvalidFieldError,
    InvalidTransitionError,
    NotFoundOrForbiddenError,
    PermissionDeniedError,
)
from .models import ClaimStatus, Reward, RewardClaim, User, UserRole, field_values, utcnow
from .notifications import NotificationDispatcher
from .permissions import AuthorizationGate, DeleteCapability
from .saga import Saga
from .store import LedgerStore

logger = logging.getLogger(__name__)

DELETE_FAILED = (
    "Reward could not be deleted. You may not have permission or the reward may not exist."
)


def _check_price(points) -> int:
    if not isinstance(points, int) or isinstance(points, bool) or points <= 0:
        raise InvalidFieldError("Reward points must be a positive whole number")
    return points


class RewardClaimLifecycleManager:
    """Rewards and the claims made against them.

    A reward without ``requires_approval`` is paid for the moment it is
    claimed. Otherwise the claim waits as ``pending`` and points move only
    when an admin approves it.
    """

    def __init__(
        self,
        store: LedgerStore,
        dispatcher: NotificationDispatcher,
        gate: AuthorizationGate,
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.gate = gate

    # Rewards

    def _load_reward(self, reward_id: str, message: str = "Reward not found") -> Reward:
        reward = self.store.get_row(Reward, reward_id)
        if reward is None:
            raise NotFoundOrForbiddenError(message)
        return reward

    def create_reward(self, fields, acting_role) -> Reward:
        self.gate.assert_role(acting_role, UserRole.admin, "Only family admins can create rewards")
        data = field_values(fields)
        title = (data.get("title") or "").strip()
        if not title:
            raise InvalidFieldError("A reward needs a title")
        reward = self.store.insert_row(
            Reward,
            family_id=data["family_id"],
            created_by=data["created_by"],
            title=title,
            description=data.get("description"),
            points_required=_check_price(data.get("points_required")),
            requires_approval=bool(data.get("requires_approval", False)),
            is_active=True,
        )
        logger.info("Reward %s created in family %s", reward.id, reward.family_id)
        return reward

    def update_reward(self, reward_id: str, updates, acting_role) -> Reward:
        self.gate.assert_role(acting_role, UserRole.admin, "Only family admins can edit rewards")
        data = {key: value for key, value in field_values(updates).items() if value is not None}
        if "points_required" in data:
            _check_price(data["points_required"])
        if "title" in data and not data["title"].strip():
            raise InvalidFieldError("A reward needs a title")
        allowed = {"title", "description", "points_required", "requires_approval"}
        unknown = set(data) - allowed
        if unknown:
            raise InvalidFieldError(f"These reward fields cannot be changed: {', '.join(sorted(unknown))}")
        if not data:
            return self._load_reward(reward_id)
        return self.store.update_row(
            Reward,
            reward_id,
            data,
            expected={"is_active": True},
            not_found_message="Reward could not be updated. You may not have permission or the reward may not exist.",
        )

    def delete_reward(self, reward_id: str, capability: Optional[DeleteCapability]) -> None:
        """Deactivate a reward. Rewards are never removed because claims refer to them."""
        reward = self._load_reward(reward_id, DELETE_FAILED)
        self.gate.require_delete_capability(capability, reward.family_id)
        self.store.update_row(
            Reward,
            reward_id,
            {"is_active": False},
            expected={"is_active": True, "family_id": capability.family_id},
            not_found_message=DELETE_FAILED,
        )
        logger.info("Reward %s deactivated by %s", reward_id, capability.user_id)

    def list_family_rewards(self, family_id: str) -> list[Reward]:
        return self.store.query_rows(
            Reward, {"family_id": family_id, "is_active": True}, order_by="points_required"
        )

    # Claims

    def _claimable(self, reward_id: str, user_id: str) -> tuple[Reward, User]:
        reward = self._load_reward(reward_id)
        if not reward.is_active:
            raise NotFoundOrForbiddenError("This reward is no longer available")
        claimant = self.store.get_row(User, user_id)
        if claimant is None or claimant.family_id != reward.family_id:
            raise PermissionDeniedError("You can only claim rewards from your own family")
        return reward, claimant

    def claim(self, reward_id: str, user_id: str) -> RewardClaim:
        reward = self._load_reward(reward_id)
        if reward.requires_approval:
            return self.create_pending_claim(reward_id, user_id)
        return self.claim_reward(reward_id, user_id)

    def claim_reward(
        self, reward_id: str, user_id: str, points_required: Optional[int] = None
    ) -> RewardClaim:
        """Claim a reward that needs no approval and pay for it immediately.

        The claim row is inserted first; if the deduction then fails the row
        is deleted again and the deduction error is raised.
        """
        reward, claimant = self._claimable(reward_id, user_id)
        if reward.requires_approval:
            raise InvalidTransitionError(
                "This reward needs admin approval, so it cannot be claimed directly"
            )
        price = reward.points_required
        if points_required is not None and points_required != price:
            raise InvalidFieldError("The reward price has changed. Please refresh and try again.")
        title = reward.title

        saga = Saga(f"claim of reward {reward_id} by {user_id}")
        claim = saga.run_step(
            lambda: self.store.insert_row(
                RewardClaim,
                user_id=user_id,
                reward_id=reward_id,
                status=ClaimStatus.approved,
                claimed_at=utcnow(),
            ),
            compensate=lambda created: self.store.delete_row(RewardClaim, created.id),
        )
        saga.run_step(
            lambda: self.store.deduct_user_points(
                user_id, price, f"Reward {title!r} claimed", related_claim_id=claim.id
            )
        )
        logger.info("User %s claimed reward %s for %d points", user_id, reward_id, price)
        self.dispatcher.notify_admins_reward_claimed(
            reward.family_id, claimant.full_name, title, False, reward_id
        )
        return claim

    def create_pending_claim(self, reward_id: str, user_id: str) -> RewardClaim:
        reward, claimant = self._claimable(reward_id, user_id)
        if not reward.requires_approval:
            raise InvalidTransitionError(
                "This reward does not need approval; claim it directly instead"
            )
        claim = self.store.insert_row(
            RewardClaim,
            user_id=user_id,
            reward_id=reward_id,
            status=ClaimStatus.pending,
            claimed_at=utcnow(),
        )
        logger.info("User %s requested reward %s; waiting for approval", user_id, reward_id)
        self.dispatcher.notify_admins_reward_claimed(
            reward.family_id, claimant.full_name, reward.title, True, reward_id
        )
        return claim

    def _load_claim(self, claim_id: str) -> RewardClaim:
        claim = self.store.get_row(RewardClaim, claim_id)
        if claim is None:
            raise NotFoundOrForbiddenError("Reward claim not found")
        return claim

    def resolve_claim(
        self,
        claim_id: str,
        decision,
        acting_role,
        family_id: Optional[str] = None,
    ) -> RewardClaim:
        """Approve or deny a pending claim.

        Only a pending claim moves points. Repeating the decision a claim
        already has returns it unchanged and sends nothing.
        """
        decision = ClaimStatus.parse(decision)
        if decision == ClaimStatus.pending:
            raise InvalidFieldError("A claim can only be approved or denied")
        self.gate.assert_role(
            acting_role, UserRole.admin, "Only family admins can approve or deny reward claims"
        )
        claim = self._load_claim(claim_id)
        reward = self._load_reward(claim.reward_id)
        if family_id is not None and reward.family_id != family_id:
            raise NotFoundOrForbiddenError("Reward claim not found")

        if claim.status != ClaimStatus.pending:
            if claim.status == decision:
                logger.info("Claim %s is already %s; nothing to do", claim_id, decision.value)
                return claim
            raise InvalidTransitionError(f"This claim has already been {claim.status.value}")

        owner_id = claim.user_id
        saga = Saga(f"resolution of claim {claim_id} as {decision.value}")
        try:
            saga.run_step(
                lambda: self.store.update_row(
                    RewardClaim,
                    claim_id,
                    {"status": decision, "processed_at": utcnow()},
                    expected={"status": ClaimStatus.pending},
                ),
                compensate=lambda _: self.store.update_row(
                    RewardClaim,
                    claim_id,
                    {"status": ClaimStatus.pending, "processed_at": None},
                    expected={"status": decision},
                ),
            )
        except NotFoundOrForbiddenError:
            current = self._load_claim(claim_id)
            if current.status == decision:
                return current
            raise InvalidTransitionError(f"This claim has already been {current.status.value}")

        if decision == ClaimStatus.approved:
            saga.run_step(
                lambda: self.store.deduct_user_points(
                    owner_id,
                    reward.points_required,
                    f"Reward {reward.title!r} approved",
                    related_claim_id=claim_id,
                )
            )
            self.dispatcher.notify_user_reward_approved(owner_id, reward.title, reward.id)
        else:
            self.dispatcher.notify_user_reward_denied(owner_id, reward.title, reward.id)
        logger.info("Claim %s resolved as %s", claim_id, decision.value)
        return self._load_claim(claim_id)

    def list_user_claims(self, user_id: str) -> list[RewardClaim]:
        return self.store.query_rows(
            RewardClaim, {"user_id": user_id}, order_by="claimed_at", descending=True
        )

    def list_family_claims(self, family_id: str) -> list[tuple[RewardClaim, Reward]]:
        return self.store.family_claims(family_id)

    def list_pending_claims(self, family_id: str) -> list[tuple[RewardClaim, Reward]]:
        return self.store.family_claims(family_id, ClaimStatus.pending)
