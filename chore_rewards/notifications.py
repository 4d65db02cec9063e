import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional

from .errors import NotificationDeliveryFailure
from .families import FamilyService
from .models import Notification, NotificationType
from .store import LedgerStore

logger = logging.getLogger(__name__)

TASK_TITLES = {
    NotificationType.task_assigned: "New Task",
    NotificationType.task_completed: "Task Completed",
    NotificationType.task_approved: "Task Approved",
}

TASK_MESSAGES = {
    NotificationType.task_assigned: "You have received a new task!",
    NotificationType.task_completed: "A task has been marked as completed!",
    NotificationType.task_approved: "Your task has been approved! You have received points.",
}


@dataclass
class DeliveryReport:
    delivered: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


class NotificationDispatcher:
    """Stores one notification row per recipient.

    ``notify`` raises on failure. ``deliver`` and ``deliver_to_many`` are the
    fire-and-forget variants used after a business change has been saved:
    they log failures and never raise.
    """

    def __init__(self, store: LedgerStore, families: Optional[FamilyService] = None):
        self.store = store
        self.families = families or FamilyService(store)

    def notify(
        self,
        user_id: str,
        title: str,
        message: str,
        type: NotificationType = NotificationType.general,
        related_task_id: Optional[str] = None,
        related_reward_id: Optional[str] = None,
    ) -> Notification:
        return self.store.insert_row(
            Notification,
            user_id=user_id,
            title=title,
            message=message,
            type=NotificationType.parse(type),
            is_read=False,
            related_task_id=related_task_id,
            related_reward_id=related_reward_id,
        )

    def deliver(self, user_id: str, title: str, message: str, **kwargs) -> bool:
        try:
            self.notify(user_id, title, message, **kwargs)
        except Exception as exc:
            failure = NotificationDeliveryFailure(
                f"Could not notify user {user_id} ({title!r}): {exc}"
            )
            logger.error("%s", failure, exc_info=exc)
            return False
        return True

    def deliver_to_many(
        self, user_ids: Iterable[str], title: str, message: str, **kwargs
    ) -> DeliveryReport:
        report = DeliveryReport()
        for user_id in user_ids:
            if self.deliver(user_id, title, message, **kwargs):
                report.delivered.append(user_id)
            else:
                report.failed.append(user_id)
        if report.failed:
            logger.warning(
                "Delivered %r to %d of %d recipients",
                title,
                len(report.delivered),
                len(report.delivered) + len(report.failed),
            )
        return report

    def notify_task_event(self, user_id: str, task_id: str, type: NotificationType) -> bool:
        return self.deliver(
            user_id,
            TASK_TITLES[type],
            TASK_MESSAGES[type],
            type=type,
            related_task_id=task_id,
        )

    def notify_admins_reward_claimed(
        self,
        family_id: str,
        user_name: str,
        reward_title: str,
        requires_approval: bool,
        reward_id: str,
    ) -> DeliveryReport:
        try:
            admin_ids = self.families.get_admin_ids(family_id)
        except Exception as exc:
            failure = NotificationDeliveryFailure(
                f"Could not look up the admins of family {family_id}: {exc}"
            )
            logger.error("%s", failure, exc_info=exc)
            return DeliveryReport()
        if requires_approval:
            title = "Reward Pending Approval"
            message = f'{user_name} has claimed "{reward_title}" and is waiting for your approval.'
        else:
            title = "Reward Claimed"
            message = f'{user_name} has claimed "{reward_title}".'
        return self.deliver_to_many(
            admin_ids,
            title,
            message,
            type=NotificationType.reward_claimed,
            related_reward_id=reward_id,
        )

    def notify_user_reward_approved(self, user_id: str, reward_title: str, reward_id: str) -> bool:
        return self.deliver(
            user_id,
            "Reward Approved!",
            f'Your claim for "{reward_title}" has been approved! Enjoy your reward!',
            type=NotificationType.reward_claimed,
            related_reward_id=reward_id,
        )

    def notify_user_reward_denied(self, user_id: str, reward_title: str, reward_id: str) -> bool:
        return self.deliver(
            user_id,
            "Reward Claim Denied",
            f'Your claim for "{reward_title}" has been denied. '
            "Please contact an admin for more information.",
            type=NotificationType.reward_claimed,
            related_reward_id=reward_id,
        )

    def list_notifications(self, user_id: str) -> list[Notification]:
        return self.store.query_rows(
            Notification, {"user_id": user_id}, order_by="created_at", descending=True
        )

    def get_unread_count(self, user_id: str) -> int:
        return self.store.count_rows(Notification, {"user_id": user_id, "is_read": False})

    def mark_as_read(self, notification_id: str, user_id: str) -> Notification:
        return self.store.update_row(
            Notification,
            notification_id,
            {"is_read": True},
            expected={"user_id": user_id},
            not_found_message="Notification not found",
        )

    def mark_all_as_read(self, user_id: str) -> int:
        unread = self.store.query_rows(Notification, {"user_id": user_id, "is_read": False})
        for notification in unread:
            self.store.update_row(Notification, notification.id, {"is_read": True})
        return len(unread)
