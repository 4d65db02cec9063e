import logging
from typing import Any, Optional

from .errors import (
    InvalidFieldError,
    InvalidTransitionError,
    NotFoundOrForbiddenError,
    PermissionDeniedError,
)
from .models import NotificationType, Task, TaskStatus, User, UserRole, field_values, utcnow
from .notifications import NotificationDispatcher
from .permissions import AuthorizationGate, DeleteCapability
from .saga import Saga
from .store import LedgerStore

logger = logging.getLogger(__name__)

ASSIGNEE = "assignee"
ADMIN = "admin"

# (from, to) -> who may make the move
TRANSITIONS = {
    (TaskStatus.pending, TaskStatus.in_progress): ASSIGNEE,
    (TaskStatus.in_progress, TaskStatus.completed): ASSIGNEE,
    (TaskStatus.completed, TaskStatus.approved): ADMIN,
}

ACTOR_MESSAGES = {
    TaskStatus.in_progress: "Only the assigned family member can start this task",
    TaskStatus.completed: "Only the assigned family member can complete this task",
    TaskStatus.approved: "Only family admins can approve tasks",
}

DELETE_FAILED = "Task could not be deleted. You may not have permission or the task may not exist."


class TaskLifecycleManager:
    def __init__(
        self,
        store: LedgerStore,
        dispatcher: NotificationDispatcher,
        gate: AuthorizationGate,
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.gate = gate

    def _load(self, task_id: str, message: str = "Task not found") -> Task:
        task = self.store.get_row(Task, task_id)
        if task is None:
            raise NotFoundOrForbiddenError(message)
        return task

    def create_task(self, fields, acting_role) -> Task:
        self.gate.assert_role(acting_role, UserRole.admin, "Only family admins can create tasks")
        data = field_values(fields)
        title = (data.get("title") or "").strip()
        if not title:
            raise InvalidFieldError("A task needs a title")
        points = data.get("points")
        if not isinstance(points, int) or isinstance(points, bool) or points <= 0:
            raise InvalidFieldError("Task points must be a positive whole number")
        assignee = self.store.get_row(User, data.get("assigned_to") or "")
        if assignee is None or assignee.family_id != data.get("family_id"):
            raise InvalidFieldError("The task must be assigned to a member of this family")

        task = self.store.insert_row(
            Task,
            family_id=data["family_id"],
            title=title,
            description=data.get("description"),
            points=points,
            assigned_to=assignee.id,
            created_by=data["created_by"],
            due_date=data.get("due_date"),
            status=TaskStatus.pending,
        )
        logger.info("Task %s created for user %s (%d points)", task.id, task.assigned_to, task.points)
        self.dispatcher.notify_task_event(task.assigned_to, task.id, NotificationType.task_assigned)
        return task

    def _check_transition(self, task: Task, new_status: TaskStatus, actor: User) -> None:
        required_actor = TRANSITIONS.get((task.status, new_status))
        if required_actor is None:
            raise InvalidTransitionError(
                f"A task cannot move from {task.status.value} to {new_status.value}"
            )
        if required_actor == ASSIGNEE and actor.id != task.assigned_to:
            raise PermissionDeniedError(ACTOR_MESSAGES[new_status])
        if required_actor == ADMIN:
            self.gate.assert_family_admin(actor, task.family_id, ACTOR_MESSAGES[new_status])

    def update_status(self, task_id: str, new_status, acting_user_id: str) -> Task:
        """Move a task one step along pending -> in_progress -> completed -> approved.

        Asking for the status the task already has changes nothing, so a
        repeated approval never credits points twice.
        """
        new_status = TaskStatus.parse(new_status)
        task = self._load(task_id)
        actor = self.store.get_row(User, acting_user_id)
        if actor is None or actor.family_id != task.family_id:
            raise PermissionDeniedError("You are not a member of this task's family")
        if task.status == new_status:
            logger.info("Task %s is already %s; nothing to do", task.id, new_status.value)
            return task
        self._check_transition(task, new_status, actor)

        previous = task.status
        now = utcnow()
        fields: dict[str, Any] = {"status": new_status, "updated_at": now}
        if new_status == TaskStatus.completed:
            fields["completed_at"] = now
        elif new_status == TaskStatus.approved:
            fields["approved_at"] = now

        saga = Saga(f"task {task.id} {previous.value} -> {new_status.value}")
        try:
            updated = saga.run_step(
                lambda: self.store.update_row(Task, task.id, fields, expected={"status": previous}),
                compensate=lambda _: self.store.update_row(
                    Task,
                    task.id,
                    {"status": previous, "approved_at": None, "updated_at": utcnow()},
                    expected={"status": new_status},
                ),
            )
        except NotFoundOrForbiddenError:
            return self._after_concurrent_change(task.id, new_status)

        if new_status == TaskStatus.approved:
            saga.run_step(
                lambda: self.store.add_user_points(
                    updated.assigned_to,
                    updated.points,
                    f"Task {updated.title!r} approved",
                    related_task_id=updated.id,
                )
            )
            updated = self._load(task.id)
            self.dispatcher.notify_task_event(
                updated.assigned_to, updated.id, NotificationType.task_approved
            )
        elif new_status == TaskStatus.completed:
            self.dispatcher.notify_task_event(
                updated.created_by, updated.id, NotificationType.task_completed
            )
        logger.info("Task %s moved %s -> %s", task.id, previous.value, new_status.value)
        return updated

    def _after_concurrent_change(self, task_id: str, new_status: TaskStatus) -> Task:
        current = self._load(task_id)
        if current.status == new_status:
            return current
        raise InvalidTransitionError(
            f"The task changed to {current.status.value} while it was being updated"
        )

    def delete_task(self, task_id: str, capability: Optional[DeleteCapability]) -> None:
        task = self._load(task_id, DELETE_FAILED)
        self.gate.require_delete_capability(capability, task.family_id)
        if task.status == TaskStatus.approved:
            raise InvalidTransitionError(
                "Approved tasks cannot be deleted because their points have already been awarded"
            )
        if not self.store.delete_row(Task, task_id):
            raise NotFoundOrForbiddenError(DELETE_FAILED)
        logger.info("Task %s deleted by %s", task_id, capability.user_id)

    def get_pending_approval_count(self, family_id: str) -> int:
        return self.store.count_rows(
            Task, {"family_id": family_id, "status": TaskStatus.completed}
        )

    def list_family_tasks(self, family_id: str) -> list[Task]:
        return self.store.query_rows(
            Task, {"family_id": family_id}, order_by="created_at", descending=True
        )

    def list_user_tasks(self, user_id: str) -> list[Task]:
        return self.store.query_rows(
            Task, {"assigned_to": user_id}, order_by="created_at", descending=True
        )
