import pytest
from sqlmodel import select

from chore_rewards.errors import (
    InvalidFieldError,
    InvalidTransitionError,
    NotFoundOrForbiddenError,
    PermissionDeniedError,
    StoreError,
)
from chore_rewards.models import (
    Notification,
    NotificationType,
    PointTransaction,
    Task,
    TaskStatus,
    User,
    UserRole,
)
from chore_rewards.services import build_services
from chore_rewards.store import LedgerStore


def task_fields(household, **overrides):
    fields = {
        "title": "Clean room",
        "points": 10,
        "assigned_to": household.member.id,
        "created_by": household.admin.id,
        "family_id": household.family.id,
    }
    fields.update(overrides)
    return fields


def notifications_of(session, user_id, type):
    return session.exec(
        select(Notification).where(Notification.user_id == user_id, Notification.type == type)
    ).all()


def test_member_cannot_create_task(services, household, session):
    with pytest.raises(PermissionDeniedError, match="Only family admins can create tasks"):
        services.tasks.create_task(task_fields(household), UserRole.member)
    assert session.exec(select(Task)).all() == []
    assert session.exec(select(Notification)).all() == []


def test_admin_creates_task_and_assignee_is_notified(services, household, session):
    task = services.tasks.create_task(task_fields(household), "admin")

    assert task.status == TaskStatus.pending
    assert len(session.exec(select(Task)).all()) == 1
    sent = session.exec(select(Notification)).all()
    assert len(sent) == 1
    assert sent[0].user_id == household.member.id
    assert sent[0].type == NotificationType.task_assigned
    assert sent[0].related_task_id == task.id


def test_unknown_role_is_rejected_unless_legacy_mode(session, household):
    strict = build_services(session, strict_role_checking=True)
    with pytest.raises(PermissionDeniedError):
        strict.tasks.create_task(task_fields(household), None)

    legacy = build_services(session, strict_role_checking=False)
    task = legacy.tasks.create_task(task_fields(household), None)
    assert task.id


@pytest.mark.parametrize("points", [0, -5, True])
def test_task_points_must_be_positive(services, household, points):
    with pytest.raises(InvalidFieldError):
        services.tasks.create_task(task_fields(household, points=points), "admin")


def test_task_must_be_assigned_inside_family(services, household):
    with pytest.raises(InvalidFieldError):
        services.tasks.create_task(task_fields(household, assigned_to="nobody"), "admin")


def test_full_lifecycle_credits_points_once(services, household, session):
    member = household.member
    task = services.tasks.create_task(task_fields(household), "admin")

    services.tasks.update_status(task.id, "in_progress", member.id)
    completed = services.tasks.update_status(task.id, TaskStatus.completed, member.id)
    assert completed.completed_at is not None
    assert len(notifications_of(session, household.admin.id, NotificationType.task_completed)) == 1

    approved = services.tasks.update_status(task.id, "approved", household.admin.id)

    assert approved.status == TaskStatus.approved
    assert approved.approved_at is not None
    session.expire_all()
    assert services.store.get_row(User, member.id).points == 10
    assert len(notifications_of(session, member.id, NotificationType.task_approved)) == 1


def test_repeated_approval_is_a_no_op(services, household, session):
    member = household.member
    task = services.tasks.create_task(task_fields(household), "admin")
    services.tasks.update_status(task.id, "in_progress", member.id)
    services.tasks.update_status(task.id, "completed", member.id)

    services.tasks.update_status(task.id, "approved", household.admin.id)
    again = services.tasks.update_status(task.id, "approved", household.admin.id)

    assert again.status == TaskStatus.approved
    session.expire_all()
    assert services.store.get_row(User, member.id).points == 10
    credits = session.exec(
        select(PointTransaction).where(PointTransaction.related_task_id == task.id)
    ).all()
    assert len(credits) == 1
    assert len(notifications_of(session, member.id, NotificationType.task_approved)) == 1


@pytest.mark.parametrize("target", ["completed", "approved"])
def test_steps_cannot_be_skipped(services, household, target):
    task = services.tasks.create_task(task_fields(household), "admin")
    actor = household.admin if target == "approved" else household.member
    with pytest.raises(InvalidTransitionError):
        services.tasks.update_status(task.id, target, actor.id)
    assert services.store.get_row(Task, task.id).status == TaskStatus.pending


def test_tasks_cannot_move_backwards(services, household):
    task = services.tasks.create_task(task_fields(household), "admin")
    services.tasks.update_status(task.id, "in_progress", household.member.id)
    with pytest.raises(InvalidTransitionError):
        services.tasks.update_status(task.id, "pending", household.member.id)


def test_only_assignee_can_start_task(services, household, add_member):
    sibling = add_member("sib@example.com", "Sibling")
    task = services.tasks.create_task(task_fields(household), "admin")
    with pytest.raises(PermissionDeniedError, match="assigned family member"):
        services.tasks.update_status(task.id, "in_progress", sibling.id)


def test_member_cannot_approve(services, household):
    member = household.member
    task = services.tasks.create_task(task_fields(household), "admin")
    services.tasks.update_status(task.id, "in_progress", member.id)
    services.tasks.update_status(task.id, "completed", member.id)
    with pytest.raises(PermissionDeniedError, match="Only family admins can approve tasks"):
        services.tasks.update_status(task.id, "approved", member.id)


def test_unknown_status_is_rejected(services, household):
    task = services.tasks.create_task(task_fields(household), "admin")
    with pytest.raises(InvalidFieldError):
        services.tasks.update_status(task.id, "done", household.member.id)


class CreditFailingStore(LedgerStore):
    def atomic_adjust_points(self, user_id, delta, *args, **kwargs):
        if delta > 0:
            raise StoreError("Points service unavailable")
        return super().atomic_adjust_points(user_id, delta, *args, **kwargs)


def test_failed_credit_reverts_approval(session, household):
    services = build_services(session, store=CreditFailingStore(session))
    member = household.member
    task = services.tasks.create_task(task_fields(household), "admin")
    services.tasks.update_status(task.id, "in_progress", member.id)
    services.tasks.update_status(task.id, "completed", member.id)

    with pytest.raises(StoreError, match="Points service unavailable"):
        services.tasks.update_status(task.id, "approved", household.admin.id)

    reverted = services.store.get_row(Task, task.id)
    assert reverted.status == TaskStatus.completed
    assert reverted.approved_at is None
    assert notifications_of(session, member.id, NotificationType.task_approved) == []


def test_delete_requires_capability(services, household):
    task = services.tasks.create_task(task_fields(household), "admin")
    with pytest.raises(PermissionDeniedError):
        services.tasks.delete_task(task.id, None)
    with pytest.raises(PermissionDeniedError):
        services.gate.issue_delete_capability(household.member)

    services.tasks.delete_task(task.id, services.gate.issue_delete_capability(household.admin))
    assert services.store.get_row(Task, task.id) is None


def test_delete_missing_task_fails_loudly(services, household):
    capability = services.gate.issue_delete_capability(household.admin)
    with pytest.raises(NotFoundOrForbiddenError, match="could not be deleted"):
        services.tasks.delete_task("missing", capability)


def test_approved_task_cannot_be_deleted(services, household):
    member = household.member
    task = services.tasks.create_task(task_fields(household), "admin")
    services.tasks.update_status(task.id, "in_progress", member.id)
    services.tasks.update_status(task.id, "completed", member.id)
    services.tasks.update_status(task.id, "approved", household.admin.id)
    with pytest.raises(InvalidTransitionError):
        services.tasks.delete_task(task.id, services.gate.issue_delete_capability(household.admin))


def test_pending_approval_count_counts_completed_tasks(services, household):
    member = household.member
    first = services.tasks.create_task(task_fields(household), "admin")
    services.tasks.create_task(task_fields(household, title="Dishes"), "admin")
    assert services.tasks.get_pending_approval_count(household.family.id) == 0

    services.tasks.update_status(first.id, "in_progress", member.id)
    services.tasks.update_status(first.id, "completed", member.id)
    assert services.tasks.get_pending_approval_count(household.family.id) == 1

    services.tasks.update_status(first.id, "approved", household.admin.id)
    assert services.tasks.get_pending_approval_count(household.family.id) == 0
    assert len(services.tasks.list_family_tasks(household.family.id)) == 2
    assert len(services.tasks.list_user_tasks(member.id)) == 2
