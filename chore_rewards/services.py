from dataclasses import dataclass
from typing import Optional

from fastapi import Depends
from sqlmodel import Session

from .config import settings
from .db import get_session
from .families import FamilyService
from .notifications import NotificationDispatcher
from .permissions import AuthorizationGate
from .rewards import RewardClaimLifecycleManager
from .store import LedgerStore
from .tasks import TaskLifecycleManager


@dataclass
class Services:
    store: LedgerStore
    gate: AuthorizationGate
    notifications: NotificationDispatcher
    tasks: TaskLifecycleManager
    rewards: RewardClaimLifecycleManager
    families: FamilyService


def build_services(
    session: Session,
    strict_role_checking: Optional[bool] = None,
    store: Optional[LedgerStore] = None,
) -> Services:
    store = store or LedgerStore(session)
    if strict_role_checking is None:
        strict_role_checking = settings.strict_role_checking
    gate = AuthorizationGate(strict_role_checking=strict_role_checking)
    families = FamilyService(store)
    dispatcher = NotificationDispatcher(store, families)
    return Services(
        store=store,
        gate=gate,
        notifications=dispatcher,
        tasks=TaskLifecycleManager(store, dispatcher, gate),
        rewards=RewardClaimLifecycleManager(store, dispatcher, gate),
        families=families,
    )


def get_services(session: Session = Depends(get_session)) -> Services:
    return build_services(session)
