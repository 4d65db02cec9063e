from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from starlette.middleware.sessions import SessionMiddleware

from .auth import (
    authenticate,
    login_user,
    logout_user,
    register_user,
    require_family,
    require_user,
)
from .config import settings
from .db import init_db
from .errors import (
    ChoreRewardsError,
    CompensationFailure,
    InvalidFieldError,
    InvalidTransitionError,
    NotFoundOrForbiddenError,
    PermissionDeniedError,
    StoreError,
)
from .logging_config import setup_logging
from .models import (
    ClaimResolution,
    Family,
    FamilyCreate,
    FamilyJoin,
    LoginRequest,
    Notification,
    RegisterRequest,
    Reward,
    RewardClaim,
    RewardCreate,
    RewardUpdate,
    Task,
    TaskCreate,
    TaskStatusUpdate,
    User,
    UserOut,
    UserRole,
)
from .services import Services, get_services


@asynccontextmanager
async def lifespan(_: FastAPI):
    setup_logging()
    init_db()
    yield


app = FastAPI(title="Family chores and rewards", lifespan=lifespan)
app.add_middleware(
    SessionMiddleware,
    secret_key=settings.session_secret,
    session_cookie="choresession",
)

ERROR_STATUS = {
    PermissionDeniedError: 403,
    NotFoundOrForbiddenError: 404,
    InvalidTransitionError: 409,
    InvalidFieldError: 400,
    CompensationFailure: 500,
    StoreError: 503,
}


@app.exception_handler(ChoreRewardsError)
async def handle_service_error(_: Request, exc: ChoreRewardsError):
    status_code = next(
        (ERROR_STATUS[kind] for kind in type(exc).__mro__ if kind in ERROR_STATUS), 400
    )
    return JSONResponse(status_code=status_code, content={"detail": exc.message})


def claim_view(claim: RewardClaim, reward: Reward) -> dict:
    return {
        **claim.model_dump(),
        "reward_title": reward.title,
        "points_required": reward.points_required,
        "requires_approval": reward.requires_approval,
    }


# Accounts


@app.post("/register", response_model=UserOut)
async def register(
    request: Request,
    payload: RegisterRequest,
    services: Services = Depends(get_services),
):
    user = register_user(services.store, payload.email, payload.password, payload.full_name)
    login_user(request, user)
    return user


@app.post("/login", response_model=UserOut)
async def login(
    request: Request,
    payload: LoginRequest,
    services: Services = Depends(get_services),
):
    user = authenticate(services.store, payload.email, payload.password)
    if not user:
        raise HTTPException(status_code=401, detail="Invalid email or password")
    login_user(request, user)
    return user


@app.post("/logout")
def logout(request: Request):
    logout_user(request)
    return {"ok": True}


@app.get("/me", response_model=UserOut)
def me(user: User = Depends(require_user)):
    return user


# Families


@app.post("/families", response_model=Family)
async def create_family(
    payload: FamilyCreate,
    user: User = Depends(require_user),
    services: Services = Depends(get_services),
):
    return services.families.create_family(payload.name, user.id)


@app.post("/families/join", response_model=Family)
async def join_family(
    payload: FamilyJoin,
    user: User = Depends(require_user),
    services: Services = Depends(get_services),
):
    return services.families.join_family(payload.family_id, user.id)


@app.get("/families/me", response_model=Family)
def my_family(user: User = Depends(require_family), services: Services = Depends(get_services)):
    return services.families.get_family(user.family_id)


@app.get("/families/me/members", response_model=list[UserOut])
def family_members(
    user: User = Depends(require_family), services: Services = Depends(get_services)
):
    return services.families.get_family_members(user.family_id)


# Tasks


@app.get("/tasks", response_model=list[Task])
def list_tasks(user: User = Depends(require_family), services: Services = Depends(get_services)):
    return services.tasks.list_family_tasks(user.family_id)


@app.get("/tasks/mine", response_model=list[Task])
def my_tasks(user: User = Depends(require_family), services: Services = Depends(get_services)):
    return services.tasks.list_user_tasks(user.id)


@app.get("/tasks/pending-approvals")
def pending_approvals(
    user: User = Depends(require_family), services: Services = Depends(get_services)
):
    return {"count": services.tasks.get_pending_approval_count(user.family_id)}


@app.post("/tasks", response_model=Task)
async def create_task(
    payload: TaskCreate,
    user: User = Depends(require_family),
    services: Services = Depends(get_services),
):
    fields = {**payload.model_dump(), "family_id": user.family_id, "created_by": user.id}
    return services.tasks.create_task(fields, user.role)


@app.post("/tasks/{task_id}/status", response_model=Task)
async def update_task_status(
    task_id: str,
    payload: TaskStatusUpdate,
    user: User = Depends(require_family),
    services: Services = Depends(get_services),
):
    return services.tasks.update_status(task_id, payload.status, user.id)


@app.delete("/tasks/{task_id}")
async def delete_task(
    task_id: str,
    user: User = Depends(require_family),
    services: Services = Depends(get_services),
):
    capability = services.gate.issue_delete_capability(user)
    services.tasks.delete_task(task_id, capability)
    return {"ok": True}


# Rewards and claims


@app.get("/rewards", response_model=list[Reward])
def list_rewards(user: User = Depends(require_family), services: Services = Depends(get_services)):
    return services.rewards.list_family_rewards(user.family_id)


@app.post("/rewards", response_model=Reward)
async def create_reward(
    payload: RewardCreate,
    user: User = Depends(require_family),
    services: Services = Depends(get_services),
):
    fields = {**payload.model_dump(), "family_id": user.family_id, "created_by": user.id}
    return services.rewards.create_reward(fields, user.role)


@app.patch("/rewards/{reward_id}", response_model=Reward)
async def update_reward(
    reward_id: str,
    payload: RewardUpdate,
    user: User = Depends(require_family),
    services: Services = Depends(get_services),
):
    reward = services.store.get_row(Reward, reward_id)
    if reward is None or reward.family_id != user.family_id:
        raise NotFoundOrForbiddenError("Reward not found")
    return services.rewards.update_reward(reward_id, payload, user.role)


@app.delete("/rewards/{reward_id}")
async def delete_reward(
    reward_id: str,
    user: User = Depends(require_family),
    services: Services = Depends(get_services),
):
    capability = services.gate.issue_delete_capability(user)
    services.rewards.delete_reward(reward_id, capability)
    return {"ok": True}


@app.post("/rewards/{reward_id}/claim", response_model=RewardClaim)
async def claim_reward(
    reward_id: str,
    user: User = Depends(require_family),
    services: Services = Depends(get_services),
):
    return services.rewards.claim(reward_id, user.id)


@app.get("/claims")
def list_claims(user: User = Depends(require_family), services: Services = Depends(get_services)):
    if user.role == UserRole.admin:
        return [claim_view(claim, reward) for claim, reward in services.rewards.list_family_claims(user.family_id)]
    rewards = {reward.id: reward for reward in services.store.query_rows(Reward, {"family_id": user.family_id})}
    return [
        claim_view(claim, rewards[claim.reward_id])
        for claim in services.rewards.list_user_claims(user.id)
        if claim.reward_id in rewards
    ]


@app.get("/claims/pending")
def pending_claims(
    user: User = Depends(require_family), services: Services = Depends(get_services)
):
    services.gate.assert_role(user.role, UserRole.admin, "Only family admins can review reward claims")
    return [claim_view(claim, reward) for claim, reward in services.rewards.list_pending_claims(user.family_id)]


@app.post("/claims/{claim_id}/resolve", response_model=RewardClaim)
async def resolve_claim(
    claim_id: str,
    payload: ClaimResolution,
    user: User = Depends(require_family),
    services: Services = Depends(get_services),
):
    return services.rewards.resolve_claim(
        claim_id, payload.decision, user.role, family_id=user.family_id
    )


# Notifications and points


@app.get("/notifications", response_model=list[Notification])
def list_notifications(user: User = Depends(require_user), services: Services = Depends(get_services)):
    return services.notifications.list_notifications(user.id)


@app.get("/notifications/unread-count")
def unread_count(user: User = Depends(require_user), services: Services = Depends(get_services)):
    return {"count": services.notifications.get_unread_count(user.id)}


@app.post("/notifications/read-all")
async def read_all_notifications(
    user: User = Depends(require_user), services: Services = Depends(get_services)
):
    return {"updated": services.notifications.mark_all_as_read(user.id)}


@app.post("/notifications/{notification_id}/read", response_model=Notification)
async def read_notification(
    notification_id: str,
    user: User = Depends(require_user),
    services: Services = Depends(get_services),
):
    return services.notifications.mark_as_read(notification_id, user.id)


@app.get("/points")
def point_history(user: User = Depends(require_user), services: Services = Depends(get_services)):
    return {
        "balance": user.points,
        "transactions": [tx.model_dump() for tx in services.store.point_history(user.id)],
    }


@app.get("/health")
def health():
    return {"status": "ok"}
