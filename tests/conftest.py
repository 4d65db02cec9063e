import os
import sys
from types import SimpleNamespace

PROJECT_ROOT = os.path.dirname(os.path.dirname(__file__))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, Session, create_engine

from chore_rewards import db
from chore_rewards import models  # ensure models are registered with metadata
from chore_rewards.auth import register_user
from chore_rewards.main import app
from chore_rewards.services import build_services


test_engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


def override_get_session():
    with Session(test_engine) as session:
        yield session


def reset_database():
    SQLModel.metadata.drop_all(test_engine)
    SQLModel.metadata.create_all(test_engine)


db.engine = test_engine
app.dependency_overrides[db.get_session] = override_get_session


@pytest.fixture(autouse=True)
def setup_db():
    reset_database()
    yield


@pytest.fixture
def client():
    reset_database()
    return TestClient(app)


@pytest.fixture
def session():
    with Session(test_engine) as session:
        yield session


@pytest.fixture
def services(session):
    return build_services(session, strict_role_checking=True)


def make_user(services, email, full_name, points=0):
    user = register_user(services.store, email, "pw", full_name)
    if points:
        services.store.add_user_points(user.id, points, "Starting balance")
    return user


@pytest.fixture
def household(services):
    admin = make_user(services, "parent@example.com", "Parent")
    family = services.families.create_family("Home", admin.id)
    member = make_user(services, "kid@example.com", "Kid")
    services.families.join_family(family.id, member.id)
    return SimpleNamespace(admin=admin, member=member, family=family)


@pytest.fixture
def add_member(services, household):
    """Create another user in the household, optionally as an admin."""

    def factory(email, full_name, points=0, admin=False):
        user = make_user(services, email, full_name, points)
        services.families.join_family(household.family.id, user.id)
        if admin:
            services.store.update_row(models.User, user.id, {"role": models.UserRole.admin})
        return user

    return factory
