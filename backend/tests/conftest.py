"""Shared fixtures: an in-memory SQLite database and small factories.

The engine services are dialect-agnostic apart from row locking, which
SQLite ignores; the compare-and-set on action status still applies.
"""
import uuid
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.db.base import Base
from app.models import ApprovalRole, User
from app.services import approver_registry, hooks, rule_store


@pytest.fixture
def db_session():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    session = sessionmaker(bind=engine, expire_on_commit=False)()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture(autouse=True)
def clean_hooks():
    hooks.clear()
    yield
    hooks.clear()


@pytest.fixture
def make_user(db_session):
    def _make(role: str = "buyer", email: str | None = None, name: str = "Test User") -> User:
        user = User(
            email=email or f"{uuid.uuid4().hex[:10]}@example.com",
            name=name,
            role=role,
            is_active=True,
        )
        db_session.add(user)
        db_session.commit()
        return user
    return _make


@pytest.fixture
def admin(make_user):
    return make_user(role="admin", email="admin@example.com", name="Admin")


@pytest.fixture
def make_role(db_session, admin):
    def _make(code: str, name: str | None = None, level: int = 1) -> ApprovalRole:
        return rule_store.create_role(
            db_session,
            {"code": code, "name": name or code.replace("_", " ").title(), "hierarchy_level": level},
            actor_id=admin.id,
        )
    return _make


@pytest.fixture
def make_rule(db_session, admin):
    """Create a rule whose approver steps follow the given roles in order."""
    def _make(
        category: str = "purchase_order",
        min_amount: str = "0",
        max_amount: str | None = None,
        roles: list[ApprovalRole] | None = None,
        name: str | None = None,
        **fields,
    ):
        payload = {
            "name": name or f"{category} {min_amount}-{max_amount or 'inf'}",
            "category": category,
            "min_amount": Decimal(min_amount),
            "max_amount": Decimal(max_amount) if max_amount is not None else None,
            **fields,
        }
        approvers = [
            {"role_id": role.id, "sequence_order": i}
            for i, role in enumerate(roles or [], start=1)
        ]
        return rule_store.create_rule(db_session, payload, approvers=approvers, actor_id=admin.id)
    return _make


@pytest.fixture
def register(db_session, admin):
    """Register a user as approver for a role code."""
    def _register(user: User, code: str, modules=None, max_approval_amount=None):
        return approver_registry.assign_user_approver(
            db_session,
            user.id,
            code,
            modules=modules,
            max_approval_amount=max_approval_amount,
            actor_id=admin.id,
        )
    return _register


@pytest.fixture
def po_matrix(make_role, make_rule, make_user, register):
    """Purchase orders 0..10000 need Buyer Lead then Finance Manager."""
    buyer_lead = make_role("BUYER_LEAD", "Buyer Lead", 1)
    fin_mgr = make_role("FIN_MGR", "Finance Manager", 2)
    rule = make_rule(
        "purchase_order", "0", "10000",
        roles=[buyer_lead, fin_mgr],
        requires_sequential=True,
    )
    lead_user = make_user(role="buyer", email="lead@example.com", name="Lead")
    finance_user = make_user(role="finance", email="fin@example.com", name="Finance")
    register(lead_user, "BUYER_LEAD")
    register(finance_user, "FIN_MGR")
    return {
        "rule": rule,
        "roles": {"BUYER_LEAD": buyer_lead, "FIN_MGR": fin_mgr},
        "lead": lead_user,
        "finance": finance_user,
    }
