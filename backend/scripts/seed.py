"""Seed script: users, approval roles, a starter approval matrix and approver registrations.

Idempotent: checks for existing records before inserting. Rules go through the
rule store so every seeded rule is audited and snapshotted like an admin edit.
Run: python scripts/seed.py   (from backend/)
"""
import sys
import os
from decimal import Decimal

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.db.session import get_sync_sessionmaker
from app.models.approval_matrix import ApprovalRole, ApprovalRule
from app.models.user import User
from app.services import approver_registry, rule_store

# (code, name, hierarchy_level)
ROLES = [
    ("BUYER_LEAD", "Buyer Lead", 1),
    ("PROC_MGR", "Procurement Manager", 2),
    ("FIN_MGR", "Finance Manager", 3),
    ("CFO", "Chief Financial Officer", 4),
    ("CEO", "Chief Executive Officer", 5),
]

# (name, category, min, max, auto_approve_below, [role codes in order])
RULES = [
    ("PR up to 10k", "purchase_request", "0", "10000", "500", ["BUYER_LEAD"]),
    ("PR 10k+", "purchase_request", "10000", None, None, ["BUYER_LEAD", "PROC_MGR", "FIN_MGR"]),
    ("PO up to 10k", "purchase_order", "0", "10000", None, ["BUYER_LEAD", "FIN_MGR"]),
    ("PO 10k to 100k", "purchase_order", "10000", "100000", None, ["PROC_MGR", "FIN_MGR", "CFO"]),
    ("PO 100k+", "purchase_order", "100000", None, None, ["PROC_MGR", "FIN_MGR", "CFO", "CEO"]),
    ("Contracts", "contracts", "0", None, None, ["PROC_MGR", "CFO"]),
    ("Capex", "capex", "0", None, None, ["FIN_MGR", "CFO", "CEO"]),
    ("Payments", "payments", "0", None, None, ["FIN_MGR"]),
    ("Float cash", "float_cash", "0", "5000", "1000", ["FIN_MGR"]),
]

# (email, name, global role, [approver role codes])
USERS = [
    ("admin@example.com", "Admin User", "admin", []),
    ("buyer.lead@example.com", "Buyer Lead", "buyer", ["BUYER_LEAD"]),
    ("proc.manager@example.com", "Procurement Manager", "buyer", ["PROC_MGR"]),
    ("finance@example.com", "Finance Manager", "finance", ["FIN_MGR"]),
    ("cfo@example.com", "CFO", "finance", ["CFO"]),
    ("requester@example.com", "Requester", "requester", []),
]


# ─── Upsert helpers ───────────────────────────────────────────────────────────

def _upsert_user(db: Session, email: str, name: str, role: str) -> User:
    user = db.execute(select(User).where(User.email == email)).scalars().first()
    if user:
        print(f"  [skip] User {email}")
        return user
    user = User(email=email, name=name, role=role, is_active=True)
    db.add(user)
    db.commit()
    print(f"  [new]  User {email} ({role})")
    return user


def _upsert_role(db: Session, code: str, name: str, level: int, actor: User) -> ApprovalRole:
    role = db.execute(select(ApprovalRole).where(ApprovalRole.code == code)).scalars().first()
    if role:
        print(f"  [skip] Role {code}")
        return role
    role = rule_store.create_role(
        db, {"code": code, "name": name, "hierarchy_level": level}, actor_id=actor.id
    )
    print(f"  [new]  Role {code}")
    return role


def _upsert_rule(db: Session, row: tuple, roles: dict[str, ApprovalRole], actor: User) -> None:
    name, category, min_amount, max_amount, auto_below, codes = row
    existing = db.execute(
        select(ApprovalRule).where(ApprovalRule.name == name, ApprovalRule.category == category)
    ).scalars().first()
    if existing:
        print(f"  [skip] Rule {name}")
        return
    rule_store.create_rule(
        db,
        {
            "name": name,
            "category": category,
            "min_amount": Decimal(min_amount),
            "max_amount": Decimal(max_amount) if max_amount else None,
            "auto_approve_below": Decimal(auto_below) if auto_below else None,
            "escalation_hours": 24,
        },
        approvers=[
            {"role_id": roles[code].id, "sequence_order": i, "can_delegate": True}
            for i, code in enumerate(codes, start=1)
        ],
        actor_id=actor.id,
    )
    print(f"  [new]  Rule {name} ({len(codes)} steps)")


def seed() -> None:
    with get_sync_sessionmaker()() as db:
        print("Users:")
        users = {email: _upsert_user(db, email, name, role) for email, name, role, _ in USERS}
        admin = users["admin@example.com"]

        print("Approval roles:")
        roles = {code: _upsert_role(db, code, name, level, admin) for code, name, level in ROLES}

        print("Approval rules:")
        for row in RULES:
            _upsert_rule(db, row, roles, admin)

        print("Approver registrations:")
        for email, _, _, codes in USERS:
            for code in codes:
                approver_registry.assign_user_approver(db, users[email].id, code, actor_id=admin.id)
                print(f"  [set]  {email} -> {code}")

    print("Seed complete.")


if __name__ == "__main__":
    seed()
