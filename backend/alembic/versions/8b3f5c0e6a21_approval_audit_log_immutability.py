"""approval_audit_log_immutability

Revision ID: 8b3f5c0e6a21
Revises: 4d7e1a9c2b10
Create Date: 2026-09-14 11:20:05.000000

Enforce append-only semantics on approval_audit_logs at the DB level:
- Revoke UPDATE and DELETE from PUBLIC
- Grant SELECT and INSERT only
"""
from typing import Sequence, Union

from alembic import op


# revision identifiers, used by Alembic.
revision: str = '8b3f5c0e6a21'
down_revision: Union[str, None] = '4d7e1a9c2b10'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("REVOKE UPDATE, DELETE ON approval_audit_logs FROM PUBLIC;")
    op.execute("GRANT SELECT, INSERT ON approval_audit_logs TO PUBLIC;")


def downgrade() -> None:
    # Disaster recovery only
    op.execute("GRANT UPDATE, DELETE ON approval_audit_logs TO PUBLIC;")
