from __future__ import annotations
"""forwarder/migrations/versions/0001_initial.py
~~~~~~~~~~~~~~~~~~~~~~~~
Schéma initial : forwarded_problems, forward_history, app_state.
"""
from alembic import op
import sqlalchemy as sa

revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "forwarded_problems",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("problem_id", sa.String(255), nullable=False, unique=True),
        sa.Column("status", sa.String(64), nullable=False),
        sa.Column("severity_level", sa.String(64), nullable=True),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("first_seen_at", sa.BigInteger(), nullable=False),
        sa.Column("last_forwarded_at", sa.BigInteger(), nullable=False),
        sa.Column("last_status_change_at", sa.BigInteger(), nullable=False),
        sa.Column("forward_count", sa.Integer(), server_default="1", nullable=False),
        sa.Column("created_at", sa.BigInteger(), nullable=False),
        sa.Column("updated_at", sa.BigInteger(), nullable=False),
    )
    op.create_index("idx_problem_id", "forwarded_problems", ["problem_id"])
    op.create_index("idx_status", "forwarded_problems", ["status"])
    op.create_index("idx_last_forwarded_at", "forwarded_problems", ["last_forwarded_at"])

    # audit append-only, pas de FK : l'historique survit à un clear-cache
    op.create_table(
        "forward_history",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("problem_id", sa.String(255), nullable=False),
        sa.Column("connector_name", sa.String(255), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("response_code", sa.Integer(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("forwarded_at", sa.BigInteger(), nullable=False),
    )
    op.create_index("idx_forward_history_problem_id", "forward_history", ["problem_id"])
    op.create_index("idx_forward_history_connector", "forward_history", ["connector_name"])

    op.create_table(
        "app_state",
        sa.Column("key", sa.String(255), primary_key=True),
        sa.Column("value", sa.Text(), nullable=False),
        sa.Column("updated_at", sa.BigInteger(), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("app_state")
    op.drop_index("idx_forward_history_connector", table_name="forward_history")
    op.drop_index("idx_forward_history_problem_id", table_name="forward_history")
    op.drop_table("forward_history")
    op.drop_index("idx_last_forwarded_at", table_name="forwarded_problems")
    op.drop_index("idx_status", table_name="forwarded_problems")
    op.drop_index("idx_problem_id", table_name="forwarded_problems")
    op.drop_table("forwarded_problems")
