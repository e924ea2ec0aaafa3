"""make action reversals write-once

Revision ID: 20261018_0002
Revises: 20261018_0001
Create Date: 2026-10-18

"""

from __future__ import annotations

from alembic import op

# revision identifiers, used by Alembic.
revision = "20261018_0002"
down_revision = "20261018_0001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute(
        """
        CREATE OR REPLACE FUNCTION prevent_immutable_row_change() RETURNS trigger AS $$
        BEGIN
            RAISE EXCEPTION 'row in % is immutable', TG_TABLE_NAME
                USING ERRCODE = 'integrity_constraint_violation';
        END;
        $$ LANGUAGE plpgsql
        """
    )
    op.execute(
        """
        CREATE TRIGGER trg_action_reversals_immutable
        BEFORE UPDATE OR DELETE ON action_reversals
        FOR EACH ROW EXECUTE FUNCTION prevent_immutable_row_change()
        """
    )
    op.execute(
        """
        CREATE TRIGGER trg_moderation_actions_no_delete
        BEFORE DELETE ON moderation_actions
        FOR EACH ROW EXECUTE FUNCTION prevent_immutable_row_change()
        """
    )


def downgrade() -> None:
    op.execute("DROP TRIGGER IF EXISTS trg_moderation_actions_no_delete ON moderation_actions")
    op.execute("DROP TRIGGER IF EXISTS trg_action_reversals_immutable ON action_reversals")
    op.execute("DROP FUNCTION IF EXISTS prevent_immutable_row_change()")
