"""enforce append-only transaction log

Revision ID: 0002_ledger_immutability
Revises: 0001_ledger
Create Date: 2026-10-19
"""

from alembic import op


revision = "0002_ledger_immutability"
down_revision = "0001_ledger"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute(
        """
        CREATE OR REPLACE FUNCTION prevent_transaction_mutation()
        RETURNS trigger
        LANGUAGE plpgsql
        AS $$
        BEGIN
            RAISE EXCEPTION 'transactions is append-only; % is not allowed', TG_OP;
        END;
        $$;
        """
    )
    op.execute(
        """
        CREATE TRIGGER trg_transactions_immutable
        BEFORE UPDATE OR DELETE ON transactions
        FOR EACH ROW
        EXECUTE FUNCTION prevent_transaction_mutation();
        """
    )


def downgrade() -> None:
    op.execute("DROP TRIGGER IF EXISTS trg_transactions_immutable ON transactions;")
    op.execute("DROP FUNCTION IF EXISTS prevent_transaction_mutation();")
