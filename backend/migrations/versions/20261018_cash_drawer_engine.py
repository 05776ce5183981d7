"""Cash drawers, drawer sessions, sales and payment splits

Revision ID: 20261018_cash_drawer
Revises:
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261018_cash_drawer"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "cash_drawers",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("owner_id", sa.String(length=64), nullable=False),
        sa.Column("code", sa.String(length=32), nullable=False),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("owner_id", "code", name="uq_cash_drawers_owner_code"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_cash_drawers_owner_id", "cash_drawers", ["owner_id"], unique=False)

    op.create_table(
        "drawer_sessions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("drawer_id", sa.Integer(), sa.ForeignKey("cash_drawers.id"), nullable=False),
        sa.Column("session_number", sa.String(length=64), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("opening_balance_cents", sa.Integer(), nullable=False),
        sa.Column("counted_cash_cents", sa.Integer(), nullable=True),
        sa.Column("expected_cash_cents", sa.Integer(), nullable=True),
        sa.Column("variance_cents", sa.Integer(), nullable=True),
        sa.Column("sale_count", sa.Integer(), nullable=False),
        sa.Column("opened_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("closing_notes", sa.Text(), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_drawer_sessions_drawer_id", "drawer_sessions", ["drawer_id"], unique=False)
    op.create_index("ix_drawer_sessions_status", "drawer_sessions", ["status"], unique=False)
    op.create_index("ix_drawer_sessions_opened_at", "drawer_sessions", ["opened_at"], unique=False)
    op.create_index("ix_drawer_sessions_drawer_opened", "drawer_sessions", ["drawer_id", "opened_at"], unique=False)
    # At most one open session per drawer
    op.create_index(
        "uq_drawer_sessions_one_open",
        "drawer_sessions",
        ["drawer_id"],
        unique=True,
        sqlite_where=sa.text("status = 'open'"),
        postgresql_where=sa.text("status = 'open'"),
    )

    op.create_table(
        "document_sequences",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("owner_id", sa.String(length=64), nullable=False),
        sa.Column("document_type", sa.String(length=32), nullable=False),
        sa.Column("next_number", sa.Integer(), nullable=False),
        sa.UniqueConstraint("owner_id", "document_type", name="uq_doc_sequences_owner_type"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_document_sequences_owner_id", "document_sequences", ["owner_id"], unique=False)

    op.create_table(
        "sales",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("session_id", sa.Integer(), sa.ForeignKey("drawer_sessions.id"), nullable=False),
        sa.Column("sale_number", sa.Integer(), nullable=False),
        sa.Column("customer_ref", sa.String(length=128), nullable=True),
        sa.Column("appointment_id", sa.String(length=64), nullable=True),
        sa.Column("idempotency_key", sa.String(length=64), nullable=True, unique=True),
        sa.Column("request_fingerprint", sa.String(length=64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("session_id", "sale_number", name="uq_sales_session_number"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_sales_session_id", "sales", ["session_id"], unique=False)
    op.create_index("ix_sales_appointment_id", "sales", ["appointment_id"], unique=False)
    op.create_index("ix_sales_session_created", "sales", ["session_id", "created_at"], unique=False)

    op.create_table(
        "sale_line_items",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("sale_id", sa.Integer(), sa.ForeignKey("sales.id"), nullable=False),
        sa.Column("line_no", sa.Integer(), nullable=False),
        sa.Column("kind", sa.String(length=16), nullable=False),
        sa.Column("service_ref", sa.String(length=64), nullable=True),
        sa.Column("description", sa.String(length=255), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("unit_price_cents", sa.Integer(), nullable=False),
        sa.Column("discount_amount_cents", sa.Integer(), nullable=True),
        sa.Column("discount_percent", sa.Numeric(5, 2), nullable=True),
        sa.Column("insurance_flag", sa.Boolean(), nullable=False),
        sa.Column("reimbursement_rate", sa.Integer(), nullable=False),
        sa.Column("line_subtotal_cents", sa.Integer(), nullable=False),
        sa.Column("line_net_cents", sa.Integer(), nullable=False),
        sa.Column("insurance_cents", sa.Integer(), nullable=False),
        sa.Column("patient_cents", sa.Integer(), nullable=False),
        sa.UniqueConstraint("sale_id", "line_no", name="uq_sale_line_items_sale_line"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_sale_line_items_sale_id", "sale_line_items", ["sale_id"], unique=False)

    op.create_table(
        "payment_splits",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("sale_id", sa.Integer(), sa.ForeignKey("sales.id"), nullable=False, unique=True),
        sa.Column("cash_cents", sa.Integer(), nullable=False),
        sa.Column("card_cents", sa.Integer(), nullable=False),
        sa.Column("insurance_covered_cents", sa.Integer(), nullable=False),
        sa.Column("change_given_cents", sa.Integer(), nullable=False),
        sa.CheckConstraint("change_given_cents <= cash_cents", name="ck_payment_splits_change_from_cash"),
        sa.CheckConstraint(
            "cash_cents >= 0 AND card_cents >= 0 AND insurance_covered_cents >= 0 AND change_given_cents >= 0",
            name="ck_payment_splits_non_negative",
        ),
        sqlite_autoincrement=True,
    )


def downgrade():
    op.drop_table("payment_splits")
    op.drop_index("ix_sale_line_items_sale_id", table_name="sale_line_items")
    op.drop_table("sale_line_items")
    op.drop_index("ix_sales_session_created", table_name="sales")
    op.drop_index("ix_sales_appointment_id", table_name="sales")
    op.drop_index("ix_sales_session_id", table_name="sales")
    op.drop_table("sales")
    op.drop_index("ix_document_sequences_owner_id", table_name="document_sequences")
    op.drop_table("document_sequences")
    op.drop_index("uq_drawer_sessions_one_open", table_name="drawer_sessions")
    op.drop_index("ix_drawer_sessions_drawer_opened", table_name="drawer_sessions")
    op.drop_index("ix_drawer_sessions_opened_at", table_name="drawer_sessions")
    op.drop_index("ix_drawer_sessions_status", table_name="drawer_sessions")
    op.drop_index("ix_drawer_sessions_drawer_id", table_name="drawer_sessions")
    op.drop_table("drawer_sessions")
    op.drop_index("ix_cash_drawers_owner_id", table_name="cash_drawers")
    op.drop_table("cash_drawers")
