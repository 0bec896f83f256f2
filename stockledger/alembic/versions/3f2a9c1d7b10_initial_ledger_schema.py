"""initial ledger schema

Revision ID: 3f2a9c1d7b10
Revises:
Create Date: 2026-02-14
"""

from __future__ import annotations

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3f2a9c1d7b10"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

QTY = sa.Numeric(14, 3)
TS = sa.DateTime(timezone=True)

ROLE = sa.Enum("admin", "manager", "user", name="role")
TRANSACTION_TYPE = sa.Enum(
    "receive", "transfer_in", "transfer_out", "adjustment", "production", name="transaction_type"
)
ORDER_STATUS = sa.Enum("submitted", "completed", "cancelled", name="order_status")
PO_STATUS = sa.Enum("draft", "confirmed", "partial", "completed", "cancelled", name="po_status")


def _pk() -> sa.Column:
    return sa.Column("id", sa.BigInteger(), primary_key=True)


def _user_fk(name: str) -> sa.Column:
    return sa.Column(name, sa.BigInteger(), sa.ForeignKey("users.id", ondelete="SET NULL"))


def upgrade() -> None:
    # --- MASTER DATA
    op.create_table(
        "branches",
        _pk(),
        sa.Column("name", sa.String(200), nullable=False, unique=True),
        sa.Column("code", sa.String(32)),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
    )
    op.create_table(
        "departments",
        _pk(),
        sa.Column("branch_id", sa.BigInteger(), sa.ForeignKey("branches.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("code", sa.String(32)),
        sa.Column("is_production", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.UniqueConstraint("branch_id", "name", name="uq_department_branch_name"),
    )
    op.create_index("ix_departments_branch_id", "departments", ["branch_id"])

    op.create_table(
        "products",
        _pk(),
        sa.Column("code", sa.String(64), nullable=False, unique=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("unit", sa.String(32), nullable=False, server_default="unit"),
        sa.Column("is_countable", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("product_group_id", sa.BigInteger()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
    )
    op.create_table(
        "suppliers",
        _pk(),
        sa.Column("name", sa.String(255), nullable=False, unique=True),
        sa.Column("phone", sa.String(64)),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
    )
    op.create_table(
        "users",
        _pk(),
        sa.Column("department_id", sa.BigInteger(), sa.ForeignKey("departments.id", ondelete="SET NULL")),
        sa.Column("username", sa.String(100), nullable=False, unique=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("role", ROLE, nullable=False, server_default="user"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", TS, nullable=False, server_default=sa.func.now()),
    )

    # --- LEDGER
    op.create_table(
        "ledger_entries",
        _pk(),
        sa.Column("product_id", sa.BigInteger(), sa.ForeignKey("products.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("location_id", sa.BigInteger(), sa.ForeignKey("departments.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("transaction_type", TRANSACTION_TYPE, nullable=False),
        sa.Column("quantity", QTY, nullable=False),
        sa.Column("balance_before", QTY, nullable=False),
        sa.Column("balance_after", QTY, nullable=False),
        sa.Column("reference_type", sa.String(50)),
        sa.Column("reference_id", sa.String(100)),
        sa.Column("notes", sa.Text()),
        _user_fk("created_by"),
        sa.Column("created_at", TS, nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_ledger_entries_product_location", "ledger_entries", ["product_id", "location_id"])
    op.create_index("ix_ledger_entries_reference", "ledger_entries", ["reference_type", "reference_id"])
    op.create_index("ix_ledger_entries_created_at", "ledger_entries", ["created_at"])

    op.create_table(
        "balances",
        sa.Column("product_id", sa.BigInteger(), sa.ForeignKey("products.id", ondelete="RESTRICT"), primary_key=True),
        sa.Column("location_id", sa.BigInteger(), sa.ForeignKey("departments.id", ondelete="RESTRICT"), primary_key=True),
        sa.Column("quantity", QTY, nullable=False, server_default="0"),
        sa.Column("last_entry_id", sa.BigInteger(), sa.ForeignKey("ledger_entries.id", ondelete="SET NULL")),
        sa.Column("last_updated", TS, nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_balances_location", "balances", ["location_id"])

    # --- RETRAITS (avant orders : FK withdrawal_id)
    op.create_table(
        "withdrawals",
        _pk(),
        sa.Column("withdrawal_number", sa.String(50), nullable=False, unique=True),
        sa.Column(
            "source_department_id",
            sa.BigInteger(),
            sa.ForeignKey("departments.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column(
            "target_department_id",
            sa.BigInteger(),
            sa.ForeignKey("departments.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("notes", sa.Text()),
        _user_fk("created_by"),
        sa.Column("created_at", TS, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("source_department_id <> target_department_id", name="ck_withdrawal_source_ne_target"),
    )
    op.create_index("ix_withdrawals_source_department_id", "withdrawals", ["source_department_id"])
    op.create_index("ix_withdrawals_target_department_id", "withdrawals", ["target_department_id"])

    op.create_table(
        "withdrawal_lines",
        _pk(),
        sa.Column("withdrawal_id", sa.BigInteger(), sa.ForeignKey("withdrawals.id", ondelete="CASCADE"), nullable=False),
        sa.Column("product_id", sa.BigInteger(), sa.ForeignKey("products.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("quantity", QTY, nullable=False),
        sa.Column("notes", sa.Text()),
        sa.UniqueConstraint("withdrawal_id", "product_id", name="uq_withdrawal_line_product"),
        sa.CheckConstraint("quantity >= 0", name="ck_withdrawal_line_qty_nonneg"),
    )
    op.create_index("ix_withdrawal_lines_withdrawal_id", "withdrawal_lines", ["withdrawal_id"])

    op.create_table(
        "routing_mappings",
        _pk(),
        sa.Column("target_branch_id", sa.BigInteger(), sa.ForeignKey("branches.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "source_department_id",
            sa.BigInteger(),
            sa.ForeignKey("departments.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("created_at", TS, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", TS, nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("target_branch_id", name="uq_routing_target_branch"),
    )
    op.create_index("ix_routing_mappings_source_department_id", "routing_mappings", ["source_department_id"])

    # --- COMMANDES INTERNES
    op.create_table(
        "orders",
        _pk(),
        sa.Column("order_number", sa.String(50), nullable=False, unique=True),
        sa.Column("department_id", sa.BigInteger(), sa.ForeignKey("departments.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("order_date", sa.Date(), nullable=False),
        sa.Column("status", ORDER_STATUS, nullable=False, server_default="submitted"),
        sa.Column("withdrawal_id", sa.BigInteger(), sa.ForeignKey("withdrawals.id", ondelete="SET NULL")),
        _user_fk("created_by"),
        sa.Column("created_at", TS, nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_orders_department_id", "orders", ["department_id"])
    op.create_index("ix_orders_order_date", "orders", ["order_date"])
    op.create_index("ix_orders_withdrawal_id", "orders", ["withdrawal_id"])

    op.create_table(
        "order_lines",
        _pk(),
        sa.Column("order_id", sa.BigInteger(), sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False),
        sa.Column("product_id", sa.BigInteger(), sa.ForeignKey("products.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("quantity_requested", QTY, nullable=False),
        sa.Column("quantity_received", QTY),
        sa.Column("is_received", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("received_at", TS),
        _user_fk("received_by"),
        sa.Column("receive_notes", sa.Text()),
        sa.Column("notes", sa.Text()),
        sa.CheckConstraint("quantity_requested >= 0", name="ck_order_line_requested_nonneg"),
    )
    op.create_index("ix_order_lines_order_id", "order_lines", ["order_id"])

    # --- ACHATS
    op.create_table(
        "purchase_orders",
        _pk(),
        sa.Column("po_number", sa.String(50), nullable=False, unique=True),
        sa.Column("supplier_id", sa.BigInteger(), sa.ForeignKey("suppliers.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("department_id", sa.BigInteger(), sa.ForeignKey("departments.id", ondelete="RESTRICT")),
        sa.Column("status", PO_STATUS, nullable=False, server_default="draft"),
        sa.Column("order_date", sa.Date(), nullable=False),
        sa.Column("expected_date", sa.Date()),
        sa.Column("notes", sa.Text()),
        _user_fk("created_by"),
        sa.Column("created_at", TS, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", TS, nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_purchase_orders_order_date", "purchase_orders", ["order_date"])

    op.create_table(
        "purchase_order_lines",
        _pk(),
        sa.Column("po_id", sa.BigInteger(), sa.ForeignKey("purchase_orders.id", ondelete="CASCADE"), nullable=False),
        sa.Column("product_id", sa.BigInteger(), sa.ForeignKey("products.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("quantity_ordered", QTY, nullable=False),
        sa.Column("quantity_received", QTY, nullable=False, server_default="0"),
        sa.Column("unit_price", sa.Numeric(14, 2)),
        sa.Column("notes", sa.Text()),
        sa.CheckConstraint("quantity_ordered > 0", name="ck_po_line_qty_pos"),
        sa.CheckConstraint("quantity_received >= 0", name="ck_po_line_received_nonneg"),
    )
    op.create_index("ix_purchase_order_lines_po_id", "purchase_order_lines", ["po_id"])

    op.create_table(
        "purchase_order_receipts",
        _pk(),
        sa.Column("po_id", sa.BigInteger(), sa.ForeignKey("purchase_orders.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "po_line_id",
            sa.BigInteger(),
            sa.ForeignKey("purchase_order_lines.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("product_id", sa.BigInteger(), sa.ForeignKey("products.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("quantity_received", QTY, nullable=False),
        sa.Column("ledger_entry_id", sa.BigInteger(), sa.ForeignKey("ledger_entries.id", ondelete="SET NULL")),
        _user_fk("received_by"),
        sa.Column("received_at", TS, nullable=False, server_default=sa.func.now()),
        sa.Column("notes", sa.Text()),
        sa.CheckConstraint("quantity_received > 0", name="ck_po_receipt_qty_pos"),
    )
    op.create_index("ix_purchase_order_receipts_po_id", "purchase_order_receipts", ["po_id"])


def downgrade() -> None:
    for table in (
        "purchase_order_receipts",
        "purchase_order_lines",
        "purchase_orders",
        "order_lines",
        "orders",
        "routing_mappings",
        "withdrawal_lines",
        "withdrawals",
        "balances",
        "ledger_entries",
        "users",
        "suppliers",
        "products",
        "departments",
        "branches",
    ):
        op.drop_table(table)

    bind = op.get_bind()
    for enum in (PO_STATUS, ORDER_STATUS, TRANSACTION_TYPE, ROLE):
        enum.drop(bind, checkfirst=True)
