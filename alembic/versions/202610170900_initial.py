"""initial ledger schema

Revision ID: 202610170900
Revises:
Create Date: 2026-10-17 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202610170900"
down_revision = None
branch_labels = None
depends_on = None


CURRENCIES = ("USD", "MXN", "COP", "EUR", "GBP")
MOVEMENT_TYPES = ("IngresoNormal", "EgresoNormal", "IngresoFijo", "EgresoFijo")


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade():
    op.create_table(
        "accounts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, default=1),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("color", sa.String(length=7), nullable=False),
        sa.Column("currency", sa.Enum(*CURRENCIES, name="currencycode"), nullable=False),
        sa.Column(
            "type",
            sa.Enum("normal", "investment", name="accounttype"),
            nullable=False,
            server_default="normal",
        ),
        sa.Column("balance_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("stock_symbol", sa.String(length=20)),
        sa.Column("shares", sa.Float()),
        sa.Column("invested_cents", sa.Integer()),
        sa.Column("display_order", sa.Integer()),
        *_timestamps(),
        sa.UniqueConstraint(
            "user_id", "name", "currency", name="uq_account_user_name_currency"
        ),
    )

    op.create_table(
        "pockets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, default=1),
        sa.Column(
            "account_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=False
        ),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("type", sa.Enum("normal", "fixed", name="pockettype"), nullable=False),
        sa.Column("balance_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("currency", sa.Enum(*CURRENCIES, name="currencycode"), nullable=False),
        sa.Column("display_order", sa.Integer()),
        *_timestamps(),
        sa.UniqueConstraint(
            "user_id", "account_id", "name", name="uq_pocket_user_account_name"
        ),
    )
    op.create_index("ix_pockets_user_account", "pockets", ["user_id", "account_id"])
    op.create_index(
        "uq_pocket_one_fixed_per_user",
        "pockets",
        ["user_id"],
        unique=True,
        sqlite_where=sa.text("type = 'fixed'"),
        postgresql_where=sa.text("type = 'fixed'"),
    )

    op.create_table(
        "fixed_expense_groups",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, default=1),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("color", sa.String(length=7), nullable=False),
        sa.Column("display_order", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
    )

    op.create_table(
        "sub_pockets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, default=1),
        sa.Column(
            "pocket_id", sa.Integer(), sa.ForeignKey("pockets.id"), nullable=False
        ),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("value_total_cents", sa.Integer(), nullable=False),
        sa.Column("periodicity_months", sa.Integer(), nullable=False),
        sa.Column("balance_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column(
            "group_id", sa.Integer(), sa.ForeignKey("fixed_expense_groups.id")
        ),
        sa.Column("display_order", sa.Integer()),
        *_timestamps(),
        sa.CheckConstraint(
            "value_total_cents > 0", name="ck_sub_pocket_value_positive"
        ),
        sa.CheckConstraint(
            "periodicity_months > 0", name="ck_sub_pocket_periodicity_positive"
        ),
    )
    op.create_index("ix_sub_pockets_user_pocket", "sub_pockets", ["user_id", "pocket_id"])
    op.create_index("ix_sub_pockets_user_group", "sub_pockets", ["user_id", "group_id"])

    op.create_table(
        "movements",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, default=1),
        sa.Column("type", sa.Enum(*MOVEMENT_TYPES, name="movementtype"), nullable=False),
        sa.Column("account_id", sa.Integer(), sa.ForeignKey("accounts.id")),
        sa.Column("pocket_id", sa.Integer(), sa.ForeignKey("pockets.id")),
        sa.Column("sub_pocket_id", sa.Integer(), sa.ForeignKey("sub_pockets.id")),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("displayed_date", sa.Date(), nullable=False),
        sa.Column("notes", sa.Text()),
        sa.Column("is_pending", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_orphaned", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("orphaned_account_name", sa.String(length=100)),
        sa.Column(
            "orphaned_account_currency", sa.Enum(*CURRENCIES, name="currencycode")
        ),
        sa.Column("orphaned_pocket_name", sa.String(length=100)),
        *_timestamps(),
        sa.CheckConstraint("amount_cents > 0", name="ck_movements_amount_positive"),
        sa.CheckConstraint(
            "is_orphaned OR (account_id IS NOT NULL AND pocket_id IS NOT NULL)",
            name="ck_movements_owner_unless_orphaned",
        ),
    )
    op.create_index("ix_movements_user_account", "movements", ["user_id", "account_id"])
    op.create_index("ix_movements_user_pocket", "movements", ["user_id", "pocket_id"])
    op.create_index(
        "ix_movements_user_sub_pocket", "movements", ["user_id", "sub_pocket_id"]
    )
    op.create_index(
        "ix_movements_user_orphaned", "movements", ["user_id", "is_orphaned"]
    )
    op.create_index("ix_movements_user_pending", "movements", ["user_id", "is_pending"])


def downgrade():
    for name in (
        "ix_movements_user_pending",
        "ix_movements_user_orphaned",
        "ix_movements_user_sub_pocket",
        "ix_movements_user_pocket",
        "ix_movements_user_account",
    ):
        op.drop_index(name, table_name="movements")
    op.drop_table("movements")
    op.drop_index("ix_sub_pockets_user_group", table_name="sub_pockets")
    op.drop_index("ix_sub_pockets_user_pocket", table_name="sub_pockets")
    op.drop_table("sub_pockets")
    op.drop_table("fixed_expense_groups")
    op.drop_index("uq_pocket_one_fixed_per_user", table_name="pockets")
    op.drop_index("ix_pockets_user_account", table_name="pockets")
    op.drop_table("pockets")
    op.drop_table("accounts")
