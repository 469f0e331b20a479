"""Baseline migration - module_settings

Revision ID: 20261017_baseline
Revises:
Create Date: 2026-10-17

"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect

# revision identifiers
revision = "20261017_baseline"
down_revision = None
branch_labels = None
depends_on = None


def table_exists(table_name: str) -> bool:
    """检查表是否存在"""
    bind = op.get_bind()
    return inspect(bind).has_table(table_name)


def upgrade() -> None:
    """创建 module_settings 表"""
    if table_exists("module_settings"):
        return

    op.create_table(
        "module_settings",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("key", sa.String(100), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("auto_register", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("is_core", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("integration_ref", sa.String(255), nullable=True),
        sa.Column("settings", sa.JSON(), nullable=False),
        sa.Column("dependencies", sa.JSON(), nullable=False),
        sa.Column("version", sa.String(50), nullable=True),
        sa.Column("author", sa.String(255), nullable=True),
        sa.Column("changelog", sa.Text(), nullable=True),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_module_settings_key", "module_settings", ["key"], unique=True)
    op.create_index(
        "idx_module_settings_enabled_auto", "module_settings", ["enabled", "auto_register"]
    )
    op.create_index("idx_module_settings_is_core", "module_settings", ["is_core"])


def downgrade() -> None:
    """删除 module_settings 表"""
    if not table_exists("module_settings"):
        return

    op.drop_index("idx_module_settings_is_core", table_name="module_settings")
    op.drop_index("idx_module_settings_enabled_auto", table_name="module_settings")
    op.drop_index("ix_module_settings_key", table_name="module_settings")
    op.drop_table("module_settings")
