"""user_settings

Revision ID: 001_user_settings
Revises:
Create Date: 2026-10-19

Adds the user_settings table that holds per-user key/value settings
(the saved estimate coefficient profile lives under "estimateCoefficients").

DDL checks information_schema first so the migration is idempotent —
safe to run even when Base.metadata.create_all() already created the table.
"""
import logging
from alembic import op
import sqlalchemy as sa
from sqlalchemy import text

revision = '001_user_settings'
down_revision = None
branch_labels = None
depends_on = None

logger = logging.getLogger("alembic.001")


def _table_exists(conn, table_name: str) -> bool:
    result = conn.execute(
        text(
            "SELECT EXISTS("
            "  SELECT 1 FROM information_schema.tables"
            "  WHERE table_name = :tname"
            ")"
        ),
        {"tname": table_name},
    )
    return bool(result.scalar())


def upgrade() -> None:
    conn = op.get_bind()

    if _table_exists(conn, 'user_settings'):
        logger.info("Table user_settings already exists — skipping create")
        return

    op.create_table(
        'user_settings',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('user_id', sa.String(255), nullable=False, index=True),
        sa.Column('key', sa.String(100), nullable=False),
        sa.Column('value', sa.Text, nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint('user_id', 'key', name='uq_user_settings_user_key'),
    )
    logger.info("Created table: user_settings")


def downgrade() -> None:
    conn = op.get_bind()
    if _table_exists(conn, 'user_settings'):
        op.drop_table('user_settings')
