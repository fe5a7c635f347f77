"""add access claims to refresh tokens

Revision ID: b41e9a07c5d3
Revises: 7f3b1c9d2e41
Create Date: 2026-10-17 12:00:00.000000
"""
import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = 'b41e9a07c5d3'
down_revision = '7f3b1c9d2e41'
branch_labels = None
depends_on = None


def upgrade():
    with op.batch_alter_table('refresh_tokens', schema=None) as batch_op:
        batch_op.add_column(sa.Column('access_claims', sa.JSON(), nullable=True))


def downgrade():
    with op.batch_alter_table('refresh_tokens', schema=None) as batch_op:
        batch_op.drop_column('access_claims')
