"""initial migration

Revision ID: initial
Revises:
Create Date: 2026-10-18 10:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = 'initial'
down_revision = None
branch_labels = None
depends_on = None

def upgrade() -> None:
    # Create friendships table (canonical pair, user1_id < user2_id)
    op.create_table(
        'friendships',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('user1_id', sa.String(), nullable=False),
        sa.Column('user2_id', sa.String(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True, server_default=sa.text('now()')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user1_id', 'user2_id', name='unique_friendship'),
        sa.CheckConstraint('user1_id < user2_id', name='canonical_friendship_order'),
    )
    op.create_index('ix_friendships_id', 'friendships', ['id'])
    op.create_index('ix_friendships_user1_id', 'friendships', ['user1_id'])
    op.create_index('ix_friendships_user2_id', 'friendships', ['user2_id'])

    # Create friend requests table
    op.create_table(
        'friend_requests',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('sender_id', sa.String(), nullable=False),
        sa.Column('receiver_id', sa.String(), nullable=False),
        sa.Column('pair_key', sa.String(), nullable=False),
        sa.Column('status', sa.String(), nullable=False, server_default='pending'),
        sa.Column('created_at', sa.DateTime(), nullable=True, server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(), nullable=True, server_default=sa.text('now()')),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('sender_id != receiver_id', name='no_self_friend_request'),
        sa.CheckConstraint(
            "status IN ('pending', 'accepted', 'rejected')", name='valid_friend_request_status'
        ),
    )
    op.create_index('ix_friend_requests_id', 'friend_requests', ['id'])
    op.create_index('ix_friend_requests_sender_id', 'friend_requests', ['sender_id'])
    op.create_index('ix_friend_requests_receiver_id', 'friend_requests', ['receiver_id'])
    op.create_index('ix_friend_requests_pair_key', 'friend_requests', ['pair_key'])
    op.create_index('ix_friend_requests_status', 'friend_requests', ['status'])
    # At most one pending request per unordered pair
    op.create_index(
        'unique_pending_friend_request',
        'friend_requests',
        ['pair_key'],
        unique=True,
        postgresql_where=sa.text("status = 'pending'"),
    )

    # Create notifications table
    op.create_table(
        'notifications',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('user_id', sa.String(), nullable=False),
        sa.Column('actor_id', sa.String(), nullable=True),
        sa.Column('type', sa.String(), nullable=False),
        sa.Column('related_id', sa.String(), nullable=True),
        sa.Column('is_read', sa.Boolean(), nullable=True, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(), nullable=True, server_default=sa.text('now()')),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_notifications_id', 'notifications', ['id'])
    op.create_index('ix_notifications_user_id', 'notifications', ['user_id'])

# Drop in reverse dependency order
def downgrade() -> None:
    op.drop_table('notifications')
    op.drop_table('friend_requests')
    op.drop_table('friendships')
