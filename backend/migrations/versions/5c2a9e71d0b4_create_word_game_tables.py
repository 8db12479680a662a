"""create game, player, round, submission and round_score tables

Revision ID: 5c2a9e71d0b4
Revises:
Create Date: 2025-09-02 00:00:00
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '5c2a9e71d0b4'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'game',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('game_code', sa.String(length=6), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('round_count', sa.Integer(), nullable=False),
        sa.Column('current_round', sa.Integer(), nullable=False),
        sa.Column('time_per_round', sa.Integer(), nullable=False),
        sa.Column('max_players', sa.Integer(), nullable=False),
    )
    op.create_index('ix_game_game_code', 'game', ['game_code'], unique=True)
    op.create_index('ix_game_status', 'game', ['status'])

    op.create_table(
        'player',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=50), nullable=False),
        sa.Column('game_id', sa.Integer(), sa.ForeignKey('game.id'), nullable=False),
        sa.Column('score', sa.Integer(), nullable=False),
        sa.Column('is_host', sa.Boolean(), nullable=False),
    )
    op.create_index('ix_player_game_id', 'player', ['game_id'])

    op.create_table(
        'round',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('game_id', sa.Integer(), sa.ForeignKey('game.id'), nullable=False),
        sa.Column('round_number', sa.Integer(), nullable=False),
        sa.Column('type', sa.String(length=10), nullable=False),
        sa.Column('topic', sa.String(length=100), nullable=False),
        sa.Column('topic_id', sa.String(length=64), nullable=True),
        sa.Column('start_time', sa.Float(), nullable=False),
        sa.Column('end_time', sa.Float(), nullable=True),
        sa.Column('roster', sa.Text(), nullable=True),
        sa.UniqueConstraint('game_id', 'round_number', name='uq_round_game_number'),
    )
    op.create_index('ix_round_game_id', 'round', ['game_id'])

    op.create_table(
        'submission',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('round_id', sa.Integer(), sa.ForeignKey('round.id'), nullable=False),
        sa.Column('player_id', sa.Integer(), sa.ForeignKey('player.id'), nullable=False),
        sa.Column('word', sa.String(length=100), nullable=False),
        sa.Column('normalized', sa.String(length=100), nullable=False),
        sa.Column('is_final', sa.Boolean(), nullable=False),
        sa.Column('submitted_at', sa.Float(), nullable=True),
        sa.UniqueConstraint('round_id', 'player_id', 'normalized', name='uq_submission_round_player_word'),
    )
    op.create_index('ix_submission_round_id', 'submission', ['round_id'])
    op.create_index('ix_submission_player_id', 'submission', ['player_id'])

    op.create_table(
        'round_score',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('round_id', sa.Integer(), sa.ForeignKey('round.id'), nullable=False),
        sa.Column('player_id', sa.Integer(), sa.ForeignKey('player.id'), nullable=False),
        sa.Column('score', sa.Integer(), nullable=False),
        sa.Column('matched_words', sa.Text(), nullable=True),
        sa.Column('bonus_awarded', sa.Boolean(), nullable=False),
        sa.UniqueConstraint('round_id', 'player_id', name='uq_round_score_round_player'),
    )
    op.create_index('ix_round_score_round_id', 'round_score', ['round_id'])
    op.create_index('ix_round_score_player_id', 'round_score', ['player_id'])


def downgrade():
    op.drop_table('round_score')
    op.drop_table('submission')
    op.drop_table('round')
    op.drop_table('player')
    op.drop_table('game')
