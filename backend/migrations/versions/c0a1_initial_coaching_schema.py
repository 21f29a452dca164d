"""Initial coaching schema: tenancy, sessions, goals, invoices

1. Tenant root (organizations) and users with coach hourly rates
2. Per-org document sequences (invoice numbering)
3. Coaching sessions with agenda, role notes and rating history
4. Goals with milestones, collaborators, comments, session links and update log
5. Payments (invoices) with line items and reminders

Revision ID: c0a1_initial_coaching
Revises:
Create Date: 2026-03-02
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'c0a1_initial_coaching'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ==========================================================================
    # TENANCY
    # ==========================================================================
    op.create_table('organizations',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('code', sa.String(length=32), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id', name='pk_organizations'),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table('organizations', schema=None) as batch_op:
        batch_op.create_index('ix_organizations_code', ['code'], unique=True)
        batch_op.create_index('ix_organizations_is_active', ['is_active'], unique=False)

    op.create_table('users',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('org_id', sa.Integer(), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('first_name', sa.String(length=120), nullable=False, server_default=''),
        sa.Column('last_name', sa.String(length=120), nullable=False, server_default=''),
        sa.Column('role', sa.String(length=32), nullable=False),
        sa.Column('hourly_rate_cents', sa.Integer(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('schedule_revision', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id'], name='fk_users_org_id_organizations'),
        sa.PrimaryKeyConstraint('id', name='pk_users'),
        sa.UniqueConstraint('org_id', 'email', name='uq_users_org_email'),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table('users', schema=None) as batch_op:
        batch_op.create_index('ix_users_org_id', ['org_id'], unique=False)
        batch_op.create_index('ix_users_org_role', ['org_id', 'role'], unique=False)

    op.create_table('document_sequences',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('org_id', sa.Integer(), nullable=False),
        sa.Column('document_type', sa.String(length=32), nullable=False),
        sa.Column('next_number', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id'], name='fk_document_sequences_org_id_organizations'),
        sa.PrimaryKeyConstraint('id', name='pk_document_sequences'),
        sa.UniqueConstraint('org_id', 'document_type', name='uq_doc_sequences_org_type'),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table('document_sequences', schema=None) as batch_op:
        batch_op.create_index('ix_document_sequences_org_id', ['org_id'], unique=False)
        batch_op.create_index('ix_document_sequences_document_type', ['document_type'], unique=False)

    # ==========================================================================
    # INVOICES (created before sessions: sessions cache payment_id)
    # ==========================================================================
    op.create_table('payments',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('org_id', sa.Integer(), nullable=False),
        sa.Column('coach_id', sa.Integer(), nullable=False),
        sa.Column('invoice_number', sa.String(length=64), nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('tax_amount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_amount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='USD'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('invoice_url', sa.String(length=512), nullable=True),
        sa.Column('due_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('period_start', sa.DateTime(timezone=True), nullable=True),
        sa.Column('period_end', sa.DateTime(timezone=True), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_by_user_id', sa.Integer(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint('total_amount_cents = amount_cents + tax_amount_cents', name='ck_payments_total_matches_parts'),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id'], name='fk_payments_org_id_organizations'),
        sa.ForeignKeyConstraint(['coach_id'], ['users.id'], name='fk_payments_coach_id_users'),
        sa.ForeignKeyConstraint(['created_by_user_id'], ['users.id'], name='fk_payments_created_by_user_id_users'),
        sa.PrimaryKeyConstraint('id', name='pk_payments'),
        sa.UniqueConstraint('org_id', 'invoice_number', name='uq_payments_org_invoice_number'),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table('payments', schema=None) as batch_op:
        batch_op.create_index('ix_payments_org_id', ['org_id'], unique=False)
        batch_op.create_index('ix_payments_coach_id', ['coach_id'], unique=False)
        batch_op.create_index('ix_payments_status', ['status'], unique=False)
        batch_op.create_index('ix_payments_org_status', ['org_id', 'status'], unique=False)

    # ==========================================================================
    # SESSIONS
    # ==========================================================================
    op.create_table('coaching_sessions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('org_id', sa.Integer(), nullable=False),
        sa.Column('coach_id', sa.Integer(), nullable=False),
        sa.Column('entrepreneur_id', sa.Integer(), nullable=False),
        sa.Column('manager_id', sa.Integer(), nullable=False),
        sa.Column('payment_id', sa.Integer(), nullable=True),
        sa.Column('scheduled_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('end_time', sa.DateTime(timezone=True), nullable=True),
        sa.Column('duration_minutes', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='scheduled'),
        sa.Column('summary', sa.Text(), nullable=True),
        sa.Column('location', sa.String(length=255), nullable=True),
        sa.Column('video_url', sa.String(length=512), nullable=True),
        sa.Column('created_by_user_id', sa.Integer(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id'], name='fk_coaching_sessions_org_id_organizations'),
        sa.ForeignKeyConstraint(['coach_id'], ['users.id'], name='fk_coaching_sessions_coach_id_users'),
        sa.ForeignKeyConstraint(['entrepreneur_id'], ['users.id'], name='fk_coaching_sessions_entrepreneur_id_users'),
        sa.ForeignKeyConstraint(['manager_id'], ['users.id'], name='fk_coaching_sessions_manager_id_users'),
        sa.ForeignKeyConstraint(['payment_id'], ['payments.id'], name='fk_coaching_sessions_payment_id_payments'),
        sa.ForeignKeyConstraint(['created_by_user_id'], ['users.id'], name='fk_coaching_sessions_created_by_user_id_users'),
        sa.PrimaryKeyConstraint('id', name='pk_coaching_sessions'),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table('coaching_sessions', schema=None) as batch_op:
        batch_op.create_index('ix_coaching_sessions_org_id', ['org_id'], unique=False)
        batch_op.create_index('ix_coaching_sessions_entrepreneur_id', ['entrepreneur_id'], unique=False)
        batch_op.create_index('ix_coaching_sessions_manager_id', ['manager_id'], unique=False)
        batch_op.create_index('ix_coaching_sessions_payment_id', ['payment_id'], unique=False)
        batch_op.create_index('ix_coaching_sessions_status', ['status'], unique=False)
        batch_op.create_index('ix_coaching_sessions_coach_status_start', ['coach_id', 'status', 'scheduled_at'], unique=False)
        batch_op.create_index('ix_coaching_sessions_org_status', ['org_id', 'status'], unique=False)

    op.create_table('session_agenda_items',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('session_id', sa.Integer(), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('duration_minutes', sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(['session_id'], ['coaching_sessions.id'], name='fk_session_agenda_items_session_id_coaching_sessions'),
        sa.PrimaryKeyConstraint('id', name='pk_session_agenda_items'),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table('session_agenda_items', schema=None) as batch_op:
        batch_op.create_index('ix_session_agenda_items_session_id', ['session_id'], unique=False)

    op.create_table('session_notes',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('session_id', sa.Integer(), nullable=False),
        sa.Column('role', sa.String(length=16), nullable=False),
        sa.Column('text', sa.Text(), nullable=True),
        sa.Column('updated_by_user_id', sa.Integer(), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['session_id'], ['coaching_sessions.id'], name='fk_session_notes_session_id_coaching_sessions'),
        sa.ForeignKeyConstraint(['updated_by_user_id'], ['users.id'], name='fk_session_notes_updated_by_user_id_users'),
        sa.PrimaryKeyConstraint('id', name='pk_session_notes'),
        sa.UniqueConstraint('session_id', 'role', name='uq_session_notes_session_role'),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table('session_notes', schema=None) as batch_op:
        batch_op.create_index('ix_session_notes_session_id', ['session_id'], unique=False)

    op.create_table('session_ratings',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('session_id', sa.Integer(), nullable=False),
        sa.Column('score', sa.Integer(), nullable=False),
        sa.Column('comment', sa.Text(), nullable=True),
        sa.Column('submitted_by_user_id', sa.Integer(), nullable=False),
        sa.Column('submitted_at', sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint('score >= 1 AND score <= 5', name='ck_session_ratings_score_range'),
        sa.ForeignKeyConstraint(['session_id'], ['coaching_sessions.id'], name='fk_session_ratings_session_id_coaching_sessions'),
        sa.ForeignKeyConstraint(['submitted_by_user_id'], ['users.id'], name='fk_session_ratings_submitted_by_user_id_users'),
        sa.PrimaryKeyConstraint('id', name='pk_session_ratings'),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table('session_ratings', schema=None) as batch_op:
        batch_op.create_index('ix_session_ratings_session_id', ['session_id'], unique=False)

    # ==========================================================================
    # INVOICE DETAIL
    # ==========================================================================
    op.create_table('payment_line_items',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('payment_id', sa.Integer(), nullable=False),
        sa.Column('session_id', sa.Integer(), nullable=False),
        sa.Column('description', sa.String(length=255), nullable=False),
        sa.Column('duration_minutes', sa.Integer(), nullable=False),
        sa.Column('rate_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('amount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.ForeignKeyConstraint(['payment_id'], ['payments.id'], name='fk_payment_line_items_payment_id_payments'),
        sa.ForeignKeyConstraint(['session_id'], ['coaching_sessions.id'], name='fk_payment_line_items_session_id_coaching_sessions'),
        sa.PrimaryKeyConstraint('id', name='pk_payment_line_items'),
        sa.UniqueConstraint('payment_id', 'session_id', name='uq_payment_line_items_payment_session'),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table('payment_line_items', schema=None) as batch_op:
        batch_op.create_index('ix_payment_line_items_payment_id', ['payment_id'], unique=False)
        batch_op.create_index('ix_payment_line_items_session_id', ['session_id'], unique=False)

    op.create_table('payment_reminders',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('payment_id', sa.Integer(), nullable=False),
        sa.Column('reminder_type', sa.String(length=16), nullable=False, server_default='email'),
        sa.Column('sent_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('sent_by_user_id', sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(['payment_id'], ['payments.id'], name='fk_payment_reminders_payment_id_payments'),
        sa.ForeignKeyConstraint(['sent_by_user_id'], ['users.id'], name='fk_payment_reminders_sent_by_user_id_users'),
        sa.PrimaryKeyConstraint('id', name='pk_payment_reminders'),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table('payment_reminders', schema=None) as batch_op:
        batch_op.create_index('ix_payment_reminders_payment_id', ['payment_id'], unique=False)

    # ==========================================================================
    # GOALS
    # ==========================================================================
    op.create_table('goals',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('org_id', sa.Integer(), nullable=False),
        sa.Column('entrepreneur_id', sa.Integer(), nullable=False),
        sa.Column('coach_id', sa.Integer(), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='not_started'),
        sa.Column('priority', sa.String(length=8), nullable=False, server_default='medium'),
        sa.Column('progress', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('target_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('is_archived', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('created_by_user_id', sa.Integer(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint('progress >= 0 AND progress <= 100', name='ck_goals_progress_range'),
        sa.ForeignKeyConstraint(['org_id'], ['organizations.id'], name='fk_goals_org_id_organizations'),
        sa.ForeignKeyConstraint(['entrepreneur_id'], ['users.id'], name='fk_goals_entrepreneur_id_users'),
        sa.ForeignKeyConstraint(['coach_id'], ['users.id'], name='fk_goals_coach_id_users'),
        sa.ForeignKeyConstraint(['created_by_user_id'], ['users.id'], name='fk_goals_created_by_user_id_users'),
        sa.PrimaryKeyConstraint('id', name='pk_goals'),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table('goals', schema=None) as batch_op:
        batch_op.create_index('ix_goals_org_id', ['org_id'], unique=False)
        batch_op.create_index('ix_goals_entrepreneur_id', ['entrepreneur_id'], unique=False)
        batch_op.create_index('ix_goals_coach_id', ['coach_id'], unique=False)
        batch_op.create_index('ix_goals_status', ['status'], unique=False)
        batch_op.create_index('ix_goals_org_archived', ['org_id', 'is_archived'], unique=False)

    op.create_table('goal_milestones',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('goal_id', sa.Integer(), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='not_started'),
        sa.Column('target_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(['goal_id'], ['goals.id'], name='fk_goal_milestones_goal_id_goals'),
        sa.PrimaryKeyConstraint('id', name='pk_goal_milestones'),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table('goal_milestones', schema=None) as batch_op:
        batch_op.create_index('ix_goal_milestones_goal_id', ['goal_id'], unique=False)

    op.create_table('goal_collaborators',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('goal_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('role', sa.String(length=32), nullable=False, server_default='contributor'),
        sa.Column('added_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['goal_id'], ['goals.id'], name='fk_goal_collaborators_goal_id_goals'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], name='fk_goal_collaborators_user_id_users'),
        sa.PrimaryKeyConstraint('id', name='pk_goal_collaborators'),
        sa.UniqueConstraint('goal_id', 'user_id', name='uq_goal_collaborators_goal_user'),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table('goal_collaborators', schema=None) as batch_op:
        batch_op.create_index('ix_goal_collaborators_goal_id', ['goal_id'], unique=False)

    op.create_table('goal_comments',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('goal_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('text', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['goal_id'], ['goals.id'], name='fk_goal_comments_goal_id_goals'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], name='fk_goal_comments_user_id_users'),
        sa.PrimaryKeyConstraint('id', name='pk_goal_comments'),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table('goal_comments', schema=None) as batch_op:
        batch_op.create_index('ix_goal_comments_goal_id', ['goal_id'], unique=False)

    op.create_table('goal_session_links',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('goal_id', sa.Integer(), nullable=False),
        sa.Column('session_id', sa.Integer(), nullable=False),
        sa.Column('linked_by_user_id', sa.Integer(), nullable=True),
        sa.Column('linked_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['goal_id'], ['goals.id'], name='fk_goal_session_links_goal_id_goals'),
        sa.ForeignKeyConstraint(['session_id'], ['coaching_sessions.id'], name='fk_goal_session_links_session_id_coaching_sessions'),
        sa.ForeignKeyConstraint(['linked_by_user_id'], ['users.id'], name='fk_goal_session_links_linked_by_user_id_users'),
        sa.PrimaryKeyConstraint('id', name='pk_goal_session_links'),
        sa.UniqueConstraint('goal_id', 'session_id', name='uq_goal_session_links_goal_session'),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table('goal_session_links', schema=None) as batch_op:
        batch_op.create_index('ix_goal_session_links_goal_id', ['goal_id'], unique=False)
        batch_op.create_index('ix_goal_session_links_session_id', ['session_id'], unique=False)

    op.create_table('goal_update_log',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('goal_id', sa.Integer(), nullable=False),
        sa.Column('updated_by_user_id', sa.Integer(), nullable=True),
        sa.Column('update_type', sa.String(length=32), nullable=False),
        sa.Column('message', sa.String(length=255), nullable=False),
        sa.Column('changes', sa.JSON(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['goal_id'], ['goals.id'], name='fk_goal_update_log_goal_id_goals'),
        sa.ForeignKeyConstraint(['updated_by_user_id'], ['users.id'], name='fk_goal_update_log_updated_by_user_id_users'),
        sa.PrimaryKeyConstraint('id', name='pk_goal_update_log'),
        sqlite_autoincrement=True,
    )
    with op.batch_alter_table('goal_update_log', schema=None) as batch_op:
        batch_op.create_index('ix_goal_update_log_goal_id', ['goal_id'], unique=False)
        batch_op.create_index('ix_goal_update_log_goal_updated', ['goal_id', 'updated_at'], unique=False)


def downgrade():
    for table_name in (
        'goal_update_log',
        'goal_session_links',
        'goal_comments',
        'goal_collaborators',
        'goal_milestones',
        'goals',
        'payment_reminders',
        'payment_line_items',
        'session_ratings',
        'session_notes',
        'session_agenda_items',
        'coaching_sessions',
        'payments',
        'document_sequences',
        'users',
        'organizations',
    ):
        op.drop_table(table_name)
