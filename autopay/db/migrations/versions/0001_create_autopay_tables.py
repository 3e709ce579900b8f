"""create autopay tables

Revision ID: 0001_create_autopay_tables
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '0001_create_autopay_tables'
down_revision = None
branch_labels = None
depends_on = None

OPEN_STATUS_CLAUSE = "status IN ('PENDING', 'ACTIVE')"

subscription_status = sa.Enum('trial', 'active', 'blocked', 'expired', 'cancelled', name='subscriptionstatus')
risk_level = sa.Enum('low', 'medium', 'high', name='securityrisklevel')
mandate_status = sa.Enum('PENDING', 'ACTIVE', 'PAUSED', 'CANCELLED', 'EXPIRED', name='mandatestatus')
mandate_frequency = sa.Enum('MONTHLY', 'QUARTERLY', 'YEARLY', name='mandatefrequency')
charge_status = sa.Enum('SUCCESS', 'FAILED', name='chargestatus')
payment_status = sa.Enum('pending', 'completed', 'failed', 'refunded', name='paymentstatus')
payment_type = sa.Enum('mandate_setup', 'recurring_charge', 'manual_verification', 'admin_action', name='paymenttype')
audit_action = sa.Enum(
    'create', 'update', 'cancel', 'block', 'unblock', 'provider_failure', 'invariant_violation',
    name='auditaction',
)
reconciliation_status = sa.Enum('pending', 'done', 'failed', name='reconciliationstatus')


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    ]


def upgrade():
    op.create_table(
        'users',
        sa.Column('user_id', sa.String(128), primary_key=True),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('name', sa.String(255), nullable=True),
        sa.Column('subscription_status', subscription_status, nullable=False),
        sa.Column('subscription_expiry', sa.DateTime(), nullable=True),
        sa.Column('has_auto_renewal', sa.Boolean(), nullable=False),
        sa.Column('last_payment_date', sa.DateTime(), nullable=True),
        sa.Column('upi_mandate_id', sa.String(128), nullable=True),
        sa.Column('trial_start_date', sa.DateTime(), nullable=True),
        sa.Column('trial_end_date', sa.DateTime(), nullable=True),
        sa.Column('trial_days_remaining', sa.Integer(), nullable=False),
        sa.Column('security_risk_level', risk_level, nullable=False),
        sa.Column('device_fingerprint', sa.String(255), nullable=True),
        sa.Column('block_reason', sa.String(512), nullable=True),
        sa.Column('blocked_at', sa.DateTime(), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_users_email', 'users', ['email'])
    op.create_index('ix_users_subscription_status', 'users', ['subscription_status'])
    op.create_index('ix_users_security_risk_level', 'users', ['security_risk_level'])
    op.create_index('ix_users_device_fingerprint', 'users', ['device_fingerprint'])

    op.create_table(
        'upi_mandates',
        sa.Column('mandate_id', sa.String(128), primary_key=True),
        sa.Column('user_id', sa.String(128), nullable=False),
        sa.Column('upi_id', sa.String(320), nullable=False),
        sa.Column('merchant_vpa', sa.String(320), nullable=False),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False),
        sa.Column('frequency', mandate_frequency, nullable=False),
        sa.Column('start_date', sa.DateTime(), nullable=False),
        sa.Column('end_date', sa.DateTime(), nullable=False),
        sa.Column('status', mandate_status, nullable=False),
        sa.Column('provider_payment_link_id', sa.String(255), nullable=True),
        sa.Column('provider_subscription_id', sa.String(255), nullable=True),
        sa.Column('approval_reference', sa.String(255), nullable=True),
        sa.Column('last_charged_date', sa.DateTime(), nullable=True),
        sa.Column('next_charge_date', sa.DateTime(), nullable=True),
        sa.Column('last_provider_event_at', sa.DateTime(), nullable=True),
        sa.Column('qr_payload', sa.Text(), nullable=True),
        sa.Column('qr_code_image', sa.Text(), nullable=True),
        sa.Column('user_agent', sa.String(512), nullable=True),
        sa.Column('ip_address', sa.String(45), nullable=True),
        sa.Column('platform', sa.String(50), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_upi_mandates_user_id', 'upi_mandates', ['user_id'])
    op.create_index('ix_upi_mandates_status', 'upi_mandates', ['status'])
    op.create_index('ix_upi_mandates_provider_payment_link_id', 'upi_mandates', ['provider_payment_link_id'], unique=True)
    op.create_index('ix_upi_mandates_provider_subscription_id', 'upi_mandates', ['provider_subscription_id'], unique=True)
    op.create_index('ix_upi_mandates_status_next_charge', 'upi_mandates', ['status', 'next_charge_date'])
    op.create_index(
        'uq_upi_mandates_open_user',
        'upi_mandates',
        ['user_id'],
        unique=True,
        sqlite_where=sa.text(OPEN_STATUS_CLAUSE),
        postgresql_where=sa.text(OPEN_STATUS_CLAUSE),
    )

    op.create_table(
        'mandate_charge_attempts',
        sa.Column('id', sa.String(32), primary_key=True),
        sa.Column(
            'mandate_id',
            sa.String(128),
            sa.ForeignKey('upi_mandates.mandate_id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('sequence', sa.Integer(), nullable=False),
        sa.Column('attempted_at', sa.DateTime(), nullable=False),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('status', charge_status, nullable=False),
        sa.Column('reference', sa.String(255), nullable=True),
        sa.Column('provider_payment_id', sa.String(255), nullable=True),
        sa.Column('failure_reason', sa.String(512), nullable=True),
        sa.UniqueConstraint('mandate_id', 'sequence', name='uq_charge_attempt_sequence'),
    )
    op.create_index('ix_mandate_charge_attempts_mandate_id', 'mandate_charge_attempts', ['mandate_id'])
    op.create_index('ix_mandate_charge_attempts_reference', 'mandate_charge_attempts', ['reference'])
    op.create_index('ix_mandate_charge_attempts_provider_payment_id', 'mandate_charge_attempts', ['provider_payment_id'])

    op.create_table(
        'payments',
        sa.Column('id', sa.String(32), primary_key=True),
        sa.Column('transaction_id', sa.String(255), nullable=False),
        sa.Column('user_id', sa.String(128), nullable=False),
        sa.Column('provider_payment_id', sa.String(255), nullable=True),
        sa.Column('provider_order_id', sa.String(255), nullable=True),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False),
        sa.Column('status', payment_status, nullable=False),
        sa.Column('validated_at', sa.DateTime(), nullable=True),
        sa.Column('refunded_at', sa.DateTime(), nullable=True),
        sa.Column('payment_type', payment_type, nullable=False),
        sa.Column('mandate_id', sa.String(128), nullable=True),
        sa.Column('extra', sa.JSON(), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_payments_transaction_id', 'payments', ['transaction_id'], unique=True)
    op.create_index('ix_payments_provider_payment_id', 'payments', ['provider_payment_id'], unique=True)
    op.create_index('ix_payments_user_id', 'payments', ['user_id'])
    op.create_index('ix_payments_provider_order_id', 'payments', ['provider_order_id'])
    op.create_index('ix_payments_status', 'payments', ['status'])
    op.create_index('ix_payments_payment_type', 'payments', ['payment_type'])
    op.create_index('ix_payments_mandate_id', 'payments', ['mandate_id'])

    op.create_table(
        'webhook_events',
        sa.Column('id', sa.String(32), primary_key=True),
        sa.Column('provider', sa.String(100), nullable=False),
        sa.Column('event_id', sa.String(255), nullable=False),
        sa.Column('event_type', sa.String(100), nullable=False),
        sa.Column('resource_id', sa.String(128), nullable=True),
        sa.Column('resource_type', sa.String(100), nullable=True),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('event_created_at', sa.DateTime(), nullable=True),
        sa.Column('processed', sa.Boolean(), nullable=False),
        sa.Column('processed_at', sa.DateTime(), nullable=True),
        sa.Column('received_at', sa.DateTime(), nullable=False),
        *_timestamps(),
    )
    op.create_index('ix_webhook_events_event_id', 'webhook_events', ['event_id'], unique=True)
    op.create_index('ix_webhook_events_provider', 'webhook_events', ['provider'])
    op.create_index('ix_webhook_events_event_type', 'webhook_events', ['event_type'])
    op.create_index('ix_webhook_events_resource_id', 'webhook_events', ['resource_id'])
    op.create_index('ix_webhook_events_processed', 'webhook_events', ['processed'])

    op.create_table(
        'audit_logs',
        sa.Column('id', sa.String(32), primary_key=True),
        sa.Column('actor', sa.String(128), nullable=True),
        sa.Column('action', audit_action, nullable=False),
        sa.Column('target_type', sa.String(50), nullable=False),
        sa.Column('target_id', sa.String(255), nullable=True),
        sa.Column('details', sa.JSON(), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_audit_logs_actor', 'audit_logs', ['actor'])
    op.create_index('ix_audit_logs_action', 'audit_logs', ['action'])
    op.create_index('ix_audit_logs_target_type', 'audit_logs', ['target_type'])
    op.create_index('ix_audit_logs_target_id', 'audit_logs', ['target_id'])

    op.create_table(
        'reconciliation_tasks',
        sa.Column('id', sa.String(32), primary_key=True),
        sa.Column('kind', sa.String(50), nullable=False),
        sa.Column('mandate_id', sa.String(128), nullable=False),
        sa.Column('provider_reference', sa.String(255), nullable=False),
        sa.Column('status', reconciliation_status, nullable=False),
        sa.Column('attempts', sa.Integer(), nullable=False),
        sa.Column('last_error', sa.Text(), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_reconciliation_tasks_kind', 'reconciliation_tasks', ['kind'])
    op.create_index('ix_reconciliation_tasks_mandate_id', 'reconciliation_tasks', ['mandate_id'])
    op.create_index('ix_reconciliation_tasks_status', 'reconciliation_tasks', ['status'])


def downgrade():
    op.drop_table('reconciliation_tasks')
    op.drop_table('audit_logs')
    op.drop_table('webhook_events')
    op.drop_table('payments')
    op.drop_table('mandate_charge_attempts')
    op.drop_index('uq_upi_mandates_open_user', table_name='upi_mandates')
    op.drop_table('upi_mandates')
    op.drop_table('users')

    bind = op.get_bind()
    for enum in (
        reconciliation_status, audit_action, payment_type, payment_status,
        charge_status, mandate_frequency, mandate_status, risk_level, subscription_status,
    ):
        enum.drop(bind, checkfirst=True)
