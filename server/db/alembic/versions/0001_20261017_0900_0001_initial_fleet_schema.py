"""Initial fleet schema

Revision ID: 0001
Revises:
Create Date: 2026-10-17 09:00:00.000000

"""
from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = '0001'
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Upgrade database schema."""
    # Needed for uuid columns combined with ranges in the exclusion constraints
    op.execute("CREATE EXTENSION IF NOT EXISTS btree_gist")

    op.create_table('companies',
        sa.Column('id', sa.Uuid(), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('phone', sa.String(length=50), nullable=True),
        sa.Column('email', sa.String(length=200), nullable=True),
        sa.Column('address', sa.String(length=500), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.CheckConstraint('length(name) > 0', name='ck_company_name_not_empty'),
        sa.PrimaryKeyConstraint('id')
    )

    op.create_table('tenant_settings',
        sa.Column('tenant_id', sa.Uuid(), nullable=False),
        sa.Column('data', sa.JSON(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['tenant_id'], ['companies.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('tenant_id')
    )

    op.create_table('high_seasons',
        sa.Column('id', sa.Uuid(), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('tenant_id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=False),
        sa.Column('price_increase', sa.BigInteger(), nullable=False),
        sa.CheckConstraint('start_date <= end_date', name='ck_high_season_dates'),
        sa.CheckConstraint('price_increase >= 0', name='ck_high_season_increase_non_negative'),
        sa.ForeignKeyConstraint(['tenant_id'], ['companies.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_high_seasons_tenant_id'), 'high_seasons', ['tenant_id'], unique=False)

    op.create_table('cars',
        sa.Column('id', sa.Uuid(), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('tenant_id', sa.Uuid(), nullable=False),
        sa.Column('brand', sa.String(length=100), nullable=False),
        sa.Column('model', sa.String(length=100), nullable=False),
        sa.Column('plate', sa.String(length=20), nullable=False),
        sa.Column('category', sa.String(length=50), nullable=True),
        sa.Column('owner_type', sa.String(length=20), nullable=False),
        sa.Column('partner_name', sa.String(length=200), nullable=True),
        sa.Column('partner_share_pct', sa.Integer(), nullable=False),
        sa.Column('price_per_day', sa.BigInteger(), nullable=False),
        sa.Column('driver_daily_salary', sa.BigInteger(), nullable=True),
        sa.Column('current_odometer', sa.BigInteger(), nullable=False),
        sa.Column('is_marketplace_ready', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.CheckConstraint('price_per_day >= 0', name='ck_car_price_non_negative'),
        sa.CheckConstraint('current_odometer >= 0', name='ck_car_odometer_non_negative'),
        sa.CheckConstraint(
            'partner_share_pct >= 0 AND partner_share_pct <= 100', name='ck_car_partner_share_range'
        ),
        sa.ForeignKeyConstraint(['tenant_id'], ['companies.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_cars_tenant_id'), 'cars', ['tenant_id'], unique=False)

    op.create_table('drivers',
        sa.Column('id', sa.Uuid(), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('tenant_id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('phone', sa.String(length=50), nullable=True),
        sa.Column('daily_rate', sa.BigInteger(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['tenant_id'], ['companies.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_drivers_tenant_id'), 'drivers', ['tenant_id'], unique=False)

    op.create_table('customers',
        sa.Column('id', sa.Uuid(), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('tenant_id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('phone', sa.String(length=50), nullable=True),
        sa.Column('national_id', sa.String(length=50), nullable=True),
        sa.Column('address', sa.String(length=500), nullable=True),
        sa.Column('is_blacklisted', sa.Boolean(), nullable=False),
        sa.Column('blacklist_reason', sa.String(length=500), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['tenant_id'], ['companies.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_customers_tenant_id'), 'customers', ['tenant_id'], unique=False)

    op.create_table('global_blacklist',
        sa.Column('id', sa.Uuid(), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('national_id', sa.String(length=50), nullable=True),
        sa.Column('phone', sa.String(length=50), nullable=True),
        sa.Column('reason', sa.String(length=500), nullable=False),
        sa.Column('reported_by_tenant_id', sa.Uuid(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.CheckConstraint('national_id IS NOT NULL OR phone IS NOT NULL', name='ck_blacklist_has_identifier'),
        sa.ForeignKeyConstraint(['reported_by_tenant_id'], ['companies.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_global_blacklist_national_id'), 'global_blacklist', ['national_id'], unique=False)
    op.create_index(op.f('ix_global_blacklist_phone'), 'global_blacklist', ['phone'], unique=False)

    op.create_table('bookings',
        sa.Column('id', sa.Uuid(), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('tenant_id', sa.Uuid(), nullable=False),
        sa.Column('car_id', sa.Uuid(), nullable=False),
        sa.Column('customer_id', sa.Uuid(), nullable=False),
        sa.Column('driver_id', sa.Uuid(), nullable=True),
        sa.Column('start_at', sa.DateTime(), nullable=False),
        sa.Column('end_at', sa.DateTime(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('total_price', sa.BigInteger(), nullable=False),
        sa.Column('amount_paid', sa.BigInteger(), nullable=False),
        sa.Column('payment_method', sa.String(length=20), nullable=False),
        sa.Column('deferred_term_months', sa.Integer(), nullable=True),
        sa.Column('delivery_fee', sa.BigInteger(), nullable=False),
        sa.Column('overdue_fee', sa.BigInteger(), nullable=False),
        sa.Column('extra_fee', sa.BigInteger(), nullable=False),
        sa.Column('extra_fee_reason', sa.String(length=500), nullable=True),
        sa.Column('deposit_type', sa.String(length=50), nullable=True),
        sa.Column('deposit_description', sa.String(length=500), nullable=True),
        sa.Column('deposit_value', sa.BigInteger(), nullable=True),
        sa.Column('coverage_area_id', sa.String(length=64), nullable=True),
        sa.Column('distance_km', sa.Float(), nullable=True),
        sa.Column('use_overnight', sa.Boolean(), nullable=False),
        sa.Column('rental_days', sa.Integer(), nullable=False),
        sa.Column('driver_daily_rate', sa.BigInteger(), nullable=False),
        sa.Column('pickup_checklist', sa.JSON(), nullable=True),
        sa.Column('return_checklist', sa.JSON(), nullable=True),
        sa.Column('actual_return_at', sa.DateTime(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('revision', sa.Integer(), nullable=False),
        sa.Column('ledger_synced', sa.Boolean(), nullable=False),
        sa.Column('marketplace_request_id', sa.Uuid(), nullable=True),
        sa.Column('marketplace_side', sa.String(length=20), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.CheckConstraint('start_at < end_at', name='ck_booking_interval_valid'),
        sa.CheckConstraint('total_price >= 0', name='ck_booking_total_non_negative'),
        sa.CheckConstraint('amount_paid >= 0', name='ck_booking_paid_non_negative'),
        sa.CheckConstraint('delivery_fee >= 0', name='ck_booking_delivery_non_negative'),
        sa.ForeignKeyConstraint(['tenant_id'], ['companies.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['car_id'], ['cars.id']),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id']),
        sa.ForeignKeyConstraint(['driver_id'], ['drivers.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_bookings_tenant_id'), 'bookings', ['tenant_id'], unique=False)
    op.create_index(op.f('ix_bookings_car_id'), 'bookings', ['car_id'], unique=False)
    op.create_index(op.f('ix_bookings_customer_id'), 'bookings', ['customer_id'], unique=False)
    op.create_index(op.f('ix_bookings_driver_id'), 'bookings', ['driver_id'], unique=False)
    op.create_index(op.f('ix_bookings_start_at'), 'bookings', ['start_at'], unique=False)
    op.create_index(op.f('ix_bookings_end_at'), 'bookings', ['end_at'], unique=False)
    op.create_index(op.f('ix_bookings_status'), 'bookings', ['status'], unique=False)
    op.create_index(op.f('ix_bookings_ledger_synced'), 'bookings', ['ledger_synced'], unique=False)
    op.create_index(
        op.f('ix_bookings_marketplace_request_id'), 'bookings', ['marketplace_request_id'], unique=False
    )

    # Last line of defence against double booking; the service checks first
    op.execute("""
        ALTER TABLE bookings ADD CONSTRAINT ex_bookings_car_no_overlap
        EXCLUDE USING gist (
            tenant_id WITH =,
            car_id WITH =,
            tsrange(start_at, end_at, '[)') WITH &&
        ) WHERE (status <> 'CANCELLED')
    """)
    op.execute("""
        ALTER TABLE bookings ADD CONSTRAINT ex_bookings_driver_no_overlap
        EXCLUDE USING gist (
            tenant_id WITH =,
            driver_id WITH =,
            tsrange(start_at, end_at, '[)') WITH &&
        ) WHERE (status <> 'CANCELLED' AND driver_id IS NOT NULL)
    """)

    op.create_table('deferred_payment_plans',
        sa.Column('id', sa.Uuid(), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('tenant_id', sa.Uuid(), nullable=False),
        sa.Column('booking_id', sa.Uuid(), nullable=False),
        sa.Column('customer_id', sa.Uuid(), nullable=False),
        sa.Column('total_amount', sa.BigInteger(), nullable=False),
        sa.Column('term_months', sa.Integer(), nullable=False),
        sa.Column('monthly_installment', sa.BigInteger(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.CheckConstraint('term_months IN (1, 3, 6, 12)', name='ck_deferred_term_valid'),
        sa.ForeignKeyConstraint(['tenant_id'], ['companies.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['booking_id'], ['bookings.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('booking_id')
    )
    op.create_index(
        op.f('ix_deferred_payment_plans_tenant_id'), 'deferred_payment_plans', ['tenant_id'], unique=False
    )

    op.create_table('ledger_entries',
        sa.Column('id', sa.Uuid(), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('tenant_id', sa.Uuid(), nullable=False),
        sa.Column('booking_id', sa.Uuid(), nullable=False),
        sa.Column('entry_type', sa.String(length=20), nullable=False),
        sa.Column('category', sa.String(length=40), nullable=False),
        sa.Column('amount', sa.BigInteger(), nullable=False),
        sa.Column('description', sa.String(length=500), nullable=False),
        sa.Column('reference', sa.String(length=120), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('entry_date', sa.Date(), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.CheckConstraint('amount >= 0', name='ck_ledger_amount_non_negative'),
        sa.ForeignKeyConstraint(['tenant_id'], ['companies.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['booking_id'], ['bookings.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tenant_id', 'reference', name='uq_ledger_tenant_reference')
    )
    op.create_index(op.f('ix_ledger_entries_tenant_id'), 'ledger_entries', ['tenant_id'], unique=False)
    op.create_index(op.f('ix_ledger_entries_booking_id'), 'ledger_entries', ['booking_id'], unique=False)
    op.create_index(op.f('ix_ledger_entries_entry_date'), 'ledger_entries', ['entry_date'], unique=False)

    op.create_table('marketplace_requests',
        sa.Column('id', sa.Uuid(), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('requester_tenant_id', sa.Uuid(), nullable=False),
        sa.Column('supplier_tenant_id', sa.Uuid(), nullable=False),
        sa.Column('car_id', sa.Uuid(), nullable=False),
        sa.Column('driver_id', sa.Uuid(), nullable=True),
        sa.Column('start_at', sa.DateTime(), nullable=False),
        sa.Column('end_at', sa.DateTime(), nullable=False),
        sa.Column('quoted_price', sa.BigInteger(), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('resolved_at', sa.DateTime(), nullable=True),
        sa.Column('supplier_booking_id', sa.Uuid(), nullable=True),
        sa.Column('requester_booking_id', sa.Uuid(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.CheckConstraint('requester_tenant_id <> supplier_tenant_id', name='ck_marketplace_no_self_dealing'),
        sa.CheckConstraint('start_at < end_at', name='ck_marketplace_interval_valid'),
        sa.CheckConstraint('quoted_price >= 0', name='ck_marketplace_price_non_negative'),
        sa.ForeignKeyConstraint(['requester_tenant_id'], ['companies.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['supplier_tenant_id'], ['companies.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['car_id'], ['cars.id']),
        sa.ForeignKeyConstraint(['driver_id'], ['drivers.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(
        op.f('ix_marketplace_requests_requester_tenant_id'), 'marketplace_requests', ['requester_tenant_id'],
        unique=False
    )
    op.create_index(
        op.f('ix_marketplace_requests_supplier_tenant_id'), 'marketplace_requests', ['supplier_tenant_id'],
        unique=False
    )
    op.create_index(op.f('ix_marketplace_requests_status'), 'marketplace_requests', ['status'], unique=False)
    op.create_index(
        op.f('ix_marketplace_requests_expires_at'), 'marketplace_requests', ['expires_at'], unique=False
    )

    op.create_table('idempotency_records',
        sa.Column('id', sa.Uuid(), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('tenant_id', sa.Uuid(), nullable=False),
        sa.Column('idempotency_key', sa.String(length=255), nullable=False),
        sa.Column('method', sa.String(length=100), nullable=False),
        sa.Column('request_body_hash', sa.String(length=64), nullable=False),
        sa.Column('response_status_code', sa.Integer(), nullable=False),
        sa.Column('response_body', sa.Text(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
        sa.CheckConstraint('length(idempotency_key) > 0', name='ck_idempotency_key_not_empty'),
        sa.CheckConstraint('length(request_body_hash) = 64', name='ck_idempotency_hash_length'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tenant_id', 'idempotency_key', 'method', name='uq_idempotency_tenant_key_method')
    )
    op.create_index(op.f('ix_idempotency_records_tenant_id'), 'idempotency_records', ['tenant_id'], unique=False)
    op.create_index(
        op.f('ix_idempotency_records_expires_at'), 'idempotency_records', ['expires_at'], unique=False
    )


def downgrade() -> None:
    """Downgrade database schema."""
    op.drop_table('idempotency_records')
    op.drop_table('marketplace_requests')
    op.drop_table('ledger_entries')
    op.drop_table('deferred_payment_plans')
    op.drop_table('bookings')
    op.drop_table('global_blacklist')
    op.drop_table('customers')
    op.drop_table('drivers')
    op.drop_table('cars')
    op.drop_table('high_seasons')
    op.drop_table('tenant_settings')
    op.drop_table('companies')
