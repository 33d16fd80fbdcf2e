"""initial marketplace schema

Revision ID: mh0001initial
Revises:
Create Date: 2026-10-19 00:00:00.000000

Creates the complete MedHub schema:
- catalog_items / providers / provider_offerings: what can be bought where
- users / session_tokens: provider staff and admins
- prescriptions / prescription_items: uploaded records and the items they cover
- consents: data-sharing and other consent answers per patient identifier
- orders / order_items: carts, per-provider sub-orders and their lines
- transaction_references / transaction_reference_entries: one gateway
  reference settling several sub-orders
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'mh0001initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ============================================================================
    # catalog_items: medications, diagnostic tests and packages
    # ============================================================================
    op.create_table(
        'catalog_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('kind', sa.String(length=32), nullable=False),
        sa.Column('category', sa.String(length=64), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('prescription_required', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('strength', sa.String(length=64), nullable=True),
        sa.Column('dosage', sa.String(length=64), nullable=True),
        sa.Column('form', sa.String(length=64), nullable=True),
        sa.Column('prep_instructions', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_catalog_items_kind', 'catalog_items', ['kind'])
    op.create_index('ix_catalog_items_kind_name', 'catalog_items', ['kind', 'name'])

    # ============================================================================
    # providers: pharmacies, labs, diagnostic centers
    # ============================================================================
    op.create_table(
        'providers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('provider_type', sa.String(length=32), nullable=False),
        sa.Column('address', sa.String(length=255), nullable=True),
        sa.Column('state', sa.String(length=64), nullable=True),
        sa.Column('lga', sa.String(length=64), nullable=True),
        sa.Column('ward', sa.String(length=64), nullable=True),
        sa.Column('latitude', sa.Float(), nullable=True),
        sa.Column('longitude', sa.Float(), nullable=True),
        sa.Column('phone', sa.String(length=32), nullable=True),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('license_number', sa.String(length=64), nullable=True),
        sa.Column('verification_status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('home_collection_available', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('operating_hours', sa.String(length=32), nullable=True),
        sa.Column('device_token', sa.String(length=512), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('verified_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_providers_status_active', 'providers', ['verification_status', 'is_active'])

    # ============================================================================
    # provider_offerings: stock NULL = not stock-tracked (tests, packages)
    # ============================================================================
    op.create_table(
        'provider_offerings',
        sa.Column('provider_id', sa.Integer(), nullable=False),
        sa.Column('item_id', sa.Integer(), nullable=False),
        sa.Column('stock', sa.Integer(), nullable=True),
        sa.Column('available', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('price_kobo', sa.Integer(), nullable=False),
        sa.Column('received_date', sa.Date(), nullable=True),
        sa.Column('expiry_date', sa.Date(), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.CheckConstraint('stock IS NULL OR stock >= 0', name='ck_provider_offerings_stock_nonneg'),
        sa.CheckConstraint('price_kobo >= 0', name='ck_provider_offerings_price_nonneg'),
        sa.ForeignKeyConstraint(['provider_id'], ['providers.id'], ),
        sa.ForeignKeyConstraint(['item_id'], ['catalog_items.id'], ),
        sa.PrimaryKeyConstraint('provider_id', 'item_id'),
    )

    # ============================================================================
    # users + session_tokens
    # ============================================================================
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('provider_id', sa.Integer(), nullable=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('role', sa.String(length=16), nullable=False, server_default='staff'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('last_login_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['provider_id'], ['providers.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email', name='uq_users_email'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_users_provider_id', 'users', ['provider_id'])
    op.create_index('ix_users_provider_role', 'users', ['provider_id', 'role'])

    op.create_table(
        'session_tokens',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('token_hash', sa.String(length=255), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('last_used_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('is_revoked', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('revoked_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('revoked_reason', sa.String(length=255), nullable=True),
        sa.Column('user_agent', sa.String(length=512), nullable=True),
        sa.Column('ip_address', sa.String(length=45), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_session_tokens_token_hash', 'session_tokens', ['token_hash'], unique=True)
    op.create_index('ix_session_tokens_user_id', 'session_tokens', ['user_id'])
    op.create_index('ix_session_tokens_expires_at', 'session_tokens', ['expires_at'])
    op.create_index('ix_session_tokens_is_revoked', 'session_tokens', ['is_revoked'])
    op.create_index('ix_session_tokens_user_active', 'session_tokens', ['user_id', 'is_revoked'])

    # ============================================================================
    # prescriptions + coverage rows
    # ============================================================================
    op.create_table(
        'prescriptions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('kind', sa.String(length=16), nullable=False, server_default='prescription'),
        sa.Column('patient_identifier', sa.String(length=64), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('phone', sa.String(length=32), nullable=True),
        sa.Column('file_url', sa.String(length=512), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('reviewed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('reviewed_by_user_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['reviewed_by_user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_prescriptions_email', 'prescriptions', ['email'])
    op.create_index('ix_prescriptions_phone', 'prescriptions', ['phone'])
    op.create_index('ix_prescriptions_patient_status', 'prescriptions',
                    ['patient_identifier', 'status', 'created_at'])

    op.create_table(
        'prescription_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('prescription_id', sa.Integer(), nullable=False),
        sa.Column('item_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=True),
        sa.Column('dosage_instructions', sa.String(length=255), nullable=True),
        sa.ForeignKeyConstraint(['prescription_id'], ['prescriptions.id'], ),
        sa.ForeignKeyConstraint(['item_id'], ['catalog_items.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('prescription_id', 'item_id', name='uq_prescription_items_prescription_item'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_prescription_items_prescription_id', 'prescription_items', ['prescription_id'])

    # ============================================================================
    # consents: one answer per patient identifier and consent type
    # ============================================================================
    op.create_table(
        'consents',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('patient_identifier', sa.String(length=64), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('consent_type', sa.String(length=32), nullable=False),
        sa.Column('granted', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('patient_identifier', 'consent_type', name='uq_consents_patient_type'),
        sqlite_autoincrement=True
    )

    # ============================================================================
    # orders: status 'cart' is the guest's open cart; everything else is a
    # sub-order created at checkout
    # ============================================================================
    op.create_table(
        'orders',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('patient_identifier', sa.String(length=64), nullable=False),
        sa.Column('provider_id', sa.Integer(), nullable=True),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='cart'),
        sa.Column('payment_status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('total_price_kobo', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('prescription_id', sa.Integer(), nullable=True),
        sa.Column('tracking_code', sa.String(length=64), nullable=True),
        sa.Column('checkout_session_id', sa.String(length=64), nullable=True),
        sa.Column('payment_reference', sa.String(length=128), nullable=True),
        sa.Column('split_from_order_id', sa.Integer(), nullable=True),
        sa.Column('stock_reserved', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('name', sa.String(length=255), nullable=True),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('phone', sa.String(length=32), nullable=True),
        sa.Column('address', sa.String(length=255), nullable=True),
        sa.Column('fulfillment_method', sa.String(length=32), nullable=True),
        sa.Column('cancel_reason', sa.String(length=255), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('filled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['provider_id'], ['providers.id'], ),
        sa.ForeignKeyConstraint(['prescription_id'], ['prescriptions.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('payment_reference'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('orders', schema=None) as batch_op:
        batch_op.create_index('ix_orders_provider_id', ['provider_id'])
        batch_op.create_index('ix_orders_prescription_id', ['prescription_id'])
        batch_op.create_index('ix_orders_split_from_order_id', ['split_from_order_id'])
        batch_op.create_index('ix_orders_email', ['email'])
        batch_op.create_index('ix_orders_phone', ['phone'])
        batch_op.create_index('ix_orders_patient_status', ['patient_identifier', 'status'])
        batch_op.create_index('ix_orders_checkout_session', ['checkout_session_id'])
        batch_op.create_index('ix_orders_tracking_code', ['tracking_code'])

    # One open cart per guest, enforced by the database
    op.create_index(
        'uq_orders_one_cart_per_patient',
        'orders',
        ['patient_identifier'],
        unique=True,
        sqlite_where=sa.text("status = 'cart'"),
        postgresql_where=sa.text("status = 'cart'"),
    )

    op.create_table(
        'order_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('provider_id', sa.Integer(), nullable=False),
        sa.Column('item_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('price_kobo', sa.Integer(), nullable=False),
        sa.Column('time_slot_start', sa.DateTime(timezone=True), nullable=True),
        sa.Column('time_slot_end', sa.DateTime(timezone=True), nullable=True),
        sa.Column('fulfillment_method', sa.String(length=32), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.CheckConstraint('quantity > 0', name='ck_order_items_quantity_positive'),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ),
        sa.ForeignKeyConstraint(['provider_id'], ['providers.id'], ),
        sa.ForeignKeyConstraint(['item_id'], ['catalog_items.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_id', 'provider_id', 'item_id', name='uq_order_items_order_offering'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_order_items_order_id', 'order_items', ['order_id'])
    op.create_index('ix_order_items_provider_id', 'order_items', ['provider_id'])

    # ============================================================================
    # transaction_references: gateway reference -> internal order references
    # ============================================================================
    op.create_table(
        'transaction_references',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('transaction_reference', sa.String(length=128), nullable=False),
        sa.Column('checkout_session_id', sa.String(length=64), nullable=False),
        sa.Column('amount_kobo', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('authorization_url', sa.String(length=512), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('transaction_reference'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_transaction_references_checkout_session_id', 'transaction_references',
                    ['checkout_session_id'])

    op.create_table(
        'transaction_reference_entries',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('transaction_reference_id', sa.Integer(), nullable=False),
        sa.Column('payment_reference', sa.String(length=128), nullable=False),
        sa.ForeignKeyConstraint(['transaction_reference_id'], ['transaction_references.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('transaction_reference_id', 'payment_reference',
                            name='uq_transaction_reference_entries'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_transaction_reference_entries_transaction_reference_id',
                    'transaction_reference_entries', ['transaction_reference_id'])
    op.create_index('ix_transaction_reference_entries_payment_reference',
                    'transaction_reference_entries', ['payment_reference'])


def downgrade():
    op.drop_table('transaction_reference_entries')
    op.drop_table('transaction_references')
    op.drop_table('order_items')
    op.drop_index('uq_orders_one_cart_per_patient', table_name='orders')
    op.drop_table('orders')
    op.drop_table('prescription_items')
    op.drop_table('prescriptions')
    op.drop_table('consents')
    op.drop_table('session_tokens')
    op.drop_table('users')
    op.drop_table('provider_offerings')
    op.drop_table('providers')
    op.drop_table('catalog_items')
