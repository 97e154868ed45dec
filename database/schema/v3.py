"""Schema v3 - Payment transactions and escrow.

Adds:
- transactions: one row per payment attempt, settled directly or by the
  payment gateway webhook through its reference
- escrow_transactions: funds held for an order until delivery or refund
- wallet_transactions: credits and debits produced by escrow release and refunds
"""

from .v1 import _timestamps
from .v2 import schema as v2_schema

TRANSACTION_STATUSES = ['pending', 'completed', 'failed']
TRANSACTION_TYPES = ['order_payment', 'refund']
ESCROW_STATUSES = ['HELD', 'RELEASED', 'REFUNDED', 'DISPUTED']
WALLET_TRANSACTION_TYPES = ['CREDIT', 'DEBIT']

TRANSACTIONS = {
    'name': 'transactions',
    'columns': [
        {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
        {'name': 'user_id', 'type': 'UUID', 'nullable': False},
        {'name': 'order_id', 'type': 'UUID', 'nullable': False},
        {'name': 'amount', 'type': 'DECIMAL(10, 2)', 'nullable': False},
        {'name': 'payment_method', 'type': 'TEXT'},
        {'name': 'reference', 'type': 'TEXT', 'nullable': False, 'unique': True},
        {'name': 'status', 'type': 'TEXT', 'nullable': False, 'default': "'pending'",
         'check': TRANSACTION_STATUSES},
        {'name': 'type', 'type': 'TEXT', 'nullable': False, 'default': "'order_payment'",
         'check': TRANSACTION_TYPES},
        {'name': 'gateway_response', 'type': 'JSONB'},
        *_timestamps()
    ],
    'foreign_keys': [
        {'columns': ['user_id'], 'references': 'users(id)'},
        {'columns': ['order_id'], 'references': 'orders(id)', 'on_delete': 'CASCADE'}
    ],
    'indexes': [
        {'name': 'idx_transactions_order_id', 'columns': ['order_id']},
        {'name': 'idx_transactions_user_id', 'columns': ['user_id']}
    ]
}

ESCROW_TRANSACTIONS = {
    'name': 'escrow_transactions',
    'columns': [
        {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
        {'name': 'order_id', 'type': 'UUID', 'nullable': False, 'unique': True},
        {'name': 'buyer_id', 'type': 'UUID', 'nullable': False},
        {'name': 'seller_id', 'type': 'UUID', 'nullable': False},
        {'name': 'amount', 'type': 'DECIMAL(10, 2)', 'nullable': False},
        {'name': 'status', 'type': 'TEXT', 'nullable': False, 'default': "'HELD'",
         'check': ESCROW_STATUSES},
        {'name': 'released_at', 'type': 'TIMESTAMPTZ'},
        {'name': 'disputed_at', 'type': 'TIMESTAMPTZ'},
        {'name': 'dispute_reason', 'type': 'TEXT'},
        *_timestamps()
    ],
    'foreign_keys': [
        {'columns': ['order_id'], 'references': 'orders(id)', 'on_delete': 'CASCADE'},
        {'columns': ['buyer_id'], 'references': 'users(id)'},
        {'columns': ['seller_id'], 'references': 'users(id)'}
    ],
    'indexes': [
        {'name': 'idx_escrow_transactions_status', 'columns': ['status']}
    ]
}

WALLET_TRANSACTIONS = {
    'name': 'wallet_transactions',
    'columns': [
        {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
        {'name': 'user_id', 'type': 'UUID', 'nullable': False},
        {'name': 'amount', 'type': 'DECIMAL(10, 2)', 'nullable': False},
        {'name': 'type', 'type': 'TEXT', 'nullable': False, 'check': WALLET_TRANSACTION_TYPES},
        {'name': 'description', 'type': 'TEXT'},
        {'name': 'reference', 'type': 'TEXT', 'nullable': False, 'unique': True},
        {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
    ],
    'foreign_keys': [
        {'columns': ['user_id'], 'references': 'users(id)', 'on_delete': 'CASCADE'}
    ],
    'indexes': [
        {'name': 'idx_wallet_transactions_user_id', 'columns': ['user_id']}
    ]
}

schema = {
    'version': 3,
    'tables': v2_schema['tables'] + [TRANSACTIONS, ESCROW_TRANSACTIONS, WALLET_TRANSACTIONS],
    'triggers': v2_schema['triggers'],
    'migrations': [
        '''
        CREATE TABLE IF NOT EXISTS transactions (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id UUID NOT NULL REFERENCES users(id),
            order_id UUID NOT NULL REFERENCES orders(id) ON DELETE CASCADE,
            amount DECIMAL(10, 2) NOT NULL,
            payment_method TEXT,
            reference TEXT NOT NULL UNIQUE,
            status TEXT NOT NULL DEFAULT 'pending'
                CHECK (status IN ('pending', 'completed', 'failed')),
            type TEXT NOT NULL DEFAULT 'order_payment'
                CHECK (type IN ('order_payment', 'refund')),
            gateway_response JSONB,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
        ''',
        'CREATE INDEX IF NOT EXISTS idx_transactions_order_id ON transactions(order_id)',
        'CREATE INDEX IF NOT EXISTS idx_transactions_user_id ON transactions(user_id)',
        '''
        CREATE TABLE IF NOT EXISTS escrow_transactions (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            order_id UUID NOT NULL UNIQUE REFERENCES orders(id) ON DELETE CASCADE,
            buyer_id UUID NOT NULL REFERENCES users(id),
            seller_id UUID NOT NULL REFERENCES users(id),
            amount DECIMAL(10, 2) NOT NULL,
            status TEXT NOT NULL DEFAULT 'HELD'
                CHECK (status IN ('HELD', 'RELEASED', 'REFUNDED', 'DISPUTED')),
            released_at TIMESTAMPTZ,
            disputed_at TIMESTAMPTZ,
            dispute_reason TEXT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
        ''',
        'CREATE INDEX IF NOT EXISTS idx_escrow_transactions_status ON escrow_transactions(status)',
        '''
        CREATE TABLE IF NOT EXISTS wallet_transactions (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            amount DECIMAL(10, 2) NOT NULL,
            type TEXT NOT NULL CHECK (type IN ('CREDIT', 'DEBIT')),
            description TEXT,
            reference TEXT NOT NULL UNIQUE,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
        ''',
        'CREATE INDEX IF NOT EXISTS idx_wallet_transactions_user_id ON wallet_transactions(user_id)'
    ]
}
