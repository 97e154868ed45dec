"""Schema v1 - Initial database schema.

This version includes tables for:
- Users, merchants and addresses
- Products and reviews
- Carts, orders and order items
- Notifications, conversations and messages
- Payment methods and KYC documents
- Driver locations

Row changes on the realtime tables are published through pg_notify on the
'row_changes' channel.
"""

ROLES = ['consumer', 'merchant', 'driver', 'admin']
ORDER_STATUSES = ['PENDING', 'CONFIRMED', 'PREPARING', 'READY', 'IN_TRANSIT', 'DELIVERED', 'CANCELLED']
DELIVERY_TYPES = ['yourself', 'someone_else']
NOTIFICATION_TYPES = ['order', 'promo', 'system', 'delivery', 'payment', 'promotion']
PRIORITIES = ['high', 'medium', 'low']
MESSAGE_TYPES = ['text', 'image', 'location']
PAYMENT_METHOD_TYPES = ['card', 'bank', 'wallet']
DOCUMENT_TYPES = ['id_card', 'passport', 'drivers_license', 'business_license', 'tax_id']
VERIFICATION_STATUSES = ['pending', 'approved', 'rejected']

REALTIME_TABLES = ['orders', 'driver_locations', 'messages', 'cart_items', 'notifications', 'products']

NOTIFY_ROW_CHANGE = '''
    DECLARE
        payload JSON;
    BEGIN
        payload := json_build_object(
            'table', TG_TABLE_NAME,
            'type', TG_OP,
            'record', CASE WHEN TG_OP = 'DELETE' THEN NULL ELSE row_to_json(NEW) END,
            'old_record', CASE WHEN TG_OP = 'INSERT' THEN NULL ELSE row_to_json(OLD) END
        );
        PERFORM pg_notify('row_changes', payload::text);
        RETURN COALESCE(NEW, OLD);
    END;
'''

def _timestamps():
    return [
        {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
        {'name': 'updated_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
    ]

schema = {
    'version': 1,
    'tables': [
        {
            'name': 'users',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'firebase_uid', 'type': 'TEXT', 'nullable': False, 'unique': True},
                {'name': 'email', 'type': 'TEXT', 'nullable': False},
                {'name': 'full_name', 'type': 'TEXT'},
                {'name': 'role', 'type': 'TEXT', 'nullable': False, 'check': ROLES},
                {'name': 'phone_number', 'type': 'TEXT'},
                {'name': 'profile_image_url', 'type': 'TEXT'},
                {'name': 'is_verified', 'type': 'BOOLEAN', 'default': 'false'},
                {'name': 'is_active', 'type': 'BOOLEAN', 'default': 'true'},
                *_timestamps()
            ],
            'indexes': [
                {'name': 'idx_users_email', 'columns': ['email'], 'unique': True},
                {'name': 'idx_users_role', 'columns': ['role']}
            ]
        },
        {
            'name': 'merchants',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'user_id', 'type': 'UUID'},
                {'name': 'business_name', 'type': 'TEXT', 'nullable': False},
                {'name': 'business_type', 'type': 'TEXT'},
                {'name': 'address', 'type': 'TEXT'},
                {'name': 'city', 'type': 'TEXT'},
                {'name': 'state', 'type': 'TEXT'},
                {'name': 'country', 'type': 'TEXT'},
                {'name': 'latitude', 'type': 'DECIMAL(10, 8)'},
                {'name': 'longitude', 'type': 'DECIMAL(11, 8)'},
                {'name': 'operating_hours', 'type': 'JSONB'},
                {'name': 'rating', 'type': 'DECIMAL(2, 1)', 'default': '0.0'},
                {'name': 'total_reviews', 'type': 'INT4', 'default': '0'},
                {'name': 'is_verified', 'type': 'BOOLEAN', 'default': 'false'},
                {'name': 'is_active', 'type': 'BOOLEAN', 'default': 'true'},
                *_timestamps()
            ],
            'foreign_keys': [
                {'columns': ['user_id'], 'references': 'users(id)', 'on_delete': 'CASCADE'}
            ],
            'indexes': [
                {'name': 'idx_merchants_user_id', 'columns': ['user_id']},
                {'name': 'idx_merchants_active', 'columns': ['is_active']}
            ]
        },
        {
            'name': 'products',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'merchant_id', 'type': 'UUID'},
                {'name': 'name', 'type': 'TEXT', 'nullable': False},
                {'name': 'description', 'type': 'TEXT'},
                {'name': 'category', 'type': 'TEXT'},
                {'name': 'unit', 'type': 'TEXT'},
                {'name': 'price', 'type': 'DECIMAL(10, 2)', 'nullable': False},
                {'name': 'stock_quantity', 'type': 'INT4', 'default': '0'},
                {'name': 'image_url', 'type': 'TEXT'},
                {'name': 'is_available', 'type': 'BOOLEAN', 'default': 'true'},
                *_timestamps()
            ],
            'foreign_keys': [
                {'columns': ['merchant_id'], 'references': 'merchants(id)', 'on_delete': 'CASCADE'}
            ],
            'indexes': [
                {'name': 'idx_products_merchant_id', 'columns': ['merchant_id']},
                {'name': 'idx_products_category', 'columns': ['category']}
            ]
        },
        {
            'name': 'addresses',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'user_id', 'type': 'UUID'},
                {'name': 'label', 'type': 'TEXT'},
                {'name': 'address_line1', 'type': 'TEXT', 'nullable': False},
                {'name': 'address_line2', 'type': 'TEXT'},
                {'name': 'city', 'type': 'TEXT', 'nullable': False},
                {'name': 'state', 'type': 'TEXT', 'nullable': False},
                {'name': 'country', 'type': 'TEXT', 'nullable': False},
                {'name': 'postal_code', 'type': 'TEXT'},
                {'name': 'latitude', 'type': 'DECIMAL(10, 8)'},
                {'name': 'longitude', 'type': 'DECIMAL(11, 8)'},
                {'name': 'is_default', 'type': 'BOOLEAN', 'default': 'false'},
                *_timestamps()
            ],
            'foreign_keys': [
                {'columns': ['user_id'], 'references': 'users(id)', 'on_delete': 'CASCADE'}
            ],
            'indexes': [
                {'name': 'idx_addresses_user_id', 'columns': ['user_id']}
            ]
        },
        {
            'name': 'orders',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'user_id', 'type': 'UUID'},
                {'name': 'merchant_id', 'type': 'UUID'},
                {'name': 'driver_id', 'type': 'UUID'},
                {'name': 'status', 'type': 'TEXT', 'nullable': False, 'default': "'PENDING'",
                 'check': ORDER_STATUSES},
                {'name': 'total_amount', 'type': 'DECIMAL(10, 2)', 'nullable': False},
                {'name': 'subtotal', 'type': 'DECIMAL(10, 2)', 'nullable': False},
                {'name': 'delivery_fee', 'type': 'DECIMAL(10, 2)', 'default': '0'},
                {'name': 'delivery_address', 'type': 'TEXT', 'nullable': False},
                {'name': 'delivery_type', 'type': 'TEXT', 'check': DELIVERY_TYPES},
                {'name': 'recipient_name', 'type': 'TEXT'},
                {'name': 'recipient_phone', 'type': 'TEXT'},
                {'name': 'payment_method', 'type': 'TEXT'},
                {'name': 'payment_status', 'type': 'TEXT', 'default': "'pending'"},
                {'name': 'notes', 'type': 'TEXT'},
                {'name': 'estimated_delivery', 'type': 'TIMESTAMPTZ'},
                {'name': 'delivered_at', 'type': 'TIMESTAMPTZ'},
                *_timestamps()
            ],
            'foreign_keys': [
                {'columns': ['user_id'], 'references': 'users(id)'},
                {'columns': ['merchant_id'], 'references': 'merchants(id)'},
                {'columns': ['driver_id'], 'references': 'users(id)'}
            ],
            'indexes': [
                {'name': 'idx_orders_user_id', 'columns': ['user_id']},
                {'name': 'idx_orders_merchant_id', 'columns': ['merchant_id']},
                {'name': 'idx_orders_status', 'columns': ['status']}
            ]
        },
        {
            'name': 'order_items',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'order_id', 'type': 'UUID'},
                {'name': 'product_id', 'type': 'UUID'},
                {'name': 'quantity', 'type': 'DECIMAL(10, 2)', 'nullable': False},
                {'name': 'unit_price', 'type': 'DECIMAL(10, 2)', 'nullable': False},
                {'name': 'total_price', 'type': 'DECIMAL(10, 2)', 'nullable': False},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'foreign_keys': [
                {'columns': ['order_id'], 'references': 'orders(id)', 'on_delete': 'CASCADE'},
                {'columns': ['product_id'], 'references': 'products(id)'}
            ],
            'indexes': [
                {'name': 'idx_order_items_order_id', 'columns': ['order_id']}
            ]
        },
        {
            'name': 'cart_items',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'user_id', 'type': 'UUID'},
                {'name': 'product_id', 'type': 'UUID'},
                {'name': 'merchant_id', 'type': 'UUID'},
                {'name': 'quantity', 'type': 'INT4', 'nullable': False, 'default': '1'},
                {'name': 'unit_price', 'type': 'DECIMAL(10, 2)'},
                *_timestamps()
            ],
            'unique': [
                {'name': 'cart_items_user_product_unique', 'columns': ['user_id', 'product_id']}
            ],
            'foreign_keys': [
                {'columns': ['user_id'], 'references': 'users(id)', 'on_delete': 'CASCADE'},
                {'columns': ['product_id'], 'references': 'products(id)', 'on_delete': 'CASCADE'},
                {'columns': ['merchant_id'], 'references': 'merchants(id)', 'on_delete': 'CASCADE'}
            ],
            'indexes': [
                {'name': 'idx_cart_items_user_id', 'columns': ['user_id']},
                {'name': 'idx_cart_items_product_id', 'columns': ['product_id']}
            ]
        },
        {
            'name': 'notifications',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'user_id', 'type': 'UUID'},
                {'name': 'title', 'type': 'TEXT', 'nullable': False},
                {'name': 'message', 'type': 'TEXT', 'nullable': False},
                {'name': 'type', 'type': 'TEXT', 'nullable': False, 'check': NOTIFICATION_TYPES},
                {'name': 'role', 'type': 'TEXT', 'check': ROLES},
                {'name': 'read', 'type': 'BOOLEAN', 'default': 'false'},
                {'name': 'priority', 'type': 'TEXT', 'default': "'medium'", 'check': PRIORITIES},
                {'name': 'data', 'type': 'JSONB'},
                {'name': 'action', 'type': 'TEXT'},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'foreign_keys': [
                {'columns': ['user_id'], 'references': 'users(id)', 'on_delete': 'CASCADE'}
            ],
            'indexes': [
                {'name': 'idx_notifications_user_id', 'columns': ['user_id']},
                {'name': 'idx_notifications_read', 'columns': ['read']}
            ]
        },
        {
            'name': 'conversations',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'order_id', 'type': 'UUID'},
                {'name': 'consumer_id', 'type': 'UUID'},
                {'name': 'merchant_id', 'type': 'UUID'},
                {'name': 'driver_id', 'type': 'UUID'},
                {'name': 'last_message', 'type': 'TEXT'},
                {'name': 'last_message_at', 'type': 'TIMESTAMPTZ'},
                *_timestamps()
            ],
            'foreign_keys': [
                {'columns': ['order_id'], 'references': 'orders(id)', 'on_delete': 'CASCADE'},
                {'columns': ['consumer_id'], 'references': 'users(id)'},
                {'columns': ['merchant_id'], 'references': 'users(id)'},
                {'columns': ['driver_id'], 'references': 'users(id)'}
            ],
            'indexes': [
                {'name': 'idx_conversations_order_id', 'columns': ['order_id'], 'unique': True}
            ]
        },
        {
            'name': 'messages',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'conversation_id', 'type': 'UUID'},
                {'name': 'sender_id', 'type': 'UUID'},
                {'name': 'message', 'type': 'TEXT', 'nullable': False},
                {'name': 'message_type', 'type': 'TEXT', 'default': "'text'", 'check': MESSAGE_TYPES},
                {'name': 'read', 'type': 'BOOLEAN', 'default': 'false'},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'foreign_keys': [
                {'columns': ['conversation_id'], 'references': 'conversations(id)', 'on_delete': 'CASCADE'},
                {'columns': ['sender_id'], 'references': 'users(id)'}
            ],
            'indexes': [
                {'name': 'idx_messages_conversation_id', 'columns': ['conversation_id']}
            ]
        },
        {
            'name': 'payment_methods',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'user_id', 'type': 'UUID'},
                {'name': 'type', 'type': 'TEXT', 'nullable': False, 'check': PAYMENT_METHOD_TYPES},
                {'name': 'last_four', 'type': 'TEXT'},
                {'name': 'card_brand', 'type': 'TEXT'},
                {'name': 'bank_name', 'type': 'TEXT'},
                {'name': 'account_number', 'type': 'TEXT'},
                {'name': 'is_default', 'type': 'BOOLEAN', 'default': 'false'},
                {'name': 'is_active', 'type': 'BOOLEAN', 'default': 'true'},
                *_timestamps()
            ],
            'foreign_keys': [
                {'columns': ['user_id'], 'references': 'users(id)', 'on_delete': 'CASCADE'}
            ],
            'indexes': [
                {'name': 'idx_payment_methods_user_id', 'columns': ['user_id']}
            ]
        },
        {
            'name': 'kyc_documents',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'user_id', 'type': 'UUID'},
                {'name': 'document_type', 'type': 'TEXT', 'nullable': False, 'check': DOCUMENT_TYPES},
                {'name': 'document_url', 'type': 'TEXT', 'nullable': False},
                {'name': 'verification_status', 'type': 'TEXT', 'default': "'pending'",
                 'check': VERIFICATION_STATUSES},
                {'name': 'verified_at', 'type': 'TIMESTAMPTZ'},
                {'name': 'verified_by', 'type': 'UUID'},
                {'name': 'rejection_reason', 'type': 'TEXT'},
                *_timestamps()
            ],
            'foreign_keys': [
                {'columns': ['user_id'], 'references': 'users(id)', 'on_delete': 'CASCADE'},
                {'columns': ['verified_by'], 'references': 'users(id)'}
            ],
            'indexes': [
                {'name': 'idx_kyc_documents_user_id', 'columns': ['user_id']},
                {'name': 'idx_kyc_documents_status', 'columns': ['verification_status']}
            ]
        },
        {
            'name': 'reviews',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'order_id', 'type': 'UUID'},
                {'name': 'merchant_id', 'type': 'UUID'},
                {'name': 'user_id', 'type': 'UUID'},
                {'name': 'rating', 'type': 'INT4', 'nullable': False},
                {'name': 'comment', 'type': 'TEXT'},
                {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
            ],
            'checks': [
                {'name': 'reviews_rating_range', 'expression': 'rating BETWEEN 1 AND 5'}
            ],
            'foreign_keys': [
                {'columns': ['order_id'], 'references': 'orders(id)', 'on_delete': 'CASCADE'},
                {'columns': ['merchant_id'], 'references': 'merchants(id)', 'on_delete': 'CASCADE'},
                {'columns': ['user_id'], 'references': 'users(id)', 'on_delete': 'CASCADE'}
            ],
            'indexes': [
                {'name': 'idx_reviews_merchant_id', 'columns': ['merchant_id']}
            ]
        },
        {
            'name': 'driver_locations',
            'columns': [
                {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
                {'name': 'driver_id', 'type': 'UUID', 'nullable': False, 'unique': True},
                {'name': 'latitude', 'type': 'DECIMAL(10, 8)', 'nullable': False},
                {'name': 'longitude', 'type': 'DECIMAL(11, 8)', 'nullable': False},
                {'name': 'accuracy', 'type': 'DECIMAL(10, 2)'},
                {'name': 'heading', 'type': 'DECIMAL(5, 2)'},
                {'name': 'timestamp', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'},
                *_timestamps()
            ],
            'foreign_keys': [
                {'columns': ['driver_id'], 'references': 'users(id)', 'on_delete': 'CASCADE'}
            ],
            'indexes': [
                {'name': 'idx_driver_locations_timestamp', 'columns': ['timestamp']}
            ]
        }
    ],
    'triggers': [
        {
            'name': f'{table}_notify_row_change',
            'function_name': 'notify_row_change',
            'table': table,
            'timing': 'AFTER',
            'events': ['INSERT', 'UPDATE', 'DELETE'],
            'level': 'ROW',
            'function_body': NOTIFY_ROW_CHANGE
        }
        for table in REALTIME_TABLES
    ]
}
