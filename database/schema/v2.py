"""Schema v2 - Analytics events.

Adds the analytics_events table that stores client event batches posted to
/api/analytics/events.
"""

from .v1 import schema as v1_schema

ANALYTICS_EVENTS = {
    'name': 'analytics_events',
    'columns': [
        {'name': 'id', 'type': 'UUID', 'primary_key': True, 'default': 'gen_random_uuid()'},
        {'name': 'user_id', 'type': 'UUID'},
        {'name': 'event', 'type': 'TEXT', 'nullable': False},
        {'name': 'properties', 'type': 'JSONB'},
        {'name': 'client_timestamp', 'type': 'TIMESTAMPTZ'},
        {'name': 'created_at', 'type': 'TIMESTAMPTZ', 'nullable': False, 'default': 'now()'}
    ],
    'foreign_keys': [
        {'columns': ['user_id'], 'references': 'users(id)', 'on_delete': 'SET NULL'}
    ],
    'indexes': [
        {'name': 'idx_analytics_events_event', 'columns': ['event']},
        {'name': 'idx_analytics_events_created_at', 'columns': ['created_at']}
    ]
}

schema = {
    'version': 2,
    'tables': v1_schema['tables'] + [ANALYTICS_EVENTS],
    'triggers': v1_schema['triggers'],
    'migrations': [
        '''
        CREATE TABLE IF NOT EXISTS analytics_events (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id UUID REFERENCES users(id) ON DELETE SET NULL,
            event TEXT NOT NULL,
            properties JSONB,
            client_timestamp TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
        ''',
        'CREATE INDEX IF NOT EXISTS idx_analytics_events_event ON analytics_events(event)',
        'CREATE INDEX IF NOT EXISTS idx_analytics_events_created_at ON analytics_events(created_at)'
    ]
}
