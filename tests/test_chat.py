"""Tests for conversations and messages."""

from datetime import datetime

import pytest

from chat import ChatAccessError, ChatError, ChatManager, ConversationNotFoundError, is_participant

from conftest import FakePool

CONVERSATION = {'id': 'c1', 'consumer_id': 'u1', 'merchant_id': 'm-user', 'driver_id': None}

def test_participants():
    assert is_participant(CONVERSATION, 'u1')
    assert is_participant(CONVERSATION, 'm-user')
    assert not is_participant(CONVERSATION, 'stranger')

@pytest.mark.asyncio
async def test_existing_conversation_is_reused():
    pool = FakePool([('SELECT * FROM conversations', CONVERSATION)])

    conversation = await ChatManager(pool).get_or_create_conversation('u1', merchant_id='m-user')

    assert conversation == CONVERSATION
    assert len(pool.conn.queries('fetchrow')) == 1

@pytest.mark.asyncio
async def test_conversation_needs_a_counterpart():
    with pytest.raises(ChatError):
        await ChatManager(FakePool()).get_or_create_conversation('u1')

@pytest.mark.asyncio
async def test_send_message_updates_preview():
    sent_at = datetime(2024, 5, 1, 12, 0)
    pool = FakePool([
        ('SELECT * FROM conversations WHERE id', CONVERSATION),
        ('INSERT INTO messages', lambda *args: {'id': 'msg1', 'message': args[2], 'created_at': sent_at})
    ])

    row = await ChatManager(pool).send_message('c1', 'u1', 'Where are you?')

    assert row['message'] == 'Where are you?'
    [(_, query, args)] = [c for c in pool.conn.calls if 'UPDATE conversations' in c[1]]
    assert args == ('c1', 'Where are you?', sent_at)

@pytest.mark.asyncio
async def test_non_text_messages_preview_their_type():
    pool = FakePool([
        ('SELECT * FROM conversations WHERE id', CONVERSATION),
        ('INSERT INTO messages', {'id': 'msg1', 'created_at': None})
    ])

    await ChatManager(pool).send_message('c1', 'u1', '6.52,3.37', message_type='location')

    [(_, query, args)] = [c for c in pool.conn.calls if 'UPDATE conversations' in c[1]]
    assert args[1] == '[location]'

@pytest.mark.asyncio
async def test_message_validation_and_access():
    manager = ChatManager(FakePool([('SELECT * FROM conversations WHERE id', CONVERSATION)]))

    with pytest.raises(ChatError):
        await manager.send_message('c1', 'u1', '   ')
    with pytest.raises(ChatError):
        await manager.send_message('c1', 'u1', 'hi', message_type='video')
    with pytest.raises(ChatAccessError):
        await manager.send_message('c1', 'stranger', 'hi')

    with pytest.raises(ConversationNotFoundError):
        await ChatManager(FakePool()).get_conversation('missing', 'u1')

@pytest.mark.asyncio
async def test_mark_read_counts_updates():
    pool = FakePool([
        ('SELECT * FROM conversations WHERE id', CONVERSATION),
        ('UPDATE messages SET read = true', 'UPDATE 3')
    ])

    assert await ChatManager(pool).mark_read('c1', 'u1') == 3
