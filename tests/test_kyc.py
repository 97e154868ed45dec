"""Tests for KYC requirements, validation and review."""

from datetime import datetime

import pytest

from kyc import (
    DocumentNotFoundError, InvalidDocumentError, KYCError, KYCManager,
    MAX_DOCUMENT_SIZE, get_requirements, validate_document, verification_status
)
from database.store import DataStore

from conftest import FakePool

def doc(document_type, status, day=1):
    return {
        'document_type': document_type,
        'verification_status': status,
        'created_at': datetime(2024, 1, day)
    }

def test_requirements_per_role():
    assert get_requirements('driver')['required'] == ['id_card', 'drivers_license']
    with pytest.raises(KYCError):
        get_requirements('wizard')

def test_document_validation_messages():
    assert validate_document(b'', 'image/png') == ['Please select a file']
    assert validate_document(b'x' * (MAX_DOCUMENT_SIZE + 1), 'image/gif') == [
        'File size must be less than 5MB',
        'Only JPEG, PNG, and PDF files are allowed'
    ]
    assert validate_document(b'%PDF', 'application/pdf') == []

def test_status_not_started():
    status = verification_status('driver', [])

    assert status['status'] == 'not_started'
    assert status['completion_percentage'] == 0
    assert status['next_steps'] == ['Upload Government-issued ID', "Upload Valid driver's license"]

def test_status_uses_latest_document_per_type():
    status = verification_status('driver', [
        doc('id_card', 'rejected', day=1),
        doc('id_card', 'approved', day=2),
        doc('drivers_license', 'pending')
    ])

    assert status['status'] == 'pending'
    assert status['completion_percentage'] == 50
    assert status['next_steps'] == []

def test_status_rejected_asks_for_reupload():
    status = verification_status('consumer', [doc('id_card', 'rejected')])

    assert status['status'] == 'rejected'
    assert status['next_steps'] == ['Re-upload Government-issued ID (National ID card)']

def test_admin_needs_nothing():
    assert verification_status('admin', [])['status'] == 'approved'

@pytest.mark.asyncio
async def test_submit_document_stores_file_and_row(tmp_path):
    pool = FakePool([('INSERT INTO kyc_documents', lambda *args: {'id': 'k1', 'document_url': args[2]})])
    manager = KYCManager(pool, DataStore(pool, storage_root=str(tmp_path), public_base_url='http://files.test'))

    row = await manager.submit_document('u1', 'id_card', b'png-bytes', content_type='image/png')

    assert row['document_url'].startswith('http://files.test/storage/kyc-documents/u1/id_card-')
    assert row['document_url'].endswith('.png')
    stored = list((tmp_path / 'kyc-documents' / 'u1').iterdir())
    assert [p.read_bytes() for p in stored] == [b'png-bytes']

@pytest.mark.asyncio
async def test_submit_rejects_invalid_documents(tmp_path):
    manager = KYCManager(FakePool(), DataStore(FakePool(), storage_root=str(tmp_path)))

    with pytest.raises(KYCError):
        await manager.submit_document('u1', 'selfie', b'x')
    with pytest.raises(InvalidDocumentError) as info:
        await manager.submit_document('u1', 'id_card', b'x', content_type='text/plain')
    assert info.value.errors == ['Only JPEG, PNG, and PDF files are allowed']

    with pytest.raises(InvalidDocumentError):
        await manager.submit_document('u1', 'id_card', b'<svg onload=alert(1)>')
    assert not (tmp_path / 'kyc-documents').exists()

@pytest.mark.asyncio
@pytest.mark.parametrize('content_type, extension', [('image/jpeg', '.jpg'), ('application/pdf', '.pdf')])
async def test_stored_extension_follows_content_type(tmp_path, content_type, extension):
    pool = FakePool([('INSERT INTO kyc_documents', lambda *args: {'id': 'k1', 'document_url': args[2]})])
    manager = KYCManager(pool, DataStore(pool, storage_root=str(tmp_path)))

    await manager.submit_document('u1', 'passport', b'bytes', content_type=content_type)

    [stored] = (tmp_path / 'kyc-documents' / 'u1').iterdir()
    assert stored.suffix == extension

@pytest.mark.asyncio
async def test_final_approval_verifies_user():
    pool = FakePool([
        ('UPDATE kyc_documents', {'id': 'k1', 'user_id': 'u1', 'verification_status': 'approved'}),
        ('SELECT id, role FROM users', {'id': 'u1', 'role': 'consumer'}),
        ('SELECT * FROM kyc_documents WHERE user_id', [doc('id_card', 'approved')])
    ])
    manager = KYCManager(pool, data=object())

    await manager.approve_document('k1', 'admin-1')

    assert any('SET is_verified = true' in q for q in pool.conn.queries('execute'))

@pytest.mark.asyncio
async def test_review_errors():
    manager = KYCManager(FakePool(), data=object())

    with pytest.raises(KYCError):
        await manager.reject_document('k1', 'admin-1', '')
    with pytest.raises(DocumentNotFoundError):
        await manager.approve_document('k1', 'admin-1')
