"""KYC module for identity and business verification documents.

Documents are uploaded to the kyc-documents bucket and reviewed by admins.
A user becomes verified once every document required for their role is
approved.
"""
import logging
import time
from typing import Any, Dict, List, Optional
from uuid import UUID

from asyncpg.pool import Pool

from database import get_pool
from database.store import DataStore

logger = logging.getLogger(__name__)

KYC_BUCKET = 'kyc-documents'

DOCUMENT_TYPES = ('id_card', 'passport', 'drivers_license', 'business_license', 'tax_id')

MAX_DOCUMENT_SIZE = 5 * 1024 * 1024
# Accepted upload types and the extension they are stored under
ALLOWED_CONTENT_TYPES = {
    'image/jpeg': '.jpg',
    'image/jpg': '.jpg',
    'image/png': '.png',
    'application/pdf': '.pdf'
}

REQUIREMENTS = {
    'consumer': {
        'required': ['id_card'],
        'optional': ['passport'],
        'description': {
            'id_card': 'Government-issued ID (National ID card)',
            'passport': 'International passport'
        }
    },
    'merchant': {
        'required': ['id_card', 'business_license', 'tax_id'],
        'optional': [],
        'description': {
            'id_card': 'Government-issued ID of business owner',
            'business_license': 'Business registration certificate',
            'tax_id': 'Tax identification document'
        }
    },
    'driver': {
        'required': ['id_card', 'drivers_license'],
        'optional': [],
        'description': {
            'id_card': 'Government-issued ID',
            'drivers_license': "Valid driver's license"
        }
    },
    'admin': {
        'required': [],
        'optional': [],
        'description': {}
    }
}

class KYCError(Exception):
    """Base class for KYC errors."""
    pass

class DocumentNotFoundError(KYCError):
    """Raised when a KYC document does not exist."""
    pass

class InvalidDocumentError(KYCError):
    """Raised when an uploaded document fails validation."""
    def __init__(self, errors: List[str]):
        self.errors = errors
        super().__init__('; '.join(errors))

def get_requirements(role: str) -> Dict[str, Any]:
    """Documents required and accepted for a role.

    Raises:
        KYCError: If the role is unknown
    """
    if role not in REQUIREMENTS:
        raise KYCError(f"Unknown role: {role}")
    return REQUIREMENTS[role]

def validate_document(content: bytes, content_type: Optional[str]) -> List[str]:
    """Return validation errors for an upload; empty when it is acceptable."""
    errors = []
    if not content:
        errors.append('Please select a file')
        return errors
    if len(content) > MAX_DOCUMENT_SIZE:
        errors.append('File size must be less than 5MB')
    if content_type not in ALLOWED_CONTENT_TYPES:
        errors.append('Only JPEG, PNG, and PDF files are allowed')
    return errors

def verification_status(role: str, documents: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Summarize a user's verification from their documents.

    The latest document of each type counts.

    Returns:
        Dict with status (not_started, pending, approved, rejected),
        completion_percentage and next_steps
    """
    requirements = get_requirements(role)
    required = requirements['required']

    latest = {}
    for document in sorted(documents, key=lambda d: d['created_at']):
        latest[document['document_type']] = document

    approved = [t for t in required if latest.get(t, {}).get('verification_status') == 'approved']
    rejected = [t for t in required if latest.get(t, {}).get('verification_status') == 'rejected']
    missing = [t for t in required if t not in latest]

    if not required or len(approved) == len(required):
        status = 'approved'
    elif rejected:
        status = 'rejected'
    elif not documents:
        status = 'not_started'
    else:
        status = 'pending'

    next_steps = [f"Upload {requirements['description'][t]}" for t in missing]
    next_steps += [f"Re-upload {requirements['description'][t]}" for t in rejected]

    return {
        'status': status,
        'completion_percentage': int(len(approved) * 100 / len(required)) if required else 100,
        'next_steps': next_steps
    }

class KYCManager:
    """Manages KYC documents and their review."""

    def __init__(self, pool: Optional[Pool] = None, data: Optional[DataStore] = None) -> None:
        """Initialize KYC manager.

        Args:
            pool: Optional database connection pool. If not provided, will get from database module.
            data: Data store used for document file storage
        """
        self.pool = pool
        self.data = data or DataStore(pool)

    async def ensure_pool(self):
        """Ensure we have a database pool."""
        if not self.pool:
            self.pool = await get_pool()

    async def submit_document(
        self,
        user_id: UUID,
        document_type: str,
        content: bytes,
        content_type: Optional[str] = None
    ) -> Dict[str, Any]:
        """Upload a document and record it for review.

        The stored file is named after the document type and its extension
        comes from the validated content type.

        Raises:
            KYCError: If the document type is unknown
            InvalidDocumentError: If the file fails validation
        """
        if document_type not in DOCUMENT_TYPES:
            raise KYCError(f"Invalid document type: {document_type}")

        errors = validate_document(content, content_type)
        if errors:
            raise InvalidDocumentError(errors)

        extension = ALLOWED_CONTENT_TYPES[content_type]
        path = f"{user_id}/{document_type}-{int(time.time() * 1000)}{extension}"
        await self.data.upload_file(KYC_BUCKET, path, content)
        url = self.data.get_public_url(KYC_BUCKET, path)

        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                '''
                INSERT INTO kyc_documents (user_id, document_type, document_url)
                VALUES ($1, $2, $3)
                RETURNING *
                ''',
                user_id,
                document_type,
                url
            )
        logger.info(f"User {user_id} submitted {document_type} for verification")
        return dict(row)

    async def get_documents(self, user_id: UUID) -> List[Dict[str, Any]]:
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                'SELECT * FROM kyc_documents WHERE user_id = $1 ORDER BY created_at DESC',
                user_id
            )
        return [dict(row) for row in rows]

    async def get_status(self, user_id: UUID, role: str) -> Dict[str, Any]:
        """Verification summary of a user plus their documents."""
        documents = await self.get_documents(user_id)
        return {**verification_status(role, documents), 'documents': documents}

    async def get_pending_documents(self, limit: int = 50, offset: int = 0) -> List[Dict[str, Any]]:
        """Documents awaiting review, oldest first."""
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                '''
                SELECT d.*, u.email, u.full_name, u.role
                FROM kyc_documents d
                JOIN users u ON u.id = d.user_id
                WHERE d.verification_status = 'pending'
                ORDER BY d.created_at
                LIMIT $1 OFFSET $2
                ''',
                limit,
                offset
            )
        return [dict(row) for row in rows]

    async def _review(
        self,
        document_id: UUID,
        reviewer_id: UUID,
        status: str,
        reason: Optional[str] = None
    ) -> Dict[str, Any]:
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                row = await conn.fetchrow(
                    '''
                    UPDATE kyc_documents SET
                        verification_status = $2,
                        verified_by = $3,
                        verified_at = now(),
                        rejection_reason = $4,
                        updated_at = now()
                    WHERE id = $1
                    RETURNING *
                    ''',
                    document_id,
                    status,
                    reviewer_id,
                    reason
                )
                if not row:
                    raise DocumentNotFoundError(f"Document {document_id} not found")

                if status == 'approved':
                    user = await conn.fetchrow(
                        'SELECT id, role FROM users WHERE id = $1',
                        row['user_id']
                    )
                    documents = await conn.fetch(
                        'SELECT * FROM kyc_documents WHERE user_id = $1',
                        row['user_id']
                    )
                    summary = verification_status(user['role'], [dict(d) for d in documents])
                    if summary['status'] == 'approved':
                        await conn.execute(
                            'UPDATE users SET is_verified = true, updated_at = now() WHERE id = $1',
                            row['user_id']
                        )
                        logger.info(f"User {row['user_id']} is now verified")

        logger.info(f"Document {document_id} {status} by {reviewer_id}")
        return dict(row)

    async def approve_document(self, document_id: UUID, reviewer_id: UUID) -> Dict[str, Any]:
        return await self._review(document_id, reviewer_id, 'approved')

    async def reject_document(self, document_id: UUID, reviewer_id: UUID, reason: str) -> Dict[str, Any]:
        if not reason:
            raise KYCError("A rejection reason is required")
        return await self._review(document_id, reviewer_id, 'rejected', reason)

def get_kyc_manager() -> KYCManager:
    """Request-scoped KYC manager."""
    return KYCManager()

__all__ = [
    'KYCManager',
    'KYCError',
    'DocumentNotFoundError',
    'InvalidDocumentError',
    'DOCUMENT_TYPES',
    'REQUIREMENTS',
    'get_requirements',
    'validate_document',
    'verification_status',
    'get_kyc_manager'
]
