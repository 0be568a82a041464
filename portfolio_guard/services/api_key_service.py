"""
API key lifecycle management: create, rotate, update, revoke, verify.

Every mutation and every sensitive read writes exactly one ApiKeyLog row in
the same commit as the change it describes.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from portfolio_guard.core.crypto import PayloadCodec, digests_match, generate_secure_key, get_codec, hash_value
from portfolio_guard.core.errors import ConflictError, DecryptionError, ValidationError
from portfolio_guard.models.api_key import ApiKey
from portfolio_guard.models.api_key_log import ApiKeyLog
from portfolio_guard.services.activity_service import (
    BULK_SUBJECT,
    SYSTEM_ACTOR,
    ActivityAction,
    RequestMeta,
    log_api_key_action,
)
from portfolio_guard.utils.datetime import as_naive_utc, utcnow

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = {"name", "service", "is_active", "expires_at"}
MAX_KEY_GENERATION_ATTEMPTS = 3


def _require_text(value: Optional[str], field: str) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(f"{field.capitalize()} is required", errors={field: f"{field.capitalize()} is required"})
    return str(value).strip()


class ApiKeyService:
    """Service for API key lifecycle operations."""

    def __init__(self, db: Session, codec: Optional[PayloadCodec] = None, meta: Optional[RequestMeta] = None):
        """
        Initialize API key service.

        Args:
            db: Database session
            codec: Payload codec for the encrypted copy (defaults to the process codec)
            meta: Request metadata recorded on audit rows
        """
        self.db = db
        self.codec = codec or get_codec()
        self.meta = meta or RequestMeta()

    def _log(self, action: str, api_key: ApiKey, performed_by: str, details: str) -> None:
        log_api_key_action(
            self.db,
            action=action,
            api_key_id=api_key.id,
            api_key_name=api_key.name,
            service=api_key.service,
            performed_by=performed_by,
            details=details,
            meta=self.meta,
        )

    def _commit(self) -> None:
        try:
            self.db.commit()
        except StaleDataError:
            self.db.rollback()
            logger.warning("Concurrent modification of an API key detected, change rolled back")
            raise ConflictError()

    def _new_key_material(self) -> Tuple[str, str, str]:
        """Generate a raw key that does not collide with an existing digest."""
        for _ in range(MAX_KEY_GENERATION_ATTEMPTS):
            raw_key = generate_secure_key()
            key_hash = hash_value(raw_key)
            exists = self.db.query(ApiKey.id).filter(ApiKey.key_hash == key_hash).first()
            if not exists:
                return raw_key, key_hash, self.codec.encrypt(raw_key)
        raise RuntimeError("Failed to generate unique API key")

    def create(
        self,
        name: str,
        service: str,
        created_by: str,
        expires_at: Optional[datetime] = None,
    ) -> Tuple[ApiKey, str]:
        """
        Create a new API key.

        Args:
            name: Display name
            service: Service the key grants access to
            created_by: Username of the creator
            expires_at: Optional expiry

        Returns:
            Tuple of (stored record, raw key). The raw key is only ever returned here.

        Raises:
            ValidationError: If name or service is blank
        """
        name = _require_text(name, "name")
        service = _require_text(service, "service")
        raw_key, key_hash, encrypted_key = self._new_key_material()

        now = utcnow()
        api_key = ApiKey(
            name=name,
            service=service,
            encrypted_key=encrypted_key,
            key_hash=key_hash,
            created_by=created_by,
            created_at=now,
            updated_at=now,
            expires_at=as_naive_utc(expires_at),
            is_active=True,
        )
        self.db.add(api_key)
        self.db.flush()
        self._log(ActivityAction.CREATED, api_key, created_by, f"API key created for service: {service}")
        self._commit()

        logger.info(f"Created API key: id={api_key.id}, name={name}, service={service}")
        return api_key, raw_key

    def update(self, key_id: str, updates: Dict[str, Any], updated_by: str) -> Optional[ApiKey]:
        """
        Update an API key's metadata. Key material is never touched.

        Args:
            key_id: API key ID
            updates: Any of name, service, is_active, expires_at
            updated_by: Username performing the update

        Returns:
            Updated record, or None if the ID is unknown

        Raises:
            ValidationError: On unknown fields or blank name/service
            ConflictError: If the key changed concurrently
        """
        unknown = set(updates) - UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")

        api_key = self.db.query(ApiKey).filter(ApiKey.id == key_id).first()
        if api_key is None:
            return None

        changed = []
        if "name" in updates and updates["name"] is not None:
            api_key.name = _require_text(updates["name"], "name")
            changed.append("name")
        if "service" in updates and updates["service"] is not None:
            api_key.service = _require_text(updates["service"], "service")
            changed.append("service")
        if "is_active" in updates and updates["is_active"] is not None:
            api_key.is_active = bool(updates["is_active"])
            changed.append("is_active")
        if "expires_at" in updates:
            api_key.expires_at = as_naive_utc(updates["expires_at"])
            changed.append("expires_at")

        api_key.updated_at = utcnow()
        self._log(
            ActivityAction.UPDATED,
            api_key,
            updated_by,
            f"API key metadata updated ({', '.join(changed) or 'no fields'})",
        )
        self._commit()

        logger.info(f"Updated API key: id={key_id}")
        return api_key

    def rotate(self, key_id: str, updated_by: str) -> Optional[Tuple[ApiKey, str]]:
        """
        Replace a key's value while keeping its ID.

        Returns:
            Tuple of (record, new raw key), or None if the ID is unknown. The
            previous raw key stops verifying as soon as this commits.
        """
        api_key = self.db.query(ApiKey).filter(ApiKey.id == key_id).first()
        if api_key is None:
            return None

        raw_key, key_hash, encrypted_key = self._new_key_material()
        api_key.key_hash = key_hash
        api_key.encrypted_key = encrypted_key
        api_key.updated_at = utcnow()
        self._log(ActivityAction.UPDATED, api_key, updated_by, "API key rotated (value changed)")
        self._commit()

        logger.info(f"Rotated API key: id={key_id}")
        return api_key, raw_key

    def delete(self, key_id: str, deleted_by: str) -> bool:
        """
        Revoke an API key (logical delete).

        Deleting a key that is already inactive succeeds again and is logged again.

        Returns:
            True if the key exists, False if the ID is unknown
        """
        api_key = self.db.query(ApiKey).filter(ApiKey.id == key_id).first()
        if api_key is None:
            return False

        if api_key.is_active:
            api_key.is_active = False
            api_key.updated_at = utcnow()
            details = "API key deactivated"
        else:
            details = "API key deactivated (already inactive)"

        self._log(ActivityAction.DELETED, api_key, deleted_by, details)
        self._commit()

        logger.info(f"Deleted (deactivated) API key: id={key_id}")
        return True

    def verify(self, raw_key: str, service: Optional[str] = None) -> Optional[ApiKey]:
        """
        Verify a raw API key by digest. The encrypted copy is never decrypted here.

        Args:
            raw_key: Key presented by a caller
            service: If given, the key must belong to this service

        Returns:
            The matching active, unexpired record, or None
        """
        if not raw_key:
            return None

        key_hash = hash_value(raw_key)
        api_key = (
            self.db.query(ApiKey)
            .filter(ApiKey.key_hash == key_hash, ApiKey.is_active.is_(True))
            .first()
        )
        if api_key is None or not digests_match(api_key.key_hash, key_hash):
            return None
        if service and api_key.service != service:
            return None
        now = utcnow()
        if api_key.expires_at is not None and api_key.expires_at <= now:
            logger.info(f"Rejected expired API key: id={api_key.id}")
            return None

        api_key.last_used = now
        self._log(ActivityAction.USED, api_key, SYSTEM_ACTOR, "API key was used for authentication")
        self._commit()
        return api_key

    def list_all(self, viewed_by: str) -> List[ApiKey]:
        """Return all active keys and write a single bulk 'viewed' entry."""
        log_api_key_action(
            self.db,
            action=ActivityAction.VIEWED,
            api_key_id=BULK_SUBJECT,
            api_key_name=BULK_SUBJECT,
            service=BULK_SUBJECT,
            performed_by=viewed_by,
            details="All API keys viewed",
            meta=self.meta,
        )
        self._commit()
        return (
            self.db.query(ApiKey)
            .filter(ApiKey.is_active.is_(True))
            .order_by(ApiKey.created_at.desc())
            .all()
        )

    def get_by_id(self, key_id: str, viewed_by: str) -> Optional[ApiKey]:
        """Return an active key's metadata, logging the view."""
        api_key = (
            self.db.query(ApiKey)
            .filter(ApiKey.id == key_id, ApiKey.is_active.is_(True))
            .first()
        )
        if api_key is None:
            return None
        self._log(ActivityAction.VIEWED, api_key, viewed_by, "API key metadata viewed")
        self._commit()
        return api_key

    def get_decrypted(self, key_id: str, requested_by: str) -> Optional[str]:
        """
        Recover the raw value of an active key from its encrypted copy.

        Administrative recovery only; the access is logged as sensitive before
        the value is decrypted.

        Returns:
            Raw key, or None if the ID is unknown/inactive or the copy cannot be decrypted
        """
        api_key = (
            self.db.query(ApiKey)
            .filter(ApiKey.id == key_id, ApiKey.is_active.is_(True))
            .first()
        )
        if api_key is None:
            return None

        self._log(
            ActivityAction.VIEWED,
            api_key,
            requested_by,
            "API key value was decrypted and viewed - SENSITIVE OPERATION",
        )
        self._commit()
        logger.warning(f"API key {key_id} value decrypted by '{requested_by}'")

        try:
            return self.codec.decrypt(api_key.encrypted_key)
        except DecryptionError:
            logger.error(f"Failed to decrypt API key {key_id}", exc_info=True)
            return None

    def get_logs(
        self,
        api_key_id: Optional[str] = None,
        service: Optional[str] = None,
        action: Optional[str] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[ApiKeyLog]:
        """Return audit rows matching the filters, newest first."""
        query = self.db.query(ApiKeyLog)
        if api_key_id:
            query = query.filter(ApiKeyLog.api_key_id == api_key_id)
        if service:
            query = query.filter(ApiKeyLog.service == service)
        if action:
            query = query.filter(ApiKeyLog.action == action)
        if date_from:
            query = query.filter(ApiKeyLog.timestamp >= as_naive_utc(date_from))
        if date_to:
            query = query.filter(ApiKeyLog.timestamp <= as_naive_utc(date_to))
        query = query.order_by(ApiKeyLog.timestamp.desc())
        if limit:
            query = query.limit(limit)
        return query.all()
