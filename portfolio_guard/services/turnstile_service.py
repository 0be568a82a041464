"""
Turnstile site key management and verification analytics.
"""
import logging
from datetime import date
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from portfolio_guard.core.config import TURNSTILE_TEST_SECRET_KEY, TURNSTILE_TEST_SITE_KEY, settings
from portfolio_guard.core.crypto import PayloadCodec, get_codec, obfuscate_key
from portfolio_guard.core.errors import ConflictError, DecryptionError, ValidationError
from portfolio_guard.models.turnstile import TurnstileAnalytics, TurnstileLog, TurnstileSiteKey
from portfolio_guard.services.activity_service import (
    BULK_SUBJECT,
    SYSTEM_ACTOR,
    ActivityAction,
    RequestMeta,
    log_turnstile_action,
)
from portfolio_guard.utils.datetime import as_naive_utc, utcnow

logger = logging.getLogger(__name__)

ENVIRONMENTS = ("development", "staging", "production")
UPDATABLE_FIELDS = {"name", "environment", "site_key", "secret_key", "domain", "is_active"}
MAX_ANALYTICS_ATTEMPTS = 3


def _validate_environment(environment: str) -> str:
    value = (environment or "").strip().lower()
    if value not in ENVIRONMENTS:
        raise ValidationError(
            f"Unknown environment: {environment}",
            errors={"environment": f"Must be one of: {', '.join(ENVIRONMENTS)}"},
        )
    return value


def _require_text(value: Optional[str], field: str, label: str) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(f"{label} is required", errors={field: f"{label} is required"})
    return str(value).strip()


class TurnstileService:
    """Service for Turnstile site keys, their audit trail and daily analytics."""

    def __init__(self, db: Session, codec: Optional[PayloadCodec] = None, meta: Optional[RequestMeta] = None):
        self.db = db
        self.codec = codec or get_codec()
        self.meta = meta or RequestMeta()

    def _log(self, action: str, site_key_id: str, performed_by: str, details: str, success: bool = True) -> None:
        log_turnstile_action(
            self.db,
            action=action,
            site_key_id=site_key_id,
            performed_by=performed_by,
            details=details,
            success=success,
            meta=self.meta,
        )

    def _commit(self) -> None:
        try:
            self.db.commit()
        except StaleDataError:
            self.db.rollback()
            logger.warning("Concurrent modification of a Turnstile site key detected, change rolled back")
            raise ConflictError()

    def create_site_key(
        self,
        name: str,
        environment: str,
        site_key: str,
        secret_key: str,
        domain: str,
        created_by: str,
    ) -> TurnstileSiteKey:
        """
        Store a new site key pair with its secret encrypted.

        Raises:
            ValidationError: On blank fields or an unknown environment
        """
        now = utcnow()
        record = TurnstileSiteKey(
            name=_require_text(name, "name", "Name"),
            environment=_validate_environment(environment),
            site_key=_require_text(site_key, "siteKey", "Site key"),
            secret_key=self.codec.encrypt(_require_text(secret_key, "secretKey", "Secret key")),
            domain=_require_text(domain, "domain", "Domain"),
            is_active=True,
            created_at=now,
            updated_at=now,
            created_by=created_by,
        )
        self.db.add(record)
        self.db.flush()
        self._log(
            ActivityAction.CREATED,
            record.id,
            created_by,
            f"Turnstile site key created for {record.environment} environment on domain {record.domain}",
        )
        self._commit()

        logger.info(
            f"Created Turnstile site key: id={record.id}, environment={record.environment}, "
            f"site_key={obfuscate_key(record.site_key)}"
        )
        return record

    def update_site_key(self, site_key_id: str, updates: Dict[str, Any], updated_by: str) -> Optional[TurnstileSiteKey]:
        """
        Update a site key. A new secret is re-encrypted before it is stored.

        Returns:
            Updated record, or None if the ID is unknown
        """
        unknown = set(updates) - UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")

        record = self.db.query(TurnstileSiteKey).filter(TurnstileSiteKey.id == site_key_id).first()
        if record is None:
            return None

        if updates.get("name") is not None:
            record.name = _require_text(updates["name"], "name", "Name")
        if updates.get("environment") is not None:
            record.environment = _validate_environment(updates["environment"])
        if updates.get("site_key") is not None:
            record.site_key = _require_text(updates["site_key"], "siteKey", "Site key")
        if updates.get("secret_key"):
            record.secret_key = self.codec.encrypt(updates["secret_key"])
        if updates.get("domain") is not None:
            record.domain = _require_text(updates["domain"], "domain", "Domain")
        if updates.get("is_active") is not None:
            record.is_active = bool(updates["is_active"])

        record.updated_at = utcnow()
        self._log(
            ActivityAction.UPDATED,
            record.id,
            updated_by,
            f"Turnstile site key updated for {record.environment} environment",
        )
        self._commit()

        logger.info(f"Updated Turnstile site key: id={site_key_id}")
        return record

    def delete_site_key(self, site_key_id: str, deleted_by: str) -> bool:
        """Deactivate a site key. Returns False if the ID is unknown."""
        record = self.db.query(TurnstileSiteKey).filter(TurnstileSiteKey.id == site_key_id).first()
        if record is None:
            return False

        details = "Turnstile site key deactivated"
        if record.is_active:
            record.is_active = False
            record.updated_at = utcnow()
        else:
            details += " (already inactive)"

        self._log(ActivityAction.DELETED, record.id, deleted_by, details)
        self._commit()

        logger.info(f"Deleted (deactivated) Turnstile site key: id={site_key_id}")
        return True

    def get_site_key(self, site_key_id: str, viewed_by: str) -> Optional[TurnstileSiteKey]:
        record = (
            self.db.query(TurnstileSiteKey)
            .filter(TurnstileSiteKey.id == site_key_id, TurnstileSiteKey.is_active.is_(True))
            .first()
        )
        if record is None:
            return None
        self._log(ActivityAction.VIEWED, record.id, viewed_by, "Turnstile site key viewed")
        self._commit()
        return record

    def list_site_keys(self, viewed_by: str) -> List[TurnstileSiteKey]:
        """Return all active site keys and write a single bulk 'viewed' entry."""
        self._log(ActivityAction.VIEWED, BULK_SUBJECT, viewed_by, "All Turnstile site keys viewed")
        self._commit()
        return (
            self.db.query(TurnstileSiteKey)
            .filter(TurnstileSiteKey.is_active.is_(True))
            .order_by(TurnstileSiteKey.created_at.desc())
            .all()
        )

    def get_decrypted_secret(self, site_key_id: str, requested_by: str) -> Optional[str]:
        """
        Recover a site key's secret. Logged as a sensitive read before decryption.

        Returns:
            The secret, or None if the key is unknown/inactive or cannot be decrypted
        """
        record = (
            self.db.query(TurnstileSiteKey)
            .filter(TurnstileSiteKey.id == site_key_id, TurnstileSiteKey.is_active.is_(True))
            .first()
        )
        if record is None:
            return None

        self._log(
            ActivityAction.VIEWED,
            record.id,
            requested_by,
            "Turnstile secret key was decrypted and viewed - SENSITIVE OPERATION",
        )
        self._commit()
        logger.warning(f"Turnstile secret for site key {site_key_id} decrypted by '{requested_by}'")

        try:
            return self.codec.decrypt(record.secret_key)
        except DecryptionError:
            logger.error(f"Failed to decrypt Turnstile secret for site key {site_key_id}", exc_info=True)
            return None

    def get_active_site_key(
        self,
        environment: str = "development",
        domain: str = "localhost",
    ) -> Optional[Tuple[str, str]]:
        """
        Pick the key pair to verify with.

        Preference: exact environment and domain, then any domain in the
        environment, then any active key.

        Returns:
            Tuple of (site key, decrypted secret), or None if no usable key exists
        """
        active = (
            self.db.query(TurnstileSiteKey)
            .filter(TurnstileSiteKey.is_active.is_(True))
            .order_by(TurnstileSiteKey.created_at.asc())
        )
        record = (
            active.filter(TurnstileSiteKey.environment == environment, TurnstileSiteKey.domain == domain).first()
            or active.filter(TurnstileSiteKey.environment == environment).first()
            or active.first()
        )
        if record is None:
            return None

        try:
            secret = self.codec.decrypt(record.secret_key)
        except DecryptionError:
            logger.error(f"Failed to decrypt Turnstile secret for site key {record.id}")
            return None

        record.last_used = utcnow()
        self._log(ActivityAction.USED, record.id, SYSTEM_ACTOR, "Turnstile site key was used for verification")
        self._commit()
        return record.site_key, secret

    def get_logs(
        self,
        site_key_id: Optional[str] = None,
        action: Optional[str] = None,
        date_from=None,
        date_to=None,
        limit: Optional[int] = None,
    ) -> List[TurnstileLog]:
        """Return audit rows matching the filters, newest first."""
        query = self.db.query(TurnstileLog)
        if site_key_id:
            query = query.filter(TurnstileLog.site_key_id == site_key_id)
        if action:
            query = query.filter(TurnstileLog.action == action)
        if date_from:
            query = query.filter(TurnstileLog.timestamp >= as_naive_utc(date_from))
        if date_to:
            query = query.filter(TurnstileLog.timestamp <= as_naive_utc(date_to))
        query = query.order_by(TurnstileLog.timestamp.desc())
        if limit:
            query = query.limit(limit)
        return query.all()

    def record_verification(self, success: bool, day: Optional[date] = None) -> None:
        """
        Count one verification attempt in today's analytics bucket.

        The counters are incremented in SQL so concurrent requests never lose
        an update; a missing row is inserted, and a duplicate-insert race falls
        back to the increment.
        """
        day = day or utcnow().date()
        outcome_column = (
            TurnstileAnalytics.successful_verifications if success else TurnstileAnalytics.failed_verifications
        )
        increments = {
            TurnstileAnalytics.total_verifications: TurnstileAnalytics.total_verifications + 1,
            outcome_column: outcome_column + 1,
        }

        for _ in range(MAX_ANALYTICS_ATTEMPTS):
            updated = (
                self.db.query(TurnstileAnalytics)
                .filter(TurnstileAnalytics.date == day)
                .update(increments, synchronize_session=False)
            )
            if updated:
                self.db.commit()
                return

            self.db.add(
                TurnstileAnalytics(
                    date=day,
                    total_verifications=1,
                    successful_verifications=1 if success else 0,
                    failed_verifications=0 if success else 1,
                )
            )
            try:
                self.db.commit()
                return
            except IntegrityError:
                self.db.rollback()
                logger.debug(f"Analytics row for {day} created concurrently, retrying increment")

        logger.error(f"Failed to record Turnstile verification for {day}")

    def get_analytics(self, date_from: Optional[date] = None, date_to: Optional[date] = None) -> List[TurnstileAnalytics]:
        """Return daily buckets in the range, newest first."""
        query = self.db.query(TurnstileAnalytics)
        if date_from:
            query = query.filter(TurnstileAnalytics.date >= date_from)
        if date_to:
            query = query.filter(TurnstileAnalytics.date <= date_to)
        return query.order_by(TurnstileAnalytics.date.desc()).all()


def ensure_test_site_key(db: Session) -> Optional[TurnstileSiteKey]:
    """
    Seed Cloudflare's test key pair for local development when no site keys exist.

    Never seeds in production.
    """
    if settings.is_production:
        return None
    if db.query(TurnstileSiteKey.id).first() is not None:
        return None

    logger.info("No Turnstile site keys found, seeding the test key pair")
    return TurnstileService(db).create_site_key(
        name="Test Key",
        environment="development",
        site_key=TURNSTILE_TEST_SITE_KEY,
        secret_key=TURNSTILE_TEST_SECRET_KEY,
        domain="localhost",
        created_by=SYSTEM_ACTOR,
    )
