"""
Tests for Turnstile site key management, the configuration cookie and key resolution.
"""
import pytest
from fastapi import status

from conftest import login
from portfolio_guard.core.config import TURNSTILE_TEST_SITE_KEY, settings
from portfolio_guard.core.errors import ValidationError
from portfolio_guard.models.turnstile import TurnstileLog, TurnstileSiteKey
from portfolio_guard.services.activity_service import ActivityAction
from portfolio_guard.services.config_service import MASKED_SECRET, TurnstileConfigStore, resolve_turnstile_keys
from portfolio_guard.services.turnstile_service import TurnstileService, ensure_test_site_key

BASE = "/api/admin/turnstile"


@pytest.fixture
def service(db_session):
    return TurnstileService(db_session)


def _create(service, name="Main", environment="production", domain="example.com", site_key="site-1", secret="secret-1"):
    return service.create_site_key(
        name=name,
        environment=environment,
        site_key=site_key,
        secret_key=secret,
        domain=domain,
        created_by="admin",
    )


def test_secret_is_stored_encrypted(service, db_session):
    record = _create(service)
    stored = db_session.query(TurnstileSiteKey).filter(TurnstileSiteKey.id == record.id).one()
    assert stored.secret_key != "secret-1"
    assert service.get_decrypted_secret(record.id, requested_by="admin") == "secret-1"


def test_site_key_lifecycle_is_logged(service, db_session):
    record = _create(service)
    service.update_site_key(record.id, {"secret_key": "secret-2", "domain": "example.org"}, updated_by="admin")
    service.get_site_key(record.id, viewed_by="manager")
    service.get_decrypted_secret(record.id, requested_by="admin")
    service.delete_site_key(record.id, deleted_by="admin")
    service.delete_site_key(record.id, deleted_by="admin")

    actions = [
        log.action
        for log in db_session.query(TurnstileLog).filter(TurnstileLog.site_key_id == record.id).all()
    ]
    assert sorted(actions) == sorted(
        [
            ActivityAction.CREATED,
            ActivityAction.UPDATED,
            ActivityAction.VIEWED,
            ActivityAction.VIEWED,
            ActivityAction.DELETED,
            ActivityAction.DELETED,
        ]
    )
    assert service.get_site_key(record.id, viewed_by="admin") is None
    assert service.get_decrypted_secret(record.id, requested_by="admin") is None


def test_update_re_encrypts_secret(service):
    record = _create(service)
    service.update_site_key(record.id, {"secret_key": "rotated-secret"}, updated_by="admin")
    assert service.get_decrypted_secret(record.id, requested_by="admin") == "rotated-secret"


def test_create_validation(service):
    with pytest.raises(ValidationError) as exc_info:
        _create(service, environment="qa")
    assert "environment" in exc_info.value.errors

    with pytest.raises(ValidationError):
        _create(service, domain=" ")


def test_unknown_site_key(service):
    assert service.update_site_key("missing", {"name": "x"}, updated_by="admin") is None
    assert service.delete_site_key("missing", deleted_by="admin") is False


def test_list_site_keys_writes_one_bulk_entry(service, db_session):
    _create(service, name="A")
    _create(service, name="B", environment="staging")

    keys = service.list_site_keys(viewed_by="manager")

    assert {k.name for k in keys} == {"A", "B"}
    bulk = db_session.query(TurnstileLog).filter(TurnstileLog.site_key_id == "all").all()
    assert len(bulk) == 1


def test_active_site_key_preference(service, db_session):
    _create(service, name="Any", environment="staging", domain="staging.example.com", site_key="staging-site")
    _create(service, name="Env", environment="production", domain="other.example.com", site_key="env-site")
    exact = _create(service, name="Exact", environment="production", domain="example.com", site_key="exact-site")

    assert service.get_active_site_key("production", "example.com") == ("exact-site", "secret-1")

    service.delete_site_key(exact.id, deleted_by="admin")
    assert service.get_active_site_key("production", "example.com")[0] == "env-site"
    assert service.get_active_site_key("development", "localhost")[0] == "staging-site"

    used = db_session.query(TurnstileLog).filter(TurnstileLog.action == ActivityAction.USED).all()
    assert len(used) == 3
    assert {log.performed_by for log in used} == {"system"}


def test_no_active_site_key(service):
    assert service.get_active_site_key("production", "example.com") is None


def test_ensure_test_site_key_seeds_once(db_session):
    seeded = ensure_test_site_key(db_session)
    assert seeded is not None
    assert seeded.site_key == TURNSTILE_TEST_SITE_KEY
    assert ensure_test_site_key(db_session) is None
    assert db_session.query(TurnstileSiteKey).count() == 1


def test_config_store_masked_secret_keeps_existing():
    store = TurnstileConfigStore()
    first = store.build("site-a", "secret-a")
    second = store.build("site-b", MASKED_SECRET, current_value=first)

    config = store.load(second)
    assert config["siteKey"] == "site-b"
    assert config["secretKey"] == "secret-a"
    assert config["updatedAt"].endswith("Z")

    assert store.public_view(second) == {
        "siteKey": "site-b",
        "secretKey": True,
        "updatedAt": config["updatedAt"],
    }


def test_config_store_requires_both_keys():
    store = TurnstileConfigStore()
    with pytest.raises(ValidationError) as exc_info:
        store.build("", "secret")
    assert "siteKey" in exc_info.value.errors

    with pytest.raises(ValidationError) as exc_info:
        store.build("site", MASKED_SECRET, current_value=None)
    assert "secretKey" in exc_info.value.errors


def test_config_store_ignores_garbage():
    store = TurnstileConfigStore()
    assert store.load("not-encrypted") is None
    assert store.public_view(None) == {"siteKey": "", "secretKey": False, "updatedAt": None}


def test_resolve_keys_order(service, db_session):
    keys = resolve_turnstile_keys(db_session)
    assert keys.source == "settings"
    assert keys.secret_key == settings.TURNSTILE_SECRET_KEY

    _create(service, environment=settings.turnstile_environment, domain=settings.TURNSTILE_DOMAIN)
    keys = resolve_turnstile_keys(db_session)
    assert (keys.source, keys.site_key, keys.secret_key) == ("site_key", "site-1", "secret-1")

    cookie = TurnstileConfigStore().build("cookie-site", "cookie-secret")
    keys = resolve_turnstile_keys(db_session, cookie)
    assert (keys.source, keys.site_key, keys.secret_key) == ("cookie", "cookie-site", "cookie-secret")


# Endpoints


def test_site_key_endpoints(admin_client):
    created = admin_client.post(
        f"{BASE}/site-keys",
        data={
            "name": "Main",
            "environment": "production",
            "siteKey": "site-1",
            "secretKey": "secret-1",
            "domain": "example.com",
        },
    )
    assert created.status_code == status.HTTP_201_CREATED
    site_key = created.json()["siteKey"]
    assert site_key["siteKey"] == "site-1"
    assert "secretKey" not in site_key
    assert "secret-1" not in created.text

    listing = admin_client.get(f"{BASE}/site-keys")
    assert listing.json()["total"] == 1
    assert "secret-1" not in listing.text

    assert admin_client.get(f"{BASE}/site-keys/{site_key['id']}").status_code == status.HTTP_200_OK

    updated = admin_client.post(f"{BASE}/site-keys/update", data={"id": site_key["id"], "domain": "example.org"})
    assert updated.json()["siteKey"]["domain"] == "example.org"

    revealed = admin_client.post(f"{BASE}/site-keys/reveal", data={"id": site_key["id"]})
    assert revealed.json() == {"success": True, "secretKey": "secret-1"}

    deleted = admin_client.post(f"{BASE}/site-keys/delete", data={"id": site_key["id"]})
    assert deleted.status_code == status.HTTP_200_OK
    assert admin_client.get(f"{BASE}/site-keys/{site_key['id']}").status_code == status.HTTP_404_NOT_FOUND

    logs = admin_client.get(f"{BASE}/logs", params={"siteKeyId": site_key["id"]})
    assert logs.status_code == status.HTTP_200_OK
    assert {entry["action"] for entry in logs.json()["logs"]} >= {"created", "updated", "viewed", "deleted"}


def test_site_key_validation_errors(admin_client):
    response = admin_client.post(
        f"{BASE}/site-keys",
        data={"name": "Main", "environment": "qa", "siteKey": "s", "secretKey": "k", "domain": "example.com"},
    )
    assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
    assert "environment" in response.json()["errors"]


def test_manager_reads_but_cannot_reveal(client, admin_user, manager_user, db_session):
    record = _create(TurnstileService(db_session))
    login(client, "manager")

    assert client.get(f"{BASE}/site-keys").status_code == status.HTTP_200_OK
    assert client.get(f"{BASE}/analytics").status_code == status.HTTP_200_OK
    assert client.post(f"{BASE}/site-keys/reveal", data={"id": record.id}).status_code == status.HTTP_403_FORBIDDEN


def test_analytics_endpoint(admin_client, db_session):
    from datetime import date

    service = TurnstileService(db_session)
    service.record_verification(True, day=date(2026, 2, 1))
    service.record_verification(False, day=date(2026, 2, 1))
    service.record_verification(True, day=date(2026, 2, 2))

    response = admin_client.get(f"{BASE}/analytics", params={"from": "2026-02-01", "to": "2026-02-28"})

    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert [day["date"] for day in data["analytics"]] == ["2026-02-02", "2026-02-01"]
    assert data["analytics"][1]["successRate"] == 50.0
    assert (data["totalVerifications"], data["successfulVerifications"], data["failedVerifications"]) == (3, 2, 1)

    bad = admin_client.get(f"{BASE}/analytics", params={"from": "February"})
    assert bad.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY


def test_config_cookie_endpoints(admin_client):
    empty = admin_client.get("/api/admin/turnstile/config")
    assert empty.json()["siteKey"] == ""
    assert empty.json()["secretKey"] is False

    saved = admin_client.post("/api/admin/turnstile/config", data={"siteKey": "cookie-site", "secretKey": "cookie-secret"})
    assert saved.status_code == status.HTTP_200_OK
    assert settings.CONFIG_COOKIE_NAME in saved.headers["set-cookie"]
    assert "cookie-secret" not in saved.headers["set-cookie"]

    view = admin_client.get("/api/admin/turnstile/config").json()
    assert view["siteKey"] == "cookie-site"
    assert view["secretKey"] is True
    assert "cookie-secret" not in str(view)

    masked = admin_client.post("/api/admin/turnstile/config", data={"siteKey": "cookie-site-2", "secretKey": MASKED_SECRET})
    assert masked.status_code == status.HTTP_200_OK

    public = admin_client.get("/api/turnstile/site-key")
    assert public.json() == {"siteKey": "cookie-site-2"}


def test_config_cookie_requires_secret(admin_client):
    response = admin_client.post("/api/admin/turnstile/config", data={"siteKey": "cookie-site"})
    assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
    assert "secretKey" in response.json()["errors"]


def test_env_status_never_returns_values(admin_client):
    response = admin_client.get("/api/admin/env-status")
    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert set(data) == {"hasSiteKey", "hasSecretKey"}
    assert isinstance(data["hasSiteKey"], bool)
    assert settings.TURNSTILE_SECRET_KEY not in response.text


def test_env_status_is_admin_only(manager_client):
    assert manager_client.get("/api/admin/env-status").status_code == status.HTTP_403_FORBIDDEN


def test_public_site_key_falls_back_to_settings(client):
    response = client.get("/api/turnstile/site-key")
    assert response.status_code == status.HTTP_200_OK
    assert response.json() == {"siteKey": settings.TURNSTILE_SITE_KEY}
