"""
Authentication & tenant context tests.

Tests cover:
  - Password hashing (bcrypt + legacy werkzeug hashes) and password policy
  - JWT access token generation / verification / expiry
  - Tenant context middleware: 401 / 403 paths, role read from the user row
  - Company / user provisioning service and CLI commands
"""

import jwt
import pytest
from werkzeug.security import generate_password_hash

from shopfloor.core.exceptions import ConflictError, ValidationError
from shopfloor.models import db
from shopfloor.models.auth import Company, User
from shopfloor.services import jwt_service, user_service
from shopfloor.utils.crypto import check_password_policy, hash_password, verify_password

STAGES = "/api/v1/production/stages"


# ═══════════════════════════════════════════════════════════════
# PASSWORD HASHING
# ═══════════════════════════════════════════════════════════════

class TestPasswordHashing:

    def test_bcrypt_round_trip(self):
        hashed = hash_password("s3cret-Pass")
        assert hashed.startswith("$2b$")
        assert verify_password("s3cret-Pass", hashed)
        assert not verify_password("wrong", hashed)

    def test_legacy_werkzeug_hash(self):
        legacy = generate_password_hash("old-pass")
        assert verify_password("old-pass", legacy)

    def test_empty_hash_never_matches(self):
        assert not verify_password("anything", None)

    def test_bcrypt_cost_from_config(self):
        assert hash_password("s3cret-Pass").startswith("$2b$04$")

    @pytest.mark.parametrize("password", ["short1", "no-digits-here", ""])
    def test_password_policy_rejects(self, password):
        with pytest.raises(ValidationError):
            check_password_policy(password)

    def test_password_policy_accepts(self):
        check_password_policy("forge-line-7")


# ═══════════════════════════════════════════════════════════════
# JWT TOKENS
# ═══════════════════════════════════════════════════════════════

class TestJwtTokens:

    def test_claims(self, admin):
        token = jwt_service.generate_access_token(admin.id, admin.tenant_id, admin.role)
        payload = jwt_service.decode_access_token(token)

        assert payload["sub"] == admin.id
        assert payload["tenant_id"] == admin.tenant_id
        assert payload["role"] == "admin"
        assert payload["type"] == "access"
        assert payload["jti"]

    def test_expired_token_raises(self, admin):
        token = jwt_service.generate_access_token(admin.id, admin.tenant_id, admin.role, expires_in=-10)
        with pytest.raises(jwt.ExpiredSignatureError):
            jwt_service.decode_access_token(token)

    def test_wrong_type_rejected(self, app, admin):
        token = jwt.encode(
            {"sub": str(admin.id), "tenant_id": admin.tenant_id, "type": "refresh"},
            app.config["JWT_SECRET_KEY"], algorithm="HS256",
        )
        with pytest.raises(jwt.InvalidTokenError):
            jwt_service.decode_access_token(token)

    def test_token_for_user(self, employee):
        issued = jwt_service.token_for_user(employee, expires_in=60)
        assert issued["token_type"] == "Bearer"
        assert issued["expires_in"] == 60
        assert jwt_service.decode_access_token(issued["access_token"])["sub"] == employee.id


# ═══════════════════════════════════════════════════════════════
# TENANT CONTEXT MIDDLEWARE
# ═══════════════════════════════════════════════════════════════

class TestTenantContext:

    def test_expired_token_401(self, client, admin, auth_headers):
        rv = client.get(STAGES, headers=auth_headers(admin, expires_in=-10))
        assert rv.status_code == 401
        assert rv.get_json()["error"] == "Token expired"

    def test_garbage_token_401(self, client):
        rv = client.get(STAGES, headers={"Authorization": "Bearer not-a-jwt"})
        assert rv.status_code == 401
        assert rv.get_json()["error"] == "Authentication required"

    def test_token_signed_with_other_secret_401(self, client, admin):
        token = jwt.encode(
            {"sub": str(admin.id), "tenant_id": admin.tenant_id, "type": "access"},
            "some-other-secret-that-is-long-enough", algorithm="HS256",
        )
        rv = client.get(STAGES, headers={"Authorization": f"Bearer {token}"})
        assert rv.status_code == 401

    def test_user_outside_token_tenant_401(self, client, admin, other_company):
        token = jwt_service.generate_access_token(admin.id, other_company.id, "admin")
        rv = client.get(STAGES, headers={"Authorization": f"Bearer {token}"})
        assert rv.status_code == 401

    def test_inactive_user_403(self, client, make_user, auth_headers):
        user = make_user("admin", status="inactive")
        rv = client.get(STAGES, headers=auth_headers(user))
        assert rv.status_code == 403

    def test_inactive_company_403(self, client, company, admin, auth_headers):
        company.status = "suspended"
        db.session.commit()
        rv = client.get(STAGES, headers=auth_headers(admin))
        assert rv.status_code == 403
        assert rv.get_json()["code"] == "ERR_TENANT_INACTIVE"

    def test_role_comes_from_user_row(self, client, employee):
        # token claims admin; the stored role (employee) is what counts
        token = jwt_service.generate_access_token(employee.id, employee.tenant_id, "admin")
        rv = client.post(
            STAGES,
            json={"name": "Cut", "order": 1, "estimated_duration_min": 5, "target_quantity": 1},
            headers={"Authorization": f"Bearer {token}"},
        )
        assert rv.status_code == 403


# ═══════════════════════════════════════════════════════════════
# PROVISIONING
# ═══════════════════════════════════════════════════════════════

class TestProvisioning:

    def test_create_company_slug(self):
        company = user_service.create_company("Initech Metal Works")
        assert company.slug == "initech-metal-works"
        assert company.is_active

    def test_duplicate_slug(self):
        user_service.create_company("Initech")
        with pytest.raises(ConflictError):
            user_service.create_company("Initech")

    def test_create_user_hashes_password(self, company):
        user = user_service.create_user(
            company.id, " Jane@Example.COM ", "pw-123456",
            first_name="Jane", last_name="Doe", role="supervisor",
        )
        assert user.email == "jane@example.com"
        assert verify_password("pw-123456", user.password_hash)

    def test_weak_password_rejected(self, company):
        with pytest.raises(ValidationError):
            user_service.create_user(
                company.id, "weak@example.com", "pass",
                first_name="W", last_name="K",
            )
        assert User.query.filter_by(email="weak@example.com").first() is None

    def test_invalid_role(self, company):
        with pytest.raises(ValidationError):
            user_service.create_user(
                company.id, "x@example.com", None,
                first_name="X", last_name="Y", role="foreman",
            )

    def test_same_email_other_tenant_allowed(self, company, other_company):
        user_service.create_user(company.id, "ops@example.com", None, first_name="A", last_name="B")
        user_service.create_user(other_company.id, "ops@example.com", None, first_name="A", last_name="B")
        with pytest.raises(ConflictError):
            user_service.create_user(company.id, "ops@example.com", None, first_name="A", last_name="B")


class TestCli:

    def test_provision_and_issue_token(self, app):
        runner = app.test_cli_runner()

        result = runner.invoke(args=["create-company", "Umbrella Parts", "--slug", "umbrella"])
        assert result.exit_code == 0, result.output

        result = runner.invoke(args=[
            "create-user", "--company", "umbrella", "--email", "boss@umbrella.test",
            "--password", "pw-123456", "--first-name", "Al", "--last-name", "Wesker",
            "--role", "admin",
        ])
        assert result.exit_code == 0, result.output

        result = runner.invoke(args=["issue-token", "--company", "umbrella", "--email", "boss@umbrella.test"])
        assert result.exit_code == 0, result.output
        payload = jwt_service.decode_access_token(result.output.strip().splitlines()[-1])

        company = Company.query.filter_by(slug="umbrella").one()
        user = User.query.filter_by(tenant_id=company.id).one()
        assert payload["sub"] == user.id
        assert payload["tenant_id"] == company.id

    def test_unknown_company(self, app):
        result = app.test_cli_runner().invoke(
            args=["issue-token", "--company", "nope", "--email", "a@b.c"],
        )
        assert result.exit_code != 0
        assert "not found" in result.output
