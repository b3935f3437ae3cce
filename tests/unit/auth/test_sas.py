"""Tests for SAS token generation and validation."""

import base64
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs

import pytest

from localblob.auth import (
    SASBadSignatureError,
    SASDecision,
    SASExpiredError,
    SASGenerator,
    SASPermissionDeniedError,
    SASPermissions,
    SASResource,
    SASScope,
    SASValidator,
    SharedKeySigner,
    StoredAccessPolicy,
    parse_sas_token,
)
from localblob.exceptions import InvalidArgumentError

NOW = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def account_key():
    """Generate a test account key."""
    return base64.b64encode(b"test-account-key-12345678901234567890").decode()


@pytest.fixture
def signer(account_key):
    return SharedKeySigner("testaccount", account_key)


@pytest.fixture
def generator(signer):
    return SASGenerator(signer)


@pytest.fixture
def validator(signer):
    return SASValidator(signer)


class TestSASPermissions:
    """Test permission parsing."""

    def test_from_string(self):
        perms = SASPermissions.from_string("rl")
        assert SASPermissions.READ in perms
        assert SASPermissions.LIST in perms
        assert SASPermissions.WRITE not in perms

    def test_canonical_order(self):
        assert SASPermissions.from_string("lwr").to_string() == "rwl"

    def test_unknown_character(self):
        with pytest.raises(ValueError, match="Unknown SAS permission"):
            SASPermissions.from_string("rx")


class TestSASResource:
    """Test resource scoping."""

    def test_canonical_paths(self):
        assert SASResource.account().canonical("acct") == "/blob/acct"
        assert SASResource.for_container("photos").canonical("acct") == "/blob/acct/photos"
        assert SASResource.for_blob("photos", "a/b.jpg").canonical("acct") == "/blob/acct/photos/a/b.jpg"

    def test_blob_scope_needs_blob(self):
        with pytest.raises(ValueError):
            SASResource(SASScope.BLOB, "photos")

    def test_container_scope_covers_its_blobs(self):
        scope = SASResource.for_container("photos")
        assert scope.covers(SASResource.for_blob("photos", "cat.jpg"))
        assert not scope.covers(SASResource.for_blob("videos", "cat.mp4"))

    def test_blob_scope_covers_only_that_blob(self):
        scope = SASResource.for_blob("photos", "cat.jpg")
        assert scope.covers(SASResource.for_blob("photos", "cat.jpg"))
        assert not scope.covers(SASResource.for_blob("photos", "dog.jpg"))
        assert not scope.covers(SASResource.for_container("photos"))


class TestSASGenerator:
    """Test token generation."""

    def test_generate_contains_signed_fields(self, generator):
        token = generator.generate(
            SASResource.for_container("photos"),
            SASPermissions.from_string("rl"),
            expiry=NOW + timedelta(hours=1),
        )
        params = parse_qs(token)

        assert params["sr"] == ["c"]
        assert params["sp"] == ["rl"]
        assert params["se"] == ["2026-01-01T13:00:00Z"]
        assert params["scr"] == ["/blob/testaccount/photos"]
        assert "sig" in params

    def test_generate_requires_expiry(self, generator):
        with pytest.raises(InvalidArgumentError, match="expiry"):
            generator.generate(SASResource.account(), SASPermissions.READ)

    def test_generate_requires_permissions(self, generator):
        with pytest.raises(InvalidArgumentError, match="permissions"):
            generator.generate(SASResource.account(), expiry=NOW)

    def test_field_on_both_token_and_policy(self, generator):
        policy = StoredAccessPolicy(id="readers", permission="r", expiry=NOW + timedelta(days=1))
        with pytest.raises(InvalidArgumentError, match="both"):
            generator.generate(
                SASResource.for_container("photos"),
                SASPermissions.READ,
                policy=policy,
            )

    def test_account_scope_rejects_policy(self, generator):
        policy = StoredAccessPolicy(id="readers", permission="r", expiry=NOW)
        with pytest.raises(InvalidArgumentError):
            generator.generate(SASResource.account(), policy=policy)

    def test_parse_round_trip(self, generator):
        token = generator.generate(
            SASResource.for_blob("photos", "cat.jpg"),
            SASPermissions.READ,
            expiry=NOW + timedelta(minutes=5),
            start=NOW,
        )
        parsed = parse_sas_token("?" + token)

        assert parsed.signed_scope == SASScope.BLOB
        assert parsed.signed_start == "2026-01-01T12:00:00Z"
        assert parsed.signed_identifier is None

    def test_parse_missing_signature(self):
        with pytest.raises(SASBadSignatureError, match="sig"):
            parse_sas_token("sv=2021-08-06&sr=c&scr=/blob/a/c")


class TestSASValidator:
    """Test token evaluation."""

    def _token(self, generator, perms="rwl", resource=None, **kwargs):
        kwargs.setdefault("expiry", NOW + timedelta(hours=1))
        return generator.generate(
            resource or SASResource.for_container("photos"),
            SASPermissions.from_string(perms),
            **kwargs,
        )

    def test_valid_token(self, generator, validator):
        token = self._token(generator)
        decision = validator.evaluate(
            token, SASResource.for_blob("photos", "cat.jpg"), SASPermissions.READ, now=NOW
        )
        assert decision == SASDecision.OK

    def test_expired_at_expiry_instant(self, generator, validator):
        token = self._token(generator)
        decision = validator.evaluate(
            token,
            SASResource.for_container("photos"),
            SASPermissions.READ,
            now=NOW + timedelta(hours=1),
        )
        assert decision == SASDecision.EXPIRED

    def test_not_yet_valid(self, generator, validator):
        token = self._token(generator, start=NOW + timedelta(minutes=10))
        decision = validator.evaluate(
            token, SASResource.for_container("photos"), SASPermissions.READ, now=NOW
        )
        assert decision == SASDecision.NOT_YET_VALID

    def test_missing_permission(self, generator, validator):
        token = self._token(generator, perms="r")
        decision = validator.evaluate(
            token, SASResource.for_container("photos"), SASPermissions.DELETE, now=NOW
        )
        assert decision == SASDecision.PERMISSION_DENIED

    def test_resource_outside_scope(self, generator, validator):
        token = self._token(generator)
        decision = validator.evaluate(
            token, SASResource.for_container("videos"), SASPermissions.READ, now=NOW
        )
        assert decision == SASDecision.PERMISSION_DENIED

    def test_no_permission_is_never_granted(self, generator, validator):
        token = self._token(generator, perms="rcwdl", resource=SASResource.account())
        decision = validator.evaluate(
            token, SASResource.for_container("photos"), SASPermissions.NONE, now=NOW
        )
        assert decision == SASDecision.PERMISSION_DENIED

    def test_tampered_permissions(self, generator, validator):
        token = self._token(generator, perms="r").replace("sp=r", "sp=rwd")
        decision = validator.evaluate(
            token, SASResource.for_container("photos"), SASPermissions.DELETE, now=NOW
        )
        assert decision == SASDecision.BAD_SIGNATURE

    def test_other_account_key(self, generator):
        token = self._token(generator)
        other = SASValidator(
            SharedKeySigner("testaccount", base64.b64encode(b"another-key").decode())
        )
        decision = other.evaluate(
            token, SASResource.for_container("photos"), SASPermissions.READ, now=NOW
        )
        assert decision == SASDecision.BAD_SIGNATURE

    def test_garbage_token(self, validator):
        decision = validator.evaluate(
            "not-a-token", SASResource.account(), SASPermissions.READ, now=NOW
        )
        assert decision == SASDecision.BAD_SIGNATURE

    def test_validate_raises_matching_error(self, generator, validator):
        token = self._token(generator, perms="r")

        with pytest.raises(SASPermissionDeniedError) as exc_info:
            validator.validate(
                token, SASResource.for_container("photos"), SASPermissions.WRITE, now=NOW
            )
        assert exc_info.value.status_code == 403

        with pytest.raises(SASExpiredError):
            validator.validate(
                token,
                SASResource.for_container("photos"),
                SASPermissions.READ,
                now=NOW + timedelta(days=1),
            )


class TestStoredAccessPolicy:
    """Test tokens bound to stored access policies."""

    def test_policy_supplies_fields(self, generator, validator):
        policy = StoredAccessPolicy(id="readers", permission="lr", expiry=NOW + timedelta(days=1))
        assert policy.permission == "rl"
        token = generator.generate(SASResource.for_container("photos"), policy=policy)

        def lookup(container, policy_id):
            assert (container, policy_id) == ("photos", "readers")
            return policy

        decision = validator.evaluate(
            token,
            SASResource.for_container("photos"),
            SASPermissions.LIST,
            now=NOW,
            policy_lookup=lookup,
        )
        assert decision == SASDecision.OK

    def test_removed_policy_revokes_token(self, generator, validator):
        policy = StoredAccessPolicy(id="readers", permission="r", expiry=NOW + timedelta(days=1))
        token = generator.generate(SASResource.for_container("photos"), policy=policy)

        decision = validator.evaluate(
            token,
            SASResource.for_container("photos"),
            SASPermissions.READ,
            now=NOW,
            policy_lookup=lambda container, policy_id: None,
        )
        assert decision == SASDecision.POLICY_REVOKED

    def test_edited_policy_applies_to_issued_tokens(self, generator, validator):
        policy = StoredAccessPolicy(id="readers", permission="r", expiry=NOW + timedelta(days=1))
        token = generator.generate(SASResource.for_container("photos"), policy=policy)
        shortened = StoredAccessPolicy(id="readers", permission="r", expiry=NOW - timedelta(minutes=1))

        decision = validator.evaluate(
            token,
            SASResource.for_container("photos"),
            SASPermissions.READ,
            now=NOW,
            policy_lookup=lambda container, policy_id: shortened,
        )
        assert decision == SASDecision.EXPIRED
