"""
Tests for bearer token verification.
"""
import pytest

from medretrieval.auth import IdentityVerifier, extract_bearer
from medretrieval.exceptions import AuthorizationError


class TestExtractBearer:
    def test_extracts_token(self):
        assert extract_bearer("Bearer abc.def.ghi") == "abc.def.ghi"
        assert extract_bearer("bearer   abc") == "abc"

    @pytest.mark.parametrize("header", [None, "", "Basic dXNlcjpwYXNz", "Bearer"])
    def test_missing_or_malformed(self, header):
        with pytest.raises(AuthorizationError, match="Missing Authorization Bearer token"):
            extract_bearer(header)


class TestIdentityVerifier:
    def test_user_id_claim_is_tenant(self, verifier, make_token):
        identity = verifier.verify(make_token("doctor-42", email="doc@example.org"))
        assert identity.tenant_id == "doctor-42"
        assert identity.email == "doc@example.org"

    def test_sub_claim_fallback(self, verifier, make_token):
        assert verifier.verify(make_token(None, sub="doctor-7")).tenant_id == "doctor-7"

    def test_no_tenant_claim(self, verifier, make_token):
        with pytest.raises(AuthorizationError, match="no tenant id"):
            verifier.verify(make_token(None))

    def test_wrong_signature(self, verifier, make_token):
        token = make_token(secret="another-secret-that-is-long-enough-0123")
        with pytest.raises(AuthorizationError, match="Invalid token"):
            verifier.verify(token)

    def test_expired(self, verifier, make_token):
        with pytest.raises(AuthorizationError, match="Token expired"):
            verifier.verify(make_token(expires_in=-10))

    def test_empty_token(self, verifier):
        with pytest.raises(AuthorizationError, match="Missing bearer token"):
            verifier.verify("")

    def test_unconfigured_verifier_rejects(self, make_token):
        unconfigured = IdentityVerifier(secret="", jwks_url="")
        with pytest.raises(AuthorizationError, match="not configured"):
            unconfigured.verify(make_token())

    def test_audience_checked_when_configured(self, verifier, make_token):
        strict = IdentityVerifier(secret=verifier.secret, algorithm="HS256", jwks_url="", audience="medretrieval")
        with pytest.raises(AuthorizationError):
            strict.verify(make_token(aud="someone-else"))
        assert strict.verify(make_token(aud="medretrieval")).tenant_id == "doctor-42"
