import pytest
from jose import jwt

from smartreply.lib.error_handler import AuthError
from smartreply.services.auth import AuthService

from tests.conftest import TEST_TOKEN, TEST_USER_ID


def signed_token(secret='jwt-secret', sub='jwt-user', audience='authenticated'):
    return jwt.encode({'sub': sub, 'aud': audience, 'role': 'authenticated'}, secret, algorithm='HS256')


@pytest.fixture
def auth(fake_supabase, settings):
    return AuthService(fake_supabase, settings)


class TestAuthenticate:
    def test_missing_header(self, auth):
        with pytest.raises(AuthError, match="No authorization header"):
            auth.authenticate(None)

    @pytest.mark.parametrize('header', ['Basic abc', 'Bearer', 'Bearer   ', TEST_TOKEN])
    def test_malformed_header(self, auth, header):
        with pytest.raises(AuthError, match="Bearer"):
            auth.authenticate(header)

    def test_supabase_user(self, auth):
        assert auth.authenticate(f"Bearer {TEST_TOKEN}") == TEST_USER_ID

    def test_scheme_is_case_insensitive(self, auth):
        assert auth.authenticate(f"bearer {TEST_TOKEN}") == TEST_USER_ID

    def test_falls_back_to_signed_token(self, auth):
        assert auth.authenticate(f"Bearer {signed_token()}") == 'jwt-user'

    def test_rejects_wrong_signature(self, auth):
        with pytest.raises(AuthError, match="User not authenticated"):
            auth.authenticate(f"Bearer {signed_token(secret='other-secret')}")

    def test_rejects_wrong_audience(self, auth):
        with pytest.raises(AuthError):
            auth.authenticate(f"Bearer {signed_token(audience='anon-app')}")

    def test_rejects_garbage_without_secret(self, fake_supabase, settings):
        auth = AuthService(fake_supabase, settings.model_copy(update={'supabase_jwt_secret': ''}))
        with pytest.raises(AuthError, match="User not authenticated"):
            auth.authenticate(f"Bearer {signed_token()}")


class TestResolveOwner:
    def test_uses_caller_when_authenticated(self, auth):
        assert auth.resolve_owner(f"Bearer {TEST_TOKEN}") == TEST_USER_ID

    def test_uses_configured_owner(self, fake_supabase, settings):
        auth = AuthService(fake_supabase, settings.model_copy(update={'smartreply_owner_user_id': 'owner-1'}))
        assert auth.resolve_owner(None) == 'owner-1'

    def test_no_owner(self, auth):
        with pytest.raises(AuthError, match="SMARTREPLY_OWNER_USER_ID"):
            auth.resolve_owner(None)

    def test_bad_token_is_not_replaced_by_owner(self, fake_supabase, settings):
        auth = AuthService(fake_supabase, settings.model_copy(update={'smartreply_owner_user_id': 'owner-1'}))
        with pytest.raises(AuthError):
            auth.resolve_owner("Bearer forged")
