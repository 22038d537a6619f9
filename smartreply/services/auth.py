import logging
from typing import Optional

from jose import JWTError, jwt

from smartreply.lib.config import Settings
from smartreply.lib.error_handler import AuthError

logger = logging.getLogger(__name__)


class AuthService:
    def __init__(self, supabase_client, settings: Settings):
        self.supabase = supabase_client
        self.settings = settings

    def authenticate(self, authorization: Optional[str]) -> str:
        """Return the user id behind a verified bearer token"""
        token = _bearer_token(authorization)

        try:
            response = self.supabase.auth.get_user(token)
            user = getattr(response, 'user', None)
            if user is not None and user.id:
                return user.id
            logger.warning("Supabase returned no user for token")
        except Exception as e:
            logger.warning(f"Supabase auth lookup failed: {str(e)}")

        # Supabase tokens are HS256-signed with the project JWT secret
        if not self.settings.supabase_jwt_secret:
            raise AuthError("User not authenticated")

        try:
            claims = jwt.decode(
                token,
                self.settings.supabase_jwt_secret,
                algorithms=['HS256'],
                audience='authenticated'
            )
        except JWTError as e:
            logger.warning(f"Token verification failed: {str(e)}")
            raise AuthError("User not authenticated")

        user_id = claims.get('sub')
        if not user_id:
            raise AuthError("User not authenticated")
        return user_id

    def resolve_owner(self, authorization: Optional[str]) -> str:
        """User for provider webhooks: the caller if authenticated, else the configured owner"""
        if authorization:
            return self.authenticate(authorization)
        if self.settings.smartreply_owner_user_id:
            return self.settings.smartreply_owner_user_id
        raise AuthError("No authorization header and no SMARTREPLY_OWNER_USER_ID configured")


def _bearer_token(authorization: Optional[str]) -> str:
    if not authorization:
        raise AuthError("No authorization header")
    scheme, _, token = authorization.strip().partition(' ')
    if scheme.lower() != 'bearer' or not token.strip():
        raise AuthError("Authorization header must be a Bearer token")
    return token.strip()
