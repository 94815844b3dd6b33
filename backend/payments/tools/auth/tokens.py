from __future__ import annotations

from typing import Any

import jwt
from django.conf import settings
from rest_framework.exceptions import AuthenticationFailed


class TokenConfigurationError(RuntimeError):
    pass


def decode_access_token(token: str) -> dict[str, Any]:
    """Verify a bearer token signed by the identity service and return its claims."""
    secret = str(getattr(settings, "AUTH_TOKEN_SECRET", "") or "")
    if not secret:
        raise TokenConfigurationError("AUTH_TOKEN_SECRET must be configured.")

    algorithm = str(getattr(settings, "AUTH_TOKEN_ALGORITHM", "HS256") or "HS256")
    audience = str(getattr(settings, "AUTH_TOKEN_AUDIENCE", "") or "")
    issuer = str(getattr(settings, "AUTH_TOKEN_ISSUER", "") or "")

    options: dict[str, Any] = {"require": ["sub", "exp"]}
    kwargs: dict[str, Any] = {}
    if audience:
        kwargs["audience"] = audience
    else:
        options["verify_aud"] = False
    if issuer:
        kwargs["issuer"] = issuer

    try:
        claims = jwt.decode(token, secret, algorithms=[algorithm], options=options, **kwargs)
    except jwt.ExpiredSignatureError as exc:
        raise AuthenticationFailed("Token has expired.") from exc
    except jwt.InvalidTokenError as exc:
        raise AuthenticationFailed("Invalid token.") from exc

    if not str(claims.get("sub") or "").strip():
        raise AuthenticationFailed("Token is missing the subject claim.")
    return claims
