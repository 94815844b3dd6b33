from .authentication import BearerTokenAuthentication, TokenPrincipal
from .tokens import TokenConfigurationError, decode_access_token

__all__ = [
    "BearerTokenAuthentication",
    "TokenPrincipal",
    "TokenConfigurationError",
    "decode_access_token",
]
