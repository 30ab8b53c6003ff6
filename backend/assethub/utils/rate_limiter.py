"""Rate limiting utilities using slowapi."""
from slowapi import Limiter
from slowapi.util import get_remote_address

from assethub.config import get_settings

settings = get_settings()


def get_identity_key(request):
    """
    Rate limit per caller when an identity has been resolved,
    otherwise fall back to IP address.
    """
    identity = getattr(request.state, "identity", None)
    if identity is not None:
        return f"user:{identity.user_id}"
    return get_remote_address(request)


# Create limiter instance
limiter = Limiter(key_func=get_identity_key)


def rate_limit_ingest():
    """Rate limit for uploads and imports (they write bytes and run ffmpeg)."""
    return limiter.limit(f"{settings.rate_limit_per_minute}/minute")
