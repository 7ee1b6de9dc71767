from fastapi import Request

from sentinela.config import settings


def get_client_ip(request: Request) -> str | None:
    """Address recorded on the web session row."""
    if settings.trust_forwarded_for:
        forwarded = (request.headers.get('x-forwarded-for') or '').split(',')[0].strip()
        if forwarded:
            return forwarded
    return request.client.host if request.client else None
