import logging
from typing import Optional

from fastapi import Request

from .config import TENANT_HEADER

logger = logging.getLogger(__name__)


def get_tenant_id(request: Request) -> Optional[str]:
    """
    Tenant context forwarded by the upstream session layer.

    Returns None when absent; services reject the request before touching
    storage.
    """
    tenant_id = request.headers.get(TENANT_HEADER)
    if tenant_id:
        return tenant_id.strip() or None

    logger.debug(f"No {TENANT_HEADER} header on {request.url.path}")
    return None
