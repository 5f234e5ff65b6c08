from __future__ import annotations

import logging
from typing import Optional

from .errors import AuthenticationError
from .repository import MerchantRecord, MerchantRepository

logger = logging.getLogger("gateway-service")


def authenticate(
    repository: MerchantRepository,
    api_key: Optional[str],
    api_secret: Optional[str],
) -> MerchantRecord:
    """Resolve an API key/secret pair to its merchant.

    Every failure cause raises the same ``AuthenticationError`` so callers
    cannot tell an unknown key from a wrong secret or a storage problem.
    """
    if not api_key or not api_secret:
        logger.warning("Rejected request without API credentials")
        raise AuthenticationError()

    try:
        merchant = repository.find_by_credentials(api_key, api_secret)
    except Exception:
        logger.exception("Merchant lookup failed")
        raise AuthenticationError() from None

    if merchant is None or not merchant.is_active:
        logger.warning("Rejected request with invalid API credentials key=%s", api_key)
        raise AuthenticationError()
    return merchant
