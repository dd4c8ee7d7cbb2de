import logging
from typing import Optional

import httpx

from settings import settings

logger = logging.getLogger(__name__)

HCAPTCHA_VERIFY_URL = "https://api.hcaptcha.com/siteverify"


class CaptchaError(Exception):
    pass


def captcha_enabled() -> bool:
    return bool(settings.hcaptcha_secret_key)


async def verify_token(token: str, client: Optional[httpx.AsyncClient] = None) -> bool:
    """Ask hCaptcha whether `token` is a valid solve. Raises CaptchaError if the provider is unreachable."""
    form = {"secret": settings.hcaptcha_secret_key, "response": token}
    owns_client = client is None
    if owns_client:
        client = httpx.AsyncClient(timeout=httpx.Timeout(10.0, connect=5.0))
    try:
        r = await client.post(HCAPTCHA_VERIFY_URL, data=form)
        r.raise_for_status()
        result = r.json()
    except (httpx.HTTPError, ValueError) as e:
        raise CaptchaError(f"hCaptcha verification unavailable: {e}") from e
    finally:
        if owns_client:
            await client.aclose()
    if not result.get("success"):
        logger.info("hCaptcha rejected token: %s", result.get("error-codes"))
        return False
    return True
