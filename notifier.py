# notifier.py
# "Your transformation is ready" email via Resend.
# Delivery is best effort: nothing here raises into the job pipeline.
import logging
import os
from typing import Optional

import httpx
from jinja2 import Environment, FileSystemLoader, select_autoescape

from settings import settings

logger = logging.getLogger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"
SUBJECT = "🔥 Your K-Pop Demon Hunter Transformation is Ready!"

TEMPLATES_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "templates")
_env = Environment(loader=FileSystemLoader(TEMPLATES_DIR), autoescape=select_autoescape(["html"]))


def view_url(short_id: str) -> str:
    return f"{settings.site_url.rstrip('/')}/view/{short_id}"


def render_email(name: Optional[str], short_id: str) -> str:
    return _env.get_template("email.html").render(name=name or "Friend", view_url=view_url(short_id))


async def send_notification(email: str, name: Optional[str], short_id: str,
                            client: Optional[httpx.AsyncClient] = None) -> bool:
    """Send the result link to `email`. Returns True when Resend accepted the message."""
    if not settings.resend_api_key:
        logger.warning("RESEND_API_KEY not set; skipping notification for %s", short_id)
        return False

    payload = {
        "from": settings.email_from,
        "to": [email],
        "subject": SUBJECT,
        "html": render_email(name, short_id),
    }
    headers = {"Authorization": f"Bearer {settings.resend_api_key}"}
    owns_client = client is None
    if owns_client:
        client = httpx.AsyncClient(timeout=httpx.Timeout(15.0, connect=5.0))
    try:
        r = await client.post(RESEND_API_URL, json=payload, headers=headers)
    except httpx.HTTPError:
        logger.exception("Error sending email for %s", short_id)
        return False
    finally:
        if owns_client:
            await client.aclose()

    if r.status_code >= 300:
        logger.error("Resend API error (%s): %s", r.status_code, r.text)
        return False
    logger.info("Email sent for %s", short_id)
    return True
