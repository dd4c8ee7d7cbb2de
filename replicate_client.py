import base64
import logging
from typing import Any, Dict, Optional

import httpx

from settings import settings

logger = logging.getLogger(__name__)

# ---- Replicate predictions API ----
REPLICATE_API_BASE = "https://api.replicate.com/v1"

NUM_STEPS = 20
GUIDANCE_SCALE = 4

STYLE_PROMPT = """Transform this person into an elite K-Pop demon hunter character. They should have:
- Striking, intense eyes with a supernatural glow
- Sleek, stylish hair with vibrant highlights (red, orange, or silver streaks)
- Modern tactical outfit with K-Pop fashion elements (leather, metallic accents, asymmetric designs)
- Dramatic lighting with red and orange tones
- Battle-ready pose and confident expression
- Mystical energy effects or aura around them
- Professional idol-quality photography aesthetic
- Sharp, high-contrast styling
Make them look like they could be on a K-Pop album cover meets supernatural action hero. Keep their facial features recognizable but enhanced to look more fierce and powerful."""


class ReplicateError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


def _headers() -> Dict[str, str]:
    token = settings.replicate_api_token
    if not token:
        raise ReplicateError("REPLICATE_API_TOKEN not set")
    return {
        "Authorization": f"Bearer {token}",
        "Content-Type": "application/json",
    }


def to_data_uri(data: bytes, content_type: Optional[str]) -> str:
    b64 = base64.b64encode(data).decode("ascii")
    return f"data:{content_type or 'image/jpeg'};base64,{b64}"


def webhook_url() -> str:
    return f"{settings.public_base_url.rstrip('/')}/webhook"


def build_prediction_payload(image_data_uri: str) -> Dict[str, Any]:
    return {
        "version": settings.replicate_model_version,
        "input": {
            "prompt": STYLE_PROMPT,
            "main_face_image": image_data_uri,
            "num_steps": NUM_STEPS,
            "guidance_scale": GUIDANCE_SCALE,
            "num_outputs": 1,
        },
        "webhook": webhook_url(),
        # only the terminal callback; no start/output/logs events
        "webhook_events_filter": ["completed"],
    }


async def create_prediction(image: bytes, content_type: Optional[str],
                            client: Optional[httpx.AsyncClient] = None) -> Dict[str, Any]:
    """
    Start an async prediction. Returns Replicate's prediction object
    (we only rely on its "id"); completion arrives via webhook.
    """
    payload = build_prediction_payload(to_data_uri(image, content_type))
    owns_client = client is None
    if owns_client:
        client = httpx.AsyncClient(timeout=httpx.Timeout(30.0, connect=10.0))
    try:
        r = await client.post(f"{REPLICATE_API_BASE}/predictions", json=payload, headers=_headers())
    finally:
        if owns_client:
            await client.aclose()
    if r.status_code >= 300:
        raise ReplicateError(f"create failed: {r.status_code}", status_code=r.status_code, body=r.text)
    data = r.json()
    if not data.get("id"):
        raise ReplicateError("no prediction id in response", status_code=r.status_code, body=r.text)
    return data


async def download_output(url: str, client: Optional[httpx.AsyncClient] = None) -> httpx.Response:
    owns_client = client is None
    if owns_client:
        client = httpx.AsyncClient(follow_redirects=True, timeout=httpx.Timeout(60.0, connect=10.0))
    try:
        resp = await client.get(url)
    finally:
        if owns_client:
            await client.aclose()
    if resp.status_code >= 300:
        raise ReplicateError(f"download failed: {resp.status_code}", status_code=resp.status_code, body=resp.text)
    return resp
