# client.py
# Python client for the relay + a small operator CLI:
#   kpopdemonz transform a.jpg b.jpg --name Example   (submit and wait)
#   kpopdemonz cleanup                                (wipe everything; asks first)
import argparse
import mimetypes
import os
import sys
import time
from typing import Any, Callable, Dict, Optional

import httpx
from dotenv import load_dotenv

DEFAULT_API_URL = "http://localhost:8000"
MAX_ATTEMPTS = 60
POLL_INTERVAL = 2.0


class TransformError(Exception):
    pass


class TransformTimeout(TransformError):
    pass


def _error_message(resp: httpx.Response, fallback: str) -> str:
    try:
        return resp.json().get("error") or fallback
    except ValueError:
        return resp.text or fallback


class TransformClient:
    def __init__(self, base_url: str = DEFAULT_API_URL, *, admin_key: Optional[str] = None,
                 http: Optional[httpx.Client] = None, sleep: Callable[[float], None] = time.sleep):
        self.http = http or httpx.Client(base_url=base_url.rstrip("/"), timeout=60.0)
        self.admin_key = admin_key
        self._sleep = sleep

    def submit(self, image: bytes, filename: str = "image.jpg", content_type: Optional[str] = None,
               email: Optional[str] = None, name: Optional[str] = None,
               captcha_token: Optional[str] = None) -> Dict[str, Any]:
        content_type = content_type or mimetypes.guess_type(filename)[0] or "image/jpeg"
        form = {k: v for k, v in {"email": email, "name": name, "captchaToken": captcha_token}.items() if v}
        r = self.http.post("/transform", files={"image": (filename, image, content_type)}, data=form)
        if r.status_code >= 300:
            raise TransformError(_error_message(r, "Failed to submit transformation"))
        return r.json()

    def check_status(self, prediction_id: str) -> Dict[str, Any]:
        r = self.http.get(f"/status/{prediction_id}")
        if r.status_code >= 300:
            raise TransformError(_error_message(r, "Failed to check status"))
        return r.json()

    def poll_for_completion(self, prediction_id: str,
                            on_progress: Optional[Callable[[Dict[str, Any]], None]] = None,
                            max_attempts: int = MAX_ATTEMPTS,
                            interval: float = POLL_INTERVAL) -> Dict[str, Any]:
        """Poll /status until succeeded; raise on failed or after `max_attempts` polls."""
        for _ in range(max_attempts):
            status = self.check_status(prediction_id)
            if on_progress:
                on_progress(status)
            if status.get("status") == "succeeded":
                return status
            if status.get("status") == "failed":
                raise TransformError(status.get("error") or "Transformation failed")
            self._sleep(interval)
        raise TransformTimeout("Transformation timed out. Please try again.")

    def transform_image(self, image: bytes, filename: str = "image.jpg", **kwargs) -> Dict[str, str]:
        on_progress = kwargs.pop("on_progress", None)
        submitted = self.submit(image, filename, **kwargs)
        result = self.poll_for_completion(submitted["predictionId"], on_progress=on_progress)
        if not result.get("imageUrl"):
            raise TransformError("No image URL in response")
        return {"imageUrl": result["imageUrl"], "predictionId": submitted["predictionId"]}

    def cleanup(self) -> Dict[str, Any]:
        headers = {"X-Admin-Key": self.admin_key} if self.admin_key else {}
        r = self.http.post("/admin/cleanup", headers=headers)
        if r.status_code >= 300:
            raise TransformError(f"HTTP {r.status_code}: {r.text}")
        return r.json()


# ---------- CLI ----------
def _cmd_transform(client: TransformClient, args) -> int:
    failures = 0
    for path in args.images:
        print(f"Transforming: {os.path.basename(path)}")
        with open(path, "rb") as f:
            data = f.read()
        try:
            result = client.transform_image(
                data,
                os.path.basename(path),
                email=args.email,
                name=args.name,
                on_progress=lambda s: print(f"  status: {s.get('status')}"),
            )
        except TransformError as e:
            failures += 1
            print(f"  failed: {e}", file=sys.stderr)
            continue
        print(f"  done: {result['imageUrl']}")
    return 1 if failures else 0


def _cmd_cleanup(client: TransformClient, args) -> int:
    print("WARNING: This will DELETE ALL user data!")
    print("   - All R2 images (originals and transformed)")
    print("   - All KV entries")
    print("   - All database records (transformations and users)")
    if not args.yes and input("Type 'DELETE ALL' to confirm: ") != "DELETE ALL":
        print("Cancelled.")
        return 0
    try:
        data = client.cleanup()
    except (TransformError, httpx.HTTPError) as e:
        print(f"Error during cleanup: {e}", file=sys.stderr)
        return 1
    stats = data.get("stats", {})
    print("Cleanup complete!")
    print(f"  R2 Originals:       {stats.get('r2_originals', 0)}")
    print(f"  R2 Transformed:     {stats.get('r2_transformed', 0)}")
    print(f"  KV Keys:            {stats.get('kv_keys', 0)}")
    print(f"  DB Transformations: {stats.get('db_transformations', 0)}")
    print(f"  DB Users:           {stats.get('db_users', 0)}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="kpopdemonz", description="KpopDemonz relay client")
    parser.add_argument("--api-url", default=os.getenv("KPOPDEMONZ_API_URL", DEFAULT_API_URL))
    sub = parser.add_subparsers(dest="command", required=True)

    p_transform = sub.add_parser("transform", help="submit images and wait for results")
    p_transform.add_argument("images", nargs="+")
    p_transform.add_argument("--email")
    p_transform.add_argument("--name", default="Example")
    p_transform.set_defaults(func=_cmd_transform)

    p_cleanup = sub.add_parser("cleanup", help="delete ALL stored data")
    p_cleanup.add_argument("--yes", action="store_true", help="skip the confirmation prompt")
    p_cleanup.set_defaults(func=_cmd_cleanup)
    return parser


def main(argv=None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)
    client = TransformClient(args.api_url, admin_key=os.getenv("ADMIN_API_KEY") or None)
    return args.func(client, args)


if __name__ == "__main__":
    sys.exit(main())
