# main.py
# ------------------------------------------------------------------------------------
#  FastAPI relay for KpopDemonz:
#  - POST /transform              -> start a Replicate prediction (webhook completes it)
#  - GET  /status/{id}            -> poll the job record (processing|succeeded|failed)
#  - POST /webhook                -> Replicate "completed" callback
#  - GET  /view/{shortId}         -> shareable HTML result page
#  - GET  /api/transformation/{shortId} -> same data as JSON
#  - POST /update-email/{id}      -> attach an email after submission
#  - GET  /recent                 -> public feed (social proof)
#  - GET  /admin/emails, POST /admin/cleanup
#  State:
#    * KV (Redis or in-process) for jobs, short links and the feed, all with TTLs
#    * SQLModel for users + permanent transformation rows
#    * R2 for original uploads and durable copies of results (optional)
# ------------------------------------------------------------------------------------

import logging
import os
import secrets
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import BackgroundTasks, Depends, FastAPI, File, Form, Header, HTTPException, Request, UploadFile
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from fastapi.templating import Jinja2Templates
from pydantic import BaseModel, Field
from sqlmodel import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

import db
import r2_client
from captcha import CaptchaError, captcha_enabled, verify_token
from cleanup import purge_all
from job_store import JobStore, new_short_id
from kv import build_kv
from replicate_client import ReplicateError, create_prediction
from settings import settings
from webhook import build_update, finalize_success, record_failure, terminal_status

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("kpopdemonz")

templates = Jinja2Templates(directory=os.path.join(os.path.dirname(os.path.abspath(__file__)), "templates"))

job_store = JobStore(build_kv())


@asynccontextmanager
async def lifespan(app: FastAPI):
    db.init_db()
    yield


# ------------- FastAPI app --------------
app = FastAPI(title="KpopDemonz API", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins.split(","),
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)


@app.exception_handler(StarletteHTTPException)
async def _http_error(request: Request, exc: StarletteHTTPException):
    body = exc.detail if isinstance(exc.detail, dict) else {"error": exc.detail}
    return JSONResponse(body, status_code=exc.status_code, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def _validation_error(request: Request, exc: RequestValidationError):
    return JSONResponse(
        {"error": "Invalid request body", "details": jsonable_encoder(exc.errors())},
        status_code=400,
    )


# ---------- Dependencies ----------
def get_store() -> JobStore:
    return job_store


def get_engine():
    return db.engine


def require_admin(x_admin_key: Optional[str] = Header(None)) -> None:
    # ADMIN_API_KEY unset leaves admin routes open (local dev)
    if settings.admin_api_key and not secrets.compare_digest(x_admin_key or "", settings.admin_api_key):
        raise HTTPException(status_code=403, detail="Admin key required")


# ---------- Schemas ----------
class TransformResponse(BaseModel):
    success: bool = True
    predictionId: str
    status: str = "processing"
    statusUrl: str


class UpdateEmailRequest(BaseModel):
    email: Optional[str] = Field(None, description="Where to send the result link")
    name: Optional[str] = Field(None, description="Display name used in the email")


class TransformationView(BaseModel):
    imageUrl: str
    userName: str = "Friend"
    shortId: str


# ---------- Health ----------
@app.get("/health")
def health():
    return {"ok": True, "kv": "redis" if settings.redis_url else "memory", "r2": r2_client.r2_enabled()}


@app.get("/")
def index():
    return {"service": "kpopdemonz-api", "public_base": settings.public_base_url}


# ---------- Transform ----------
@app.post("/transform", response_model=TransformResponse)
async def transform(
    image: Optional[UploadFile] = File(None),
    email: Optional[str] = Form(None),
    name: Optional[str] = Form(None),
    captchaToken: Optional[str] = Form(None),
    store: JobStore = Depends(get_store),
    engine=Depends(get_engine),
):
    try:
        data = await image.read() if image is not None else b""
        if not data:
            raise HTTPException(status_code=400, detail="No image provided")

        if captcha_enabled():
            if not captchaToken:
                raise HTTPException(status_code=400, detail="CAPTCHA token is missing")
            try:
                verified = await verify_token(captchaToken)
            except CaptchaError as e:
                logger.error("%s", e)
                raise HTTPException(status_code=500, detail="CAPTCHA verification unavailable")
            if not verified:
                raise HTTPException(status_code=403, detail="CAPTCHA verification failed")

        if not settings.replicate_api_token:
            raise HTTPException(status_code=500, detail={
                "error": "API key not configured",
                "instructions": "Set REPLICATE_API_TOKEN in the environment (or .env)",
            })
        if not settings.public_base_url:
            raise HTTPException(status_code=500, detail={
                "error": "Public base URL not configured",
                "instructions": "Set PUBLIC_BASE_URL to this service's public origin so Replicate can reach /webhook",
            })

        content_type = image.content_type or "image/jpeg"
        try:
            prediction = await create_prediction(data, content_type)
        except ReplicateError as e:
            logger.error("Replicate API error: %s %s", e, e.body)
            raise HTTPException(status_code=500, detail={
                "error": "Failed to start transformation",
                "details": e.body or str(e),
            })

        job_id = prediction["id"]
        short_id = new_short_id()
        email = (email or "").strip() or None
        name = (name or "").strip() or None
        store.create(job_id, short_id=short_id, email=email, name=name)

        # (best effort) keep the upload and the durable rows
        original_key = None
        if r2_client.r2_enabled():
            try:
                original_key = r2_client.original_key(job_id, content_type)
                r2_client.upload_to_key(data, original_key, content_type=content_type)
            except Exception:
                logger.exception("Failed to archive original for %s", job_id)
                original_key = None
        try:
            with Session(engine) as session:
                db.record_transformation(session, job_id, short_id, email=email, name=name,
                                         original_key=original_key)
                if email:
                    db.upsert_user(session, email, name)
        except Exception:
            logger.exception("Failed to persist durable rows for %s", job_id)

        logger.info("Started prediction %s (short %s)", job_id, short_id)
        return TransformResponse(predictionId=job_id, statusUrl=f"/status/{job_id}")
    except HTTPException:
        raise
    except Exception as e:
        logger.exception("Error processing image")
        raise HTTPException(status_code=500, detail={"error": "Internal server error", "message": str(e)})


# ---------- Status ----------
@app.get("/status/{job_id}")
def status(job_id: str, store: JobStore = Depends(get_store)):
    record = store.get(job_id)
    if not record:
        raise HTTPException(status_code=404, detail={
            "error": "Prediction not found",
            "message": "This prediction ID does not exist or has expired",
        })
    return JSONResponse(record)


# ---------- Webhook ----------
@app.post("/webhook")
async def webhook(
    request: Request,
    background: BackgroundTasks,
    store: JobStore = Depends(get_store),
    engine=Depends(get_engine),
):
    try:
        payload = await request.json()
    except ValueError:
        logger.exception("Webhook body is not JSON")
        return PlainTextResponse("Webhook processing failed", status_code=500)
    if not isinstance(payload, dict):
        logger.error("Webhook body is not an object: %r", payload)
        return PlainTextResponse("Webhook processing failed", status_code=500)

    job_id = payload.get("id")
    if not job_id:
        return PlainTextResponse("Missing prediction ID", status_code=400)
    if not payload.get("status"):
        return PlainTextResponse("Missing prediction status", status_code=400)
    if terminal_status(payload["status"]) is None:
        logger.info("Ignoring in-flight webhook for %s: %s", job_id, payload["status"])
        return PlainTextResponse("OK")

    logger.info("Webhook received for %s: %s", job_id, payload.get("status"))
    # From here on the reply is always 200; Replicate retries anything else.
    try:
        record = store.merge(job_id, build_update(payload))
        if record.get("status") == "succeeded" and record.get("imageUrl"):
            try:
                store.push_feed(record["imageUrl"])
            except Exception:
                logger.exception("Failed to add %s to public feed", job_id)
            background.add_task(finalize_success, engine, record)
        elif record.get("status") == "failed":
            record_failure(engine, job_id, record.get("errorType"))
    except Exception:
        logger.exception("Webhook handling failed for %s", job_id)

    return PlainTextResponse("OK")


# ---------- Result viewer ----------
def _lookup_view(short_id: str, store: JobStore, engine) -> Dict[str, Any]:
    job_id = store.resolve_short_id(short_id)
    if not job_id:
        raise LookupError("Result not found or expired")

    record = store.get(job_id) or {}
    try:
        with Session(engine) as session:
            image_url = db.durable_image_url(session, job_id)
    except Exception:
        logger.exception("Durable lookup failed for %s", job_id)
        image_url = None
    image_url = image_url or record.get("imageUrl")
    if not image_url:
        raise LookupError("Transformation not complete yet. Please try again in a moment.")
    return {"imageUrl": image_url, "userName": record.get("name") or "Friend", "shortId": short_id}


@app.get("/view/{short_id}")
def view(short_id: str, request: Request, store: JobStore = Depends(get_store), engine=Depends(get_engine)):
    try:
        found = _lookup_view(short_id, store, engine)
    except LookupError as e:
        return PlainTextResponse(str(e), status_code=404)
    return templates.TemplateResponse(request, "view.html", {
        "image_url": found["imageUrl"],
        "user_name": found["userName"],
        "site_url": settings.site_url,
    })


@app.get("/api/transformation/{short_id}", response_model=TransformationView)
def transformation_json(short_id: str, store: JobStore = Depends(get_store), engine=Depends(get_engine)):
    try:
        return TransformationView(**_lookup_view(short_id, store, engine))
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))


# ---------- Late email capture ----------
@app.post("/update-email/{job_id}")
def update_email(
    job_id: str,
    body: UpdateEmailRequest,
    store: JobStore = Depends(get_store),
    engine=Depends(get_engine),
):
    email = (body.email or "").strip()
    if not email:
        raise HTTPException(status_code=400, detail="Email required")
    if not store.get(job_id):
        raise HTTPException(status_code=404, detail="Prediction not found")

    update = {"email": email}
    if body.name:
        update["name"] = body.name
    store.merge(job_id, update)

    try:
        with Session(engine) as session:
            db.upsert_user(session, email, body.name)
            db.update_transformation(session, job_id, **update)
    except Exception:
        logger.exception("Failed to persist email for %s", job_id)
    return {"success": True}


# ---------- Public feed ----------
@app.get("/recent")
def recent(store: JobStore = Depends(get_store)):
    try:
        feed = store.recent()
    except Exception:
        logger.exception("Recent feed error")
        feed = []
    return JSONResponse({"transformations": feed}, headers={"Cache-Control": "public, max-age=60"})


# ---------- Admin ----------
@app.get("/admin/emails", dependencies=[Depends(require_admin)])
def admin_emails(engine=Depends(get_engine)):
    with Session(engine) as session:
        users = db.list_users(session)
    return {
        "total": len(users),
        "users": [
            {
                "email": u.email,
                "name": u.name,
                "first_seen": u.first_seen.isoformat(),
                "last_seen": u.last_seen.isoformat(),
                "transform_count": u.transform_count,
            }
            for u in users
        ],
        "exportedAt": datetime.now(timezone.utc).isoformat(),
    }


@app.post("/admin/cleanup", dependencies=[Depends(require_admin)])
def admin_cleanup(store: JobStore = Depends(get_store), engine=Depends(get_engine)):
    stats = purge_all(store, engine)
    return {"success": True, "message": "All data deleted", "stats": stats}


# ---------- Debug (hide in prod) ----------
if settings.debug:
    @app.get("/debug/config")
    def debug_config():
        return {
            "PUBLIC_BASE_URL": settings.public_base_url,
            "SITE_URL": settings.site_url,
            "R2_ENDPOINT_URL": settings.r2_endpoint_url,
            "R2_PUBLIC_BASE": settings.r2_public_base,
            "R2_BUCKET": settings.r2_bucket,
            "KV": "redis" if settings.redis_url else "memory",
            "DB_URL": db.DB_URL,
            "CAPTCHA": captcha_enabled(),
        }
