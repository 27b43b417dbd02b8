import logging
import os
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse

from community_verifier import __version__
from community_verifier.core.exceptions import StorageError
from community_verifier.logging_config import configure_logging
from community_verifier.verification import (
    Invalidator,
    RecordStoreError,
    ResolutionResult,
    close_record_store_client,
    get_coordinator,
    get_profile_checker,
    get_record_store_client,
    get_trust_list,
    get_verification_cache,
    normalize_handle,
    remove_trusted_principal,
)
from community_verifier.verification.api_models import (
    ActorSummaryModel,
    ErrorCode,
    ErrorDetail,
    FetchOutcomeModel,
    LogLevelRequest,
    ResolutionResponse,
    ResolveRequest,
    SearchActorsResponse,
    TrustedListResponse,
    TrustedPrincipalRequest,
)

configure_logging()
log = logging.getLogger("community_verifier")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    log.info("Starting community verifications service...")
    yield
    log.info("Shutting down community verifications service...")
    await close_record_store_client()


app = FastAPI(title="Community Verifications", version=__version__, lifespan=lifespan)


def _error_response(status_code: int, code: str, message: str, recoverable: bool) -> JSONResponse:
    detail = ErrorDetail(code=code, message=message, recoverable=recoverable)
    return JSONResponse(status_code=status_code, content={"detail": detail.model_dump()})


def _resolution_response(
    result: ResolutionResult,
    handle: Optional[str] = None,
    applied: Optional[bool] = None,
) -> ResolutionResponse:
    return ResolutionResponse(
        subject=result.subject,
        handle=handle,
        status=result.status,
        verifiers=result.verifiers,
        outcomes=[
            FetchOutcomeModel(
                principal=o.principal,
                success=o.success,
                from_cache=o.from_cache,
                error=o.error,
            )
            for o in result.outcomes
        ],
        applied=applied,
    )


@app.exception_handler(StorageError)
async def storage_error_handler(request: Request, exc: StorageError):
    log.error(f"Storage error on {request.url.path}: {exc}")
    return _error_response(500, ErrorCode.STORAGE_CORRUPT, str(exc), recoverable=False)


@app.middleware("http")
async def req_log(request: Request, call_next):
    start = time.time()
    route = request.url.path
    remote = request.client.host if request.client else "-"
    resp = await call_next(request)
    duration_ms = int((time.time() - start) * 1000)
    log.info(f"request_complete status={resp.status_code} duration_ms={duration_ms}",
             extra={"request_id": "-", "route": route, "remote_addr": remote})
    return resp


@app.get("/healthz")
def healthz():
    return {"ok": True}


@app.get("/version")
def version():
    return {"version": __version__, "git_sha": os.getenv("GIT_SHA", "unknown")}


# =============================================================================
# Trust list
# =============================================================================

@app.get("/trusted")
def list_trusted():
    return TrustedListResponse(principals=get_trust_list().list()).model_dump()


@app.post("/trusted")
async def add_trusted(req: TrustedPrincipalRequest):
    trust_list = get_trust_list()
    try:
        added = trust_list.add(req.handle)
    except ValueError as e:
        return JSONResponse(status_code=400, content={"detail": str(e)})
    await Invalidator(get_verification_cache()).on_principal_added(req.handle)
    return {"added": added, "principals": trust_list.list()}


@app.delete("/trusted/{handle}")
async def delete_trusted(handle: str):
    trust_list = get_trust_list()
    try:
        removed = await remove_trusted_principal(
            trust_list, Invalidator(get_verification_cache()), handle
        )
    except ValueError as e:
        return JSONResponse(status_code=400, content={"detail": str(e)})
    return {"removed": removed, "principals": trust_list.list()}


# =============================================================================
# Resolution
# =============================================================================

@app.post("/resolve")
async def resolve(req: ResolveRequest):
    """Report which trusted principals have verified a subject.

    A handle is first resolved to its durable id. Per-principal failures
    show up in outcomes; the call itself only fails when the handle cannot
    be resolved.
    """
    subject = req.subject
    if req.handle:
        try:
            subject = await get_record_store_client().resolve_subject(normalize_handle(req.handle))
        except ValueError as e:
            return JSONResponse(status_code=400, content={"detail": str(e)})
        except RecordStoreError as e:
            log.warning(f"Could not resolve handle {req.handle}: {e.message}")
            return _error_response(
                502, ErrorCode.SUBJECT_RESOLUTION_FAILED, e.message, recoverable=True
            )

    result = await get_coordinator().resolve(subject, force_refresh=req.force_refresh)
    log.info("resolve_called", extra={"route": "/resolve", "subject": subject})
    return _resolution_response(result, handle=req.handle).model_dump(mode="json")


@app.get("/profile/{handle}")
async def profile(handle: str, force_refresh: bool = False):
    """Check a profile the way navigating to it does.

    applied is False when a newer profile check started before this one
    finished; the newer one owns the current display state.
    """
    try:
        check = await get_profile_checker().check(handle, force_refresh=force_refresh)
    except ValueError as e:
        return JSONResponse(status_code=400, content={"detail": str(e)})
    except RecordStoreError as e:
        log.warning(f"Profile check for {handle} failed: {e.message}")
        return _error_response(
            502, ErrorCode.SUBJECT_RESOLUTION_FAILED, e.message, recoverable=True
        )
    return _resolution_response(
        check.result, handle=check.handle, applied=check.applied
    ).model_dump(mode="json")


@app.get("/search")
async def search(q: str = "", limit: int = Query(default=5, ge=1, le=25)):
    """Actor typeahead for picking trusted principals."""
    try:
        actors = await get_record_store_client().search_actors(q, limit)
    except RecordStoreError as e:
        return _error_response(502, e.code, e.message, recoverable=True)
    return SearchActorsResponse(
        actors=[
            ActorSummaryModel(handle=a.handle, display_name=a.display_name, avatar=a.avatar)
            for a in actors
        ]
    ).model_dump()


@app.post("/cache/clear")
async def clear_cache():
    cleared = await Invalidator(get_verification_cache()).clear_all()
    return {"cleared": cleared}


# =============================================================================
# Admin
# =============================================================================

@app.get("/admin")
async def admin():
    """Return configuration and cache state for operator visibility.

    Gated by ADMIN_ENDPOINT_ENABLED (default: True for dev, False for prod).
    """
    from community_verifier.core.config import (
        ADMIN_ENDPOINT_ENABLED,
        MAX_RECORD_PAGES,
        RECORD_FETCH_TIMEOUT_SECONDS,
        RECORD_PAGE_SIZE,
        RECORD_STORE_BASE_URL,
        STORAGE_PATH,
        VERIFICATION_CACHE_TTL_SECONDS,
        VERIFICATION_COLLECTION,
    )

    if not ADMIN_ENDPOINT_ENABLED:
        return JSONResponse(
            status_code=404,
            content={"detail": "Admin endpoint disabled"}
        )

    cache = get_verification_cache()
    return {
        "record_store": {
            "base_url": RECORD_STORE_BASE_URL,
            "verification_collection": VERIFICATION_COLLECTION,
            "fetch_timeout_seconds": RECORD_FETCH_TIMEOUT_SECONDS,
            "page_size": RECORD_PAGE_SIZE,
            "max_pages": MAX_RECORD_PAGES,
        },
        "cache_config": {
            "verification_cache_ttl_seconds": VERIFICATION_CACHE_TTL_SECONDS,
            "storage_path": STORAGE_PATH or None,
        },
        "cache_metrics": {
            "verification": cache.metrics().to_dict(),
            "entries": await cache.size(),
        },
        "trust_list": {
            "count": len(get_trust_list()),
        },
        "environment": {
            "log_level": logging.getLogger().getEffectiveLevel(),
            "log_level_name": logging.getLevelName(logging.getLogger().getEffectiveLevel()),
        },
    }


@app.post("/admin/log-level")
def set_log_level(req: LogLevelRequest):
    """Change log level at runtime (DEBUG, INFO, WARNING, ERROR, CRITICAL).

    Gated by ADMIN_ENDPOINT_ENABLED.
    """
    from community_verifier.core.config import ADMIN_ENDPOINT_ENABLED

    if not ADMIN_ENDPOINT_ENABLED:
        return JSONResponse(
            status_code=404,
            content={"detail": "Admin endpoint disabled"}
        )

    valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    level_upper = req.level.upper()

    if level_upper not in valid_levels:
        return JSONResponse(
            status_code=400,
            content={"detail": f"Invalid log level. Must be one of: {valid_levels}"}
        )

    logging.getLogger().setLevel(getattr(logging, level_upper))
    logging.getLogger("community_verifier").setLevel(getattr(logging, level_upper))

    log.info(f"Log level changed to {level_upper}")

    return {
        "success": True,
        "log_level": level_upper,
        "message": f"Log level set to {level_upper}"
    }
