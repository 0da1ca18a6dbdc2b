import asyncio
import json
from datetime import timedelta
from typing import Literal, Optional

import structlog
from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse

import moderation
import ranking
import stats
import views
import voting
from auth import (
    AdminAllowList,
    Session,
    SessionRegistry,
    current_session,
    get_identity,
    optional_session,
    remember_user,
    require_admin,
)
from config import Settings, load_settings
from database import STORE_ERRORS, Store, connect, guarded
from errors import PriorityError, StoreUnavailable
from feed import PriorityFeed
from observability import configure_logging
from schemas import Identity, PriorityCreate, RejectRequest, Status

logger = structlog.get_logger(__name__)

KEEPALIVE_SECONDS = 15.0

router = APIRouter()


# Helpers

def get_store(request: Request) -> Store:
    store = request.app.state.store
    if store is None:
        raise StoreUnavailable("Database not configured")
    return store


def get_feed(request: Request) -> PriorityFeed:
    return request.app.state.feed


def session_view(session: Session) -> dict:
    identity = session.identity
    return {
        "token": session.token,
        "uid": identity.uid,
        "email": identity.email,
        "displayName": identity.display_name,
        "photoURL": identity.photo,
        "admin": session.admin,
        "voted": sorted(session.voted),
    }


async def handle_priority_error(request: Request, exc: PriorityError):
    logger.warning("request_failed", path=request.url.path, error=exc.code, detail=exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.code, "detail": exc.message},
    )


async def handle_validation_error(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=422,
        content={"error": "ValidationFailed", "detail": jsonable_encoder(exc.errors())},
    )


@router.get("/")
def read_root():
    return {"message": "World Priorities API running"}


@router.get("/test")
def test_database(request: Request):
    store = request.app.state.store
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_backend": None,
        "database_name": None,
        "transactions": False,
        "connection_status": "Not Connected",
        "collections": []
    }

    if store is not None:
        response["database"] = "✅ Available"
        response["database_backend"] = store.backend
        response["database_name"] = store.name or "✅ Connected"
        response["transactions"] = store.transactional
        response["connection_status"] = "Connected"
        try:
            collections = store.db.list_collection_names()
            response["collections"] = collections[:10]
            response["database"] = "✅ Connected & Working"
        except STORE_ERRORS as e:
            response["database"] = f"⚠️  Connected but Error: {str(e)[:50]}"

    settings: Settings = request.app.state.settings
    response["database_url"] = "✅ Set" if settings.database_url else "❌ Not Set"
    response["admins_configured"] = len(settings.admin_emails)
    return response


# Public voting client

@router.post("/api/session")
def sign_in(
    request: Request,
    identity: Identity = Depends(get_identity),
    store: Store = Depends(get_store),
):
    remember_user(store, identity)
    voted = list(voting.load_user_votes(store, identity.uid))
    session = request.app.state.sessions.open(identity, voted)
    logger.info("signed_in", uid=identity.uid, votes=len(voted))
    return session_view(session)


@router.get("/api/session")
def read_session(session: Session = Depends(current_session)):
    return session_view(session)


@router.delete("/api/session")
def sign_out(request: Request, session: Optional[Session] = Depends(optional_session)):
    if session is not None:
        request.app.state.sessions.close(session.token)
        logger.info("signed_out", uid=session.uid)
    return {"status": "signed_out"}


@router.get("/api/priorities")
def list_priorities(
    view: Literal["all", "trending", "new"] = Query("all"),
    session: Optional[Session] = Depends(optional_session),
    store: Store = Depends(get_store),
):
    ranked = ranking.rank(ranking.list_approved(store))
    return views.ranking_view(ranking.select(ranked, view), session.voted if session else None)


@router.post("/api/priorities", status_code=201)
def create_priority(
    payload: PriorityCreate,
    session: Session = Depends(current_session),
    store: Store = Depends(get_store),
):
    doc = voting.submit_priority(store, session, payload)
    return {
        "priority": doc,
        "message": "Priority submitted successfully! Admin will review within 24-48 hours.",
    }


@router.post("/api/priorities/{priority_id}/vote")
def vote_priority(
    priority_id: str,
    session: Session = Depends(current_session),
    store: Store = Depends(get_store),
    feed: PriorityFeed = Depends(get_feed),
):
    doc = voting.cast_vote(store, session, priority_id, feed)
    return {"priority": doc, "voted": True}


@router.get("/api/priorities/stream")
async def stream_priorities(
    request: Request,
    session: Optional[Session] = Depends(optional_session),
    store: Store = Depends(get_store),
    feed: PriorityFeed = Depends(get_feed),
):
    """
    Server-sent events: the full ranking on connect, then again after every
    change to the approved set.
    """
    loop = asyncio.get_running_loop()
    changes: asyncio.Queue = asyncio.Queue()
    subscription = feed.subscribe(lambda change: loop.call_soon_threadsafe(changes.put_nowait, change))

    async def snapshot() -> str:
        ranked = ranking.rank(await run_in_threadpool(ranking.list_approved, store))
        payload = views.ranking_view(ranked, session.voted if session else None)
        return f"event: ranking\ndata: {json.dumps(payload)}\n\n"

    async def events():
        try:
            yield await snapshot()
            while not await request.is_disconnected():
                try:
                    await asyncio.wait_for(changes.get(), timeout=KEEPALIVE_SECONDS)
                except asyncio.TimeoutError:
                    yield ": keep-alive\n\n"
                    continue
                # one re-query covers a burst of changes
                while not changes.empty():
                    changes.get_nowait()
                yield await snapshot()
        finally:
            subscription.cancel()

    return StreamingResponse(events(), media_type="text/event-stream")


@router.get("/api/stats")
def read_stats(store: Store = Depends(get_store)):
    return stats.public_stats(store)


# Moderation console

@router.post("/api/admin/session")
def admin_sign_in(
    request: Request,
    identity: Identity = Depends(get_identity),
    store: Store = Depends(get_store),
):
    request.app.state.allow_list.check(identity)
    # admin sessions can vote on the public board too
    voted = list(voting.load_user_votes(store, identity.uid))
    session = request.app.state.sessions.open(identity, voted, admin=True)
    logger.info("admin_signed_in", uid=identity.uid, email=identity.email, votes=len(voted))
    return session_view(session)


@router.get("/api/admin/session")
def read_admin_session(admin: Session = Depends(require_admin)):
    return session_view(admin)


@router.delete("/api/admin/session")
def admin_sign_out(request: Request, session: Optional[Session] = Depends(optional_session)):
    if session is not None:
        request.app.state.sessions.close(session.token)
        logger.info("admin_signed_out", uid=session.uid)
    return {"status": "signed_out"}


@router.get("/api/admin/submissions")
def list_submissions(
    status: Optional[Status] = Query(None),
    admin: Session = Depends(require_admin),
    store: Store = Depends(get_store),
):
    if status is not None:
        return views.submission_list(status, moderation.list_by_status(store, status))
    return {
        s.value: views.submission_list(s, moderation.list_by_status(store, s))
        for s in Status
    }


@router.post("/api/admin/priorities/{priority_id}/approve")
def approve_priority(
    priority_id: str,
    admin: Session = Depends(require_admin),
    store: Store = Depends(get_store),
    feed: PriorityFeed = Depends(get_feed),
):
    doc = moderation.approve(store, admin, priority_id, feed)
    return {"priority": doc, "message": "Priority approved successfully!"}


@router.post("/api/admin/priorities/{priority_id}/reject")
def reject_priority(
    priority_id: str,
    payload: Optional[RejectRequest] = None,
    admin: Session = Depends(require_admin),
    store: Store = Depends(get_store),
    feed: PriorityFeed = Depends(get_feed),
):
    reason = payload.reason if payload is not None else None
    doc = moderation.reject(store, admin, priority_id, reason, feed)
    return {"priority": doc, "message": "Priority rejected."}


@router.delete("/api/admin/priorities/{priority_id}")
def delete_priority(
    priority_id: str,
    admin: Session = Depends(require_admin),
    store: Store = Depends(get_store),
    feed: PriorityFeed = Depends(get_feed),
):
    moderation.delete(store, admin, priority_id, feed)
    return {"status": "deleted", "message": "Priority deleted permanently."}


@router.get("/api/admin/stats")
def read_admin_stats(admin: Session = Depends(require_admin), store: Store = Depends(get_store)):
    return stats.admin_stats(store)


def create_app(settings: Optional[Settings] = None, store: Optional[Store] = None) -> FastAPI:
    settings = settings or load_settings()
    configure_logging(settings.environment, settings.log_level)

    app = FastAPI(title="World Priorities API")
    app.state.settings = settings
    app.state.store = store
    app.state.sessions = SessionRegistry(ttl=timedelta(hours=settings.session_ttl_hours))
    app.state.allow_list = AdminAllowList(settings.admin_emails)
    app.state.feed = PriorityFeed()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(PriorityError, handle_priority_error)
    app.add_exception_handler(RequestValidationError, handle_validation_error)
    app.include_router(router)

    @app.on_event("startup")
    def open_store():
        if app.state.store is None:
            app.state.store = connect(settings.database_url, settings.database_name)
        with guarded("ensure_indexes"):
            app.state.store.ensure_indexes()
        if not settings.admin_emails:
            logger.warning("admin_allow_list_empty")

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=app.state.settings.port)
