import asyncio
import logging
import uuid
from typing import Any, Dict, Optional

from fastapi import FastAPI, Header, HTTPException, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .chunking import Encoding, default_encoding
from .db import init_db
from .errors import InsufficientFunds, PipelineError, Unauthorized
from .ledger import SqliteCoinAccount, SqliteJobLedger
from .llm_provider import (
    GenerationBackend,
    build_backend,
    list_backends,
    profiles_from_settings,
)
from .orchestrator import JobOrchestrator
from .prompts import load_templates
from .reducer import SummaryReducer
from .repo import (
    create_summary,
    create_user,
    credit_coins,
    get_summary,
    get_user,
    list_coin_spends,
    list_summaries,
)
from .runtime import (
    CancelToken,
    get_concurrency_diagnostics,
    set_llm_concurrency,
)
from .settings import settings
from .transcript_source import (
    TranscriptSource,
    YouTubeTranscriptSource,
    title_of,
)

logger = logging.getLogger(__name__)


class UTF8JSONResponse(JSONResponse):
    media_type = "application/json; charset=utf-8"


class CreateUserRequest(BaseModel):
    name: str = Field(min_length=1)
    email: str = Field(min_length=3)


class CreditCoinsRequest(BaseModel):
    amount: int = Field(gt=0)
    reason: str = "purchase"


class AddUrlRequest(BaseModel):
    url: str = Field(min_length=1)


class SummarizeRequest(BaseModel):
    url: str = Field(min_length=1)
    id: str = Field(min_length=1)


app = FastAPI(
    title="Video Summary Backend",
    default_response_class=UTF8JSONResponse,
)

_cors_origins = [
    s.strip() for s in str(settings.cors_origins or "").split(",") if s.strip()
]
if _cors_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=_cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


@app.on_event("startup")
def _startup() -> None:
    init_db()
    set_llm_concurrency(settings.llm_concurrency)


@app.exception_handler(PipelineError)
async def _pipeline_error_handler(
    request: Request,
    exc: PipelineError,
) -> JSONResponse:
    return UTF8JSONResponse(status_code=exc.http_status, content=exc.as_dict())


def _transcript_source() -> TranscriptSource:
    return YouTubeTranscriptSource(
        languages=[settings.transcript_language],
        fetch_title=not settings.disable_title_lookup,
    )


def _generation_backend() -> GenerationBackend:
    return build_backend(settings)


def _encoding() -> Encoding:
    return default_encoding(settings.tokenizer_encoding)


def build_orchestrator() -> JobOrchestrator:
    standard, conservative = profiles_from_settings(settings)
    reducer = SummaryReducer(
        _generation_backend(),
        standard=standard,
        conservative=conservative,
        templates=load_templates(settings.prompts_path),
        generation_timeout_seconds=settings.generation_timeout_seconds,
        max_workers=settings.map_concurrency,
    )
    return JobOrchestrator(
        transcript_source=_transcript_source(),
        reducer=reducer,
        ledger=SqliteJobLedger(),
        account=SqliteCoinAccount(),
        minimum_cost=settings.minimum_cost,
        max_chunk_size=settings.max_chunk_size,
        chunk_overlap=settings.chunk_overlap,
        encoding=_encoding(),
        job_timeout_seconds=settings.job_timeout_seconds,
    )


def _require_user(user_id: Optional[str]) -> Dict[str, Any]:
    uid = str(user_id or "").strip()
    user = get_user(uid) if uid else None
    if not user:
        raise Unauthorized()
    return user


async def _cancel_on_disconnect(request: Request, token: CancelToken) -> None:
    while not token.cancelled():
        if await request.is_disconnected():
            token.cancel("disconnected")
            return
        await asyncio.sleep(0.5)


@app.get("/health")
def health() -> Dict[str, Any]:
    return {
        "status": "ok",
        "data_dir": settings.data_dir,
        "generation_backend": settings.generation_backend,
        "backends": list_backends(),
        "concurrency": get_concurrency_diagnostics(),
    }


@app.post("/users")
def create_user_api(req: CreateUserRequest) -> Dict[str, Any]:
    user = create_user(
        name=req.name.strip(),
        email=req.email.strip().lower(),
        coins=settings.signup_coins,
    )
    return {"data": user}


@app.get("/users/me")
def get_me_api(
    x_user_id: Optional[str] = Header(default=None),
) -> Dict[str, Any]:
    return {"data": _require_user(x_user_id)}


@app.post("/users/me/coins")
def credit_coins_api(
    req: CreditCoinsRequest,
    x_user_id: Optional[str] = Header(default=None),
) -> Dict[str, Any]:
    user = _require_user(x_user_id)
    credit_coins(user["id"], req.amount, req.reason)
    return {"data": get_user(user["id"])}


@app.get("/coins/spends")
def list_coin_spends_api(
    limit: int = 100,
    x_user_id: Optional[str] = Header(default=None),
) -> Dict[str, Any]:
    user = _require_user(x_user_id)
    items = list_coin_spends(user["id"], limit=max(1, min(limit, 500)))
    return {"items": items}


@app.post("/summaries")
def add_url_api(
    req: AddUrlRequest,
    x_user_id: Optional[str] = Header(default=None),
) -> Dict[str, Any]:
    user = _require_user(x_user_id)
    if int(user.get("coins") or 0) < settings.minimum_cost:
        raise InsufficientFunds(
            "Insufficient coins for summary. Please add more coins."
        )

    segments = _transcript_source().fetch(req.url.strip())
    summary = create_summary(
        summary_id=str(uuid.uuid4()),
        user_id=user["id"],
        url=req.url.strip(),
        title=title_of(segments),
    )
    logger.info("summary %s added for user %s", summary["id"], user["id"])
    return {"message": "URL Added Successfully!", "data": summary}


@app.get("/summaries")
def list_summaries_api(
    limit: int = 50,
    offset: int = 0,
    x_user_id: Optional[str] = Header(default=None),
) -> Dict[str, Any]:
    user = _require_user(x_user_id)
    return {
        "items": list_summaries(
            user["id"],
            limit=max(1, min(limit, 200)),
            offset=max(0, offset),
        )
    }


@app.get("/summaries/{summary_id}")
def get_summary_api(
    summary_id: str,
    x_user_id: Optional[str] = Header(default=None),
) -> Dict[str, Any]:
    user = _require_user(x_user_id)
    summary = get_summary(summary_id)
    if not summary or summary.get("user_id") != user["id"]:
        raise HTTPException(status_code=404, detail="SUMMARY_NOT_FOUND")
    return {"data": summary}


@app.post("/summarize")
async def summarize_api(
    req: SummarizeRequest,
    request: Request,
    x_user_id: Optional[str] = Header(default=None),
) -> Dict[str, Any]:
    orchestrator = build_orchestrator()
    token = CancelToken(settings.job_timeout_seconds)
    watcher = asyncio.create_task(_cancel_on_disconnect(request, token))
    try:
        result = await run_in_threadpool(
            orchestrator.submit,
            x_user_id,
            req.url.strip(),
            req.id.strip(),
            token,
        )
    finally:
        watcher.cancel()

    return {
        "message": "Podcast video Summary",
        "status": result.status,
        "data": result.result_text,
        "title": result.title,
        "job_id": result.job_id,
        "charged": result.charged,
    }
