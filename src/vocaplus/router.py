import logging
from typing import List

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .engine import ExamEngine
from .errors import InvalidStateError
from .globals import get_engine
from .models import BookKey, ExamState, SessionConfig

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


# --- Request bodies ---
class PoolRequest(BaseModel):
    chapter_id: str = ""
    selected_tocs: List[str] = []
    include_derivatives: bool = False


class AnswerRequest(BaseModel):
    choice_index: int


# --- Books ---
@router.get("/books")
async def list_books(engine: ExamEngine = Depends(get_engine)):
    repository = engine.repository
    return [
        {
            "id": book.value,
            "name": book.value.title(),
            "supports_derivatives": repository.supports_derivatives(book.value),
            "loaded": repository.is_cached(book.value),
        }
        for book in BookKey
    ]


@router.get("/books/{book_key}/chapters")
async def list_chapters(book_key: str, engine: ExamEngine = Depends(get_engine)):
    return engine.repository.list_chapters(book_key)


@router.get("/books/{book_key}/topics")
async def list_topics(
    book_key: str, chapter: str = "", engine: ExamEngine = Depends(get_engine)
):
    return engine.repository.list_topics_for_chapter(book_key, chapter)


@router.post("/books/{book_key}/pool")
async def preview_pool(
    book_key: str, body: PoolRequest, engine: ExamEngine = Depends(get_engine)
):
    pool = engine.repository.get_scope_pool(
        book_key, body.chapter_id, body.selected_tocs, body.include_derivatives
    )
    return {"count": len(pool), "entries": pool}


# --- Exam ---
@router.post("/exam/start")
async def start_exam(config: SessionConfig, engine: ExamEngine = Depends(get_engine)):
    if engine.state == ExamState.RESULT:
        engine.return_to_setup()
    return engine.start(config)


@router.get("/exam")
async def get_exam(engine: ExamEngine = Depends(get_engine)):
    return engine.snapshot()


@router.post("/exam/answer")
async def answer(body: AnswerRequest, engine: ExamEngine = Depends(get_engine)):
    return engine.select_choice(body.choice_index)


@router.post("/exam/next")
async def next_question(engine: ExamEngine = Depends(get_engine)):
    return engine.next()


@router.post("/exam/previous")
async def previous_question(engine: ExamEngine = Depends(get_engine)):
    return engine.previous()


@router.post("/exam/confirm/cancel")
async def cancel_confirm(engine: ExamEngine = Depends(get_engine)):
    return engine.cancel_confirm()


@router.post("/exam/confirm/jump")
async def jump_to_unanswered(engine: ExamEngine = Depends(get_engine)):
    return engine.jump_to_first_unanswered()


@router.post("/exam/submit")
async def submit_exam(engine: ExamEngine = Depends(get_engine)):
    result = await engine.submit(auto_submitted=False)
    if result is None:
        # Lost the race against the timeout, or already submitted.
        if engine.result is None:
            return JSONResponse({"error": "Submission already in progress"}, status_code=409)
        result = engine.result
    return result


@router.post("/exam/retry")
async def retry_exam(
    mode: str = Query("scope", pattern="^(scope|wrong)$"),
    engine: ExamEngine = Depends(get_engine),
):
    if mode == "wrong":
        return engine.retry_wrong_only()
    return engine.retry_same_scope()


@router.post("/exam/reset")
async def reset_exam(engine: ExamEngine = Depends(get_engine)):
    engine.return_to_setup()
    return {"status": "success"}


@router.get("/exam/result")
async def get_result(
    kind: str = Query("wrong", alias="filter", pattern="^(wrong|all)$"),
    engine: ExamEngine = Depends(get_engine),
):
    if engine.result is None:
        raise InvalidStateError("read the result", engine.state.value)
    return {"result": engine.result, "review_items": engine.review_items(kind)}


@router.get("/history")
async def get_history(engine: ExamEngine = Depends(get_engine)):
    return engine.history
