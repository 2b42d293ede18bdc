from __future__ import annotations
from uuid import UUID
from fastapi import APIRouter, Depends, Path
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from storyverse.db import get_session
from storyverse.auth_deps import get_current_user
from storyverse.errors import AlreadyUnlocked
from storyverse.schemas.runs import ChooseRequest, FeedbackRequest, RateRequest, RateResponse, StartRunRequest, UnlockRequest
from storyverse.services import gate, runs

router = APIRouter(prefix="/api/runs", tags=["runs"])

@router.get("")
async def list_runs(session: AsyncSession = Depends(get_session), user=Depends(get_current_user)):
    return {"runs": await runs.list_runs(session, user)}

@router.post("", status_code=201)
async def start_run(payload: StartRunRequest, session: AsyncSession = Depends(get_session), user=Depends(get_current_user)):
    run = await runs.start_run(session, user, payload.story_id)
    await session.commit()
    return {"runId": str(run.id), "storyId": str(run.story_id)}

@router.get("/{run_id}/current")
async def get_current(run_id: UUID = Path(...), session: AsyncSession = Depends(get_session), user=Depends(get_current_user)):
    return await runs.current_node(session, user, run_id)

@router.post("/{run_id}/choose")
async def choose(payload: ChooseRequest, run_id: UUID = Path(...), session: AsyncSession = Depends(get_session), user=Depends(get_current_user)):
    body = await runs.choose(session, user, run_id, payload.genre_key)
    await session.commit()
    return body

@router.post("/{run_id}/rate", response_model=RateResponse)
async def rate(payload: RateRequest, run_id: UUID = Path(...), session: AsyncSession = Depends(get_session), user=Depends(get_current_user)):
    awarded = await runs.rate(session, user, run_id, payload.node_id, payload.rating)
    await session.commit()
    return RateResponse(coinsAwarded=awarded)

@router.post("/{run_id}/unlock")
async def unlock(payload: UnlockRequest, run_id: UUID = Path(...), session: AsyncSession = Depends(get_session), user=Depends(get_current_user)):
    try:
        result = await gate.unlock(session, user=user, run_id=run_id, chapter_number=payload.chapter_number)
    except AlreadyUnlocked as e:
        # Idempotent: report success without charging again
        return JSONResponse(status_code=200, content=e.payload())
    await session.commit()
    return result.as_payload()

@router.post("/{run_id}/finish")
async def finish(run_id: UUID = Path(...), session: AsyncSession = Depends(get_session), user=Depends(get_current_user)):
    awarded = await runs.finish(session, user, run_id)
    await session.commit()
    return {"ok": True, "coinsAwarded": awarded}

@router.get("/{run_id}/journey")
async def journey(run_id: UUID = Path(...), session: AsyncSession = Depends(get_session), user=Depends(get_current_user)):
    return await runs.journey(session, user, run_id)

@router.get("/{run_id}/unlocks")
async def list_unlocks(run_id: UUID = Path(...), session: AsyncSession = Depends(get_session), user=Depends(get_current_user)):
    run = await gate.get_user_run(session, user.id, run_id)
    return {"unlockedChapters": await gate.unlocked_chapters(session, user.id, run.story_id)}

@router.get("/{run_id}/summary")
async def run_summary(run_id: UUID = Path(...), session: AsyncSession = Depends(get_session), user=Depends(get_current_user)):
    return await runs.run_summary(session, user, run_id)

@router.post("/{run_id}/feedback")
async def submit_feedback(payload: FeedbackRequest, run_id: UUID = Path(...), session: AsyncSession = Depends(get_session), user=Depends(get_current_user)):
    row = await runs.submit_feedback(session, user, run_id, payload.rating, payload.feedback)
    await session.commit()
    return {"ok": True, "rating": row.rating, "feedback": row.feedback}
