from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect, status

from mindmaze import __version__
from mindmaze.api.deps import get_hub, get_session
from mindmaze.api.models import (
    AchievementsResponse,
    AnswerRequest,
    AnswerResponse,
    HintResponse,
    NavigateRequest,
    NavigateResponse,
    PersistResponse,
    PresentRequest,
    PresentResponse,
    RoomsResponse,
    SkipResponse,
    StateResponse,
    StatisticsResponse,
)
from mindmaze.core.errors import GameError
from mindmaze.core.session import GameSession
from mindmaze.websocket_hub import EventWebSocketHub

router = APIRouter()


def _unprocessable(e: GameError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))


@router.websocket("/ws/events")
async def events_ws(websocket: WebSocket) -> None:
    hub: EventWebSocketHub = websocket.app.state.hub
    await hub.connect(websocket)

    try:
        # Keep the socket open; clients may send "ping" to check the subscription is live.
        while True:
            text = await websocket.receive_text()
            if text == "ping":
                await websocket.send_json({"type": "pong"})
    except WebSocketDisconnect:
        hub.disconnect(websocket)
    except Exception:
        hub.disconnect(websocket)
        raise


@router.get("/healthcheck")
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/info")
async def info() -> dict[str, str]:
    return {"name": "mindmaze", "version": __version__}


@router.get("/state", response_model=StateResponse)
async def state_route(session: GameSession = Depends(get_session)) -> StateResponse:
    progress = session.progress
    return StateResponse(
        progress=progress.snapshot,
        current_room=progress.current_room,
        available_rooms=progress.available_rooms(),
        completion=progress.completion_progress(),
        question_phase=session.quiz.phase,
        active_question=session.quiz.active_question,
    )


@router.get("/rooms/available", response_model=RoomsResponse)
async def available_rooms_route(session: GameSession = Depends(get_session)) -> RoomsResponse:
    rooms = [session.catalog.rooms[rid] for rid in session.progress.available_rooms()]
    return RoomsResponse(rooms=rooms)


@router.post("/navigate", response_model=NavigateResponse)
async def navigate_route(
    payload: NavigateRequest,
    session: GameSession = Depends(get_session),
    hub: EventWebSocketHub = Depends(get_hub),
) -> NavigateResponse:
    try:
        room = session.progress.move_to_room(payload.room_id)
    except GameError as e:
        await hub.flush()
        raise _unprocessable(e) from e

    await hub.flush()
    return NavigateResponse(room=room, available_rooms=session.progress.available_rooms())


@router.post("/questions/present", response_model=PresentResponse)
async def present_question_route(
    payload: PresentRequest,
    session: GameSession = Depends(get_session),
    hub: EventWebSocketHub = Depends(get_hub),
) -> PresentResponse:
    question_id = payload.question_id
    category = payload.category
    if question_id is None and payload.adaptive:
        picked = session.quiz.adaptive_question()
        question_id = picked.id if picked else None

    try:
        question = session.quiz.present_question(question_id=question_id, category=category)
    except GameError as e:
        await hub.flush()
        raise _unprocessable(e) from e

    await hub.flush()
    return PresentResponse(question=question)


@router.post("/questions/answer", response_model=AnswerResponse)
async def answer_route(
    payload: AnswerRequest,
    session: GameSession = Depends(get_session),
    hub: EventWebSocketHub = Depends(get_hub),
) -> AnswerResponse:
    try:
        result = session.quiz.validate_answer(payload.index)
    except GameError as e:
        await hub.flush()
        raise _unprocessable(e) from e

    await hub.flush()
    return AnswerResponse(result=result, score=session.progress.score, game_completed=session.progress.game_completed)


@router.get("/questions/hint", response_model=HintResponse)
async def hint_route(
    session: GameSession = Depends(get_session),
    hub: EventWebSocketHub = Depends(get_hub),
) -> HintResponse:
    hint = session.quiz.get_hint()
    await hub.flush()
    return HintResponse(hint=hint)


@router.post("/questions/skip", response_model=SkipResponse)
async def skip_route(
    session: GameSession = Depends(get_session),
    hub: EventWebSocketHub = Depends(get_hub),
) -> SkipResponse:
    result = session.quiz.skip_question()
    await hub.flush()
    return SkipResponse(result=result, score=session.progress.score)


@router.post("/save", response_model=PersistResponse)
async def save_route(
    session: GameSession = Depends(get_session),
    hub: EventWebSocketHub = Depends(get_hub),
) -> PersistResponse:
    ok = session.save()
    await hub.flush()
    return PersistResponse(ok=ok)


@router.post("/load", response_model=PersistResponse)
async def load_route(
    session: GameSession = Depends(get_session),
    hub: EventWebSocketHub = Depends(get_hub),
) -> PersistResponse:
    ok = session.load()
    await hub.flush()
    if not ok:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No usable saved game")
    return PersistResponse(ok=ok)


@router.post("/reset", response_model=PersistResponse)
async def reset_route(
    session: GameSession = Depends(get_session),
    hub: EventWebSocketHub = Depends(get_hub),
) -> PersistResponse:
    session.reset()
    await hub.flush()
    return PersistResponse(ok=True)


@router.get("/statistics", response_model=StatisticsResponse)
async def statistics_route(session: GameSession = Depends(get_session)) -> StatisticsResponse:
    return StatisticsResponse(game=session.progress.statistics(), quiz=session.quiz.quiz_statistics())


@router.get("/achievements", response_model=AchievementsResponse)
async def achievements_route(session: GameSession = Depends(get_session)) -> AchievementsResponse:
    manager = session.achievements
    return AchievementsResponse(achievements=manager.all_achievements(), stats=manager.achievement_stats())
