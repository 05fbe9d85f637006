from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import BackgroundTasks, Depends, FastAPI, Query, Request, WebSocket, WebSocketDisconnect, status
from fastapi.responses import JSONResponse, PlainTextResponse, Response

from shared.enums import EmployeeRole
from shared.errors import NotFoundError, StoreError, ValidationError
from shared.schemas import (
    EmployeeCreate,
    ShiftCreate,
    ShiftGenerate,
    ShiftMove,
    SwapRequestCreate,
    SwapResponse,
)
from shared.services.consistency import format_report
from shared.services.core import SchedulingCore, build_core

from .config import get_config
from .dependencies import get_core, load_actor, require_manager
from .services.messenger import Messenger


logger = logging.getLogger(__name__)

# ValidationError codes that describe a conflict with current state
_CONFLICT_CODES = {"request_not_pending", "duplicate_pending_request", "shift_owner_changed"}


def create_app(core: SchedulingCore | None = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await app.state.core.close()
        logger.info("scheduling core closed")

    app = FastAPI(title="Shift Swap", lifespan=lifespan)
    app.state.core = core or build_core()
    _register_error_handlers(app)
    _register_routes(app)
    return app


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(ValidationError)
    async def _validation_error(request: Request, exc: ValidationError):
        code = status.HTTP_409_CONFLICT if exc.code in _CONFLICT_CODES else status.HTTP_400_BAD_REQUEST
        logger.info("request rejected", extra={"path": request.url.path, "code": exc.code})
        return JSONResponse(status_code=code, content={"detail": exc.as_dict()})

    @app.exception_handler(NotFoundError)
    async def _not_found(request: Request, exc: NotFoundError):
        logger.info("not found", extra={"path": request.url.path, "collection": exc.collection, "id": exc.doc_id})
        return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": exc.as_dict()})

    @app.exception_handler(StoreError)
    async def _store_error(request: Request, exc: StoreError):
        logger.error("store failure", extra={"path": request.url.path, "code": exc.code})
        return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content={"detail": exc.as_dict()})


def _register_routes(app: FastAPI) -> None:
    # ========== Employees ==========

    @app.get("/employees")
    async def list_employees(role: Optional[EmployeeRole] = None, core: SchedulingCore = Depends(get_core)):
        employees = await core.directory.list(role)
        return [dict(e.to_public(), shortId=e.short_id) for e in employees]

    @app.post("/employees", status_code=status.HTTP_201_CREATED)
    async def create_employee(body: EmployeeCreate, core: SchedulingCore = Depends(get_core)):
        emp = await core.directory.register(body.name, body.email, body.role, body.tg_id)
        return dict(emp.to_public(), shortId=emp.short_id)

    # ========== Shifts ==========

    @app.get("/shifts")
    async def list_shifts(core: SchedulingCore = Depends(get_core)):
        return [s.to_public() for s in await core.shifts.list_all()]

    @app.get("/shifts/by-owner/{short_id}")
    async def list_shifts_by_owner(short_id: str, core: SchedulingCore = Depends(get_core)):
        return [s.to_public() for s in await core.shifts.list_by_owner(short_id.strip().lower())]

    @app.post("/shifts", status_code=status.HTTP_201_CREATED)
    async def create_shift(body: ShiftCreate, core: SchedulingCore = Depends(get_core)):
        actor = await require_manager(core, body.actor_id)
        owner = await load_actor(core, body.owner_id)
        shift = await core.shift_service.create(
            actor=actor,
            owner=owner,
            day=body.date,
            shift_type=body.type,
            start_time=body.start_time,
            end_time=body.end_time,
        )
        return shift.to_public()

    @app.post("/shifts/generate", status_code=status.HTTP_201_CREATED)
    async def generate_shifts(body: ShiftGenerate, core: SchedulingCore = Depends(get_core)):
        actor = await require_manager(core, body.actor_id)
        employees = await core.directory.list(EmployeeRole.EMPLOYEE)
        created, summary = await core.shift_service.generate(
            actor=actor,
            start=body.start,
            end=body.end,
            employees=employees,
            per_day=get_config().per_day,
            seed=body.seed,
        )
        return {"created": len(created), "summary": summary.as_dict()}

    @app.post("/shifts/{shift_id}/move")
    async def move_shift(shift_id: str, body: ShiftMove, core: SchedulingCore = Depends(get_core)):
        actor = await require_manager(core, body.actor_id)
        owner = await load_actor(core, body.owner_id)
        moved = await core.shift_service.move(actor=actor, shift_id=shift_id, new_owner=owner, new_day=body.date)
        return moved.to_public()

    @app.delete("/shifts/{shift_id}")
    async def delete_shift(shift_id: str, actor_id: str = Query(...), core: SchedulingCore = Depends(get_core)):
        actor = await require_manager(core, actor_id)
        await core.shift_service.delete(actor=actor, shift_id=shift_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    # ========== Swap requests ==========

    @app.post("/swap-requests", status_code=status.HTTP_201_CREATED)
    async def create_swap_request(
        body: SwapRequestCreate,
        background: BackgroundTasks,
        core: SchedulingCore = Depends(get_core),
    ):
        requester = await load_actor(core, body.from_employee_id)
        recipient = await load_actor(core, body.to_employee_id)
        req = await core.swaps.request_swap(requester, recipient, body.shift_id)
        cfg = get_config()
        # a shared backend lets the bot's inbox notifier deliver it instead
        if cfg.bot_token and recipient.tg_id is not None and not core.store.shares_changes:
            background.add_task(Messenger(cfg.bot_token).notify_swap_request, req, recipient)
        return req.to_public()

    @app.post("/swap-requests/{request_id}/respond")
    async def respond_swap_request(request_id: str, body: SwapResponse, core: SchedulingCore = Depends(get_core)):
        responder = await load_actor(core, body.responder_id)
        req = await core.swaps.respond_to_swap(request_id, body.accept, responder)
        return req.to_public()

    @app.get("/swap-requests/inbox/{short_id}")
    async def swap_inbox(short_id: str, core: SchedulingCore = Depends(get_core)):
        return [r.to_public() for r in await core.swaps.list_inbox(short_id.strip().lower())]

    @app.get("/swap-requests/outgoing/{short_id}")
    async def swap_outgoing(short_id: str, core: SchedulingCore = Depends(get_core)):
        return [r.to_public() for r in await core.swaps.list_outgoing(short_id.strip().lower())]

    @app.get("/swap-requests")
    async def swap_all(core: SchedulingCore = Depends(get_core)):
        return [r.to_public() for r in await core.swaps.list_all()]

    @app.delete("/swap-requests")
    async def swap_cleanup(
        actor_id: str = Query(...),
        resolved_only: bool = Query(False),
        core: SchedulingCore = Depends(get_core),
    ):
        actor = await require_manager(core, actor_id)
        removed = await core.swaps.cleanup(resolved_only=resolved_only)
        logger.info("swap cleanup requested", extra={"actor_id": actor.id, "removed": removed})
        return {"removed": removed}

    # ========== Diagnostics / activity ==========

    @app.get("/consistency")
    async def consistency(fmt: str = Query("json", alias="format"), core: SchedulingCore = Depends(get_core)):
        report = await core.checker.run()
        if fmt == "text":
            return PlainTextResponse(format_report(report))
        return report.as_dict()

    @app.get("/activity")
    async def activity(limit: int = Query(50, ge=1, le=1000), core: SchedulingCore = Depends(get_core)):
        return [e.to_public() for e in await core.ledger.list_recent(limit)]

    # ========== Live views ==========

    @app.websocket("/ws/shifts")
    async def ws_shifts(websocket: WebSocket):
        core: SchedulingCore = websocket.app.state.core
        await websocket.accept()

        async def push(shifts):
            await websocket.send_json([s.to_public() for s in shifts])

        await _serve_subscription(websocket, core.shifts.subscribe_all(push))

    @app.websocket("/ws/swap-requests/{short_id}")
    async def ws_inbox(websocket: WebSocket, short_id: str):
        core: SchedulingCore = websocket.app.state.core
        await websocket.accept()

        async def push(requests):
            await websocket.send_json([r.to_public() for r in requests])

        await _serve_subscription(websocket, core.swaps.subscribe_inbox(short_id.strip().lower(), push))


async def _serve_subscription(websocket: WebSocket, sub) -> None:
    try:
        while True:
            # client messages are ignored; this only detects disconnect
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.debug("websocket disconnected", extra={"collection": sub.collection})
    finally:
        sub.cancel()


app = create_app()
