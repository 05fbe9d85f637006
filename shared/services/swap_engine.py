"""Swap request lifecycle: pending -> accepted | declined.

Participants are always recorded by short id. On acceptance the shift's
owner fields move to the recipient; date, type and times stay as they
are. Where the store has transactions the transfer and the status change
commit together. Otherwise the shift is written first and reverted if
closing the request fails; between those two writes readers can see the
shift already transferred while the request is still pending.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Optional, Union

from shared.enums import ActivityType, Collection, SwapRequestStatus
from shared.errors import NotFoundError, ValidationError
from shared.schemas import Employee, Shift, SwapRequest
from shared.services.activity_ledger import ActivityLedger
from shared.services.identity import short_id
from shared.services.shift_store import ShiftStore
from shared.store.base import ErrorHandler, OrderBy, Record, Store, Subscription, query_with_fallback
from shared.utils import iso_now


logger = logging.getLogger(__name__)

NEWEST_FIRST = OrderBy("createdAt", descending=True)


class SwapRequestEngine:
    def __init__(
        self,
        store: Store,
        shifts: ShiftStore,
        ledger: ActivityLedger,
        *,
        reject_duplicate_pending: bool = True,
    ):
        self.store = store
        self.shifts = shifts
        self.ledger = ledger
        self.reject_duplicate_pending = bool(reject_duplicate_pending)

    async def get(self, request_id: str) -> Optional[SwapRequest]:
        rec = await self.store.get_by_id(Collection.SWAP_REQUESTS, str(request_id))
        return SwapRequest.from_record(rec) if rec is not None else None

    async def pending_between(self, from_short_id: str, to_short_id: str) -> list[SwapRequest]:
        rows = await self.store.query(
            Collection.SWAP_REQUESTS,
            {
                "fromEmployeeId": str(from_short_id),
                "toEmployeeId": str(to_short_id),
                "status": SwapRequestStatus.PENDING.value,
            },
        )
        return [SwapRequest.from_record(r) for r in rows]

    async def request_swap(
        self,
        from_employee: Employee,
        to_employee: Employee,
        shift: Union[Shift, str],
    ) -> SwapRequest:
        from_sid = short_id(from_employee.name)
        to_sid = short_id(to_employee.name)
        if from_sid == to_sid or (from_employee.id and from_employee.id == to_employee.id):
            raise ValidationError("same_participants", "requester and recipient must be different employees")

        shift_id = shift.id if isinstance(shift, Shift) else str(shift)
        # the caller's copy may be stale
        live = await self.shifts.require(shift_id)
        if live.employee_id != from_sid:
            raise ValidationError(
                "not_shift_owner",
                f"{from_employee.name} does not own {live.describe()} (owner: {live.employee_id})",
            )

        if self.reject_duplicate_pending:
            existing = await self.pending_between(from_sid, to_sid)
            if existing:
                raise ValidationError(
                    "duplicate_pending_request",
                    f"a pending request from {from_sid} to {to_sid} already exists",
                )

        req = SwapRequest(
            from_employee_id=from_sid,
            from_employee_name=from_employee.name,
            to_employee_id=to_sid,
            to_employee_name=to_employee.name,
            shift_id=live.id,
            shift=live,
            status=SwapRequestStatus.PENDING,
            created_at=iso_now(),
        )
        entry = dict(
            kind=ActivityType.SWAP_REQUESTED,
            description=f"{from_employee.name} requested to swap {live.describe()} with {to_employee.name}",
            user_id=from_employee.id,
            user_name=from_employee.name,
        )
        if self.store.supports_transactions:
            async with self.store.transaction() as tx:
                req.id = await tx.insert(Collection.SWAP_REQUESTS, req.to_record())
                await self.ledger.record(**entry, details=_entry_details(req), tx=tx)
        else:
            req.id = await self.store.insert(Collection.SWAP_REQUESTS, req.to_record())
            await self._record_after_commit(entry, req)
        logger.info(
            "swap requested",
            extra={"request_id": req.id, "from": from_sid, "to": to_sid, "shift_id": live.id},
        )
        return req

    async def respond_to_swap(self, request_id: str, accept: bool, responder: Employee) -> SwapRequest:
        req = await self.get(request_id)
        if req is None:
            raise NotFoundError(Collection.SWAP_REQUESTS, str(request_id), code="swap_request_not_found")
        _check_respondable(req, responder)

        status = SwapRequestStatus.ACCEPTED if accept else SwapRequestStatus.DECLINED
        responded_at = iso_now()

        if self.store.supports_transactions:
            shift = await self._respond_atomic(req, status, responded_at, responder)
        else:
            shift = await self._respond_compensating(req, status, responded_at)
            await self._record_after_commit(_response_entry(req, shift, status, responder), req)

        req = req.model_copy(update={"status": status, "responded_at": responded_at})
        if shift is not None and status == SwapRequestStatus.ACCEPTED:
            req = req.model_copy(
                update={"shift": shift.model_copy(update={"employee_id": req.to_employee_id, "employee_name": req.to_employee_name})}
            )
        logger.info(
            "swap %s",
            status.value,
            extra={"request_id": req.id, "from": req.from_employee_id, "to": req.to_employee_id, "shift_id": req.shift_id},
        )
        return req

    async def _record_after_commit(self, entry: dict[str, Any], req: SwapRequest) -> None:
        # the swap write already committed; a lost ledger entry must not turn it into a failure
        try:
            await self.ledger.record(**entry, details=_entry_details(req))
        except Exception:
            logger.exception("activity entry not written", extra={"request_id": req.id, "kind": str(entry["kind"])})

    async def _respond_atomic(
        self,
        req: SwapRequest,
        status: SwapRequestStatus,
        responded_at: str,
        responder: Employee,
    ) -> Optional[Shift]:
        shift: Optional[Shift] = None
        async with self.store.transaction() as tx:
            rec = await tx.get_by_id(Collection.SWAP_REQUESTS, req.id)
            if rec is None:
                raise NotFoundError(Collection.SWAP_REQUESTS, req.id, code="swap_request_not_found")
            # another responder may have won the race
            _check_respondable(SwapRequest.from_record(rec), responder)

            if status == SwapRequestStatus.ACCEPTED:
                shift_rec = await tx.get_by_id(Collection.SHIFTS, req.shift_id)
                if shift_rec is None:
                    raise NotFoundError(Collection.SHIFTS, req.shift_id, code="shift_not_found")
                shift = Shift.from_record(shift_rec)
                _check_transferable(req, shift)
                await tx.update(
                    Collection.SHIFTS,
                    req.shift_id,
                    {"employeeId": req.to_employee_id, "employeeName": req.to_employee_name},
                )
            else:
                shift_rec = await tx.get_by_id(Collection.SHIFTS, req.shift_id)
                shift = Shift.from_record(shift_rec) if shift_rec is not None else None

            await tx.update(
                Collection.SWAP_REQUESTS,
                req.id,
                {"status": status.value, "respondedAt": responded_at},
            )
            await self.ledger.record(
                **_response_entry(req, shift, status, responder), details=_entry_details(req), tx=tx
            )
        return shift

    async def _respond_compensating(
        self,
        req: SwapRequest,
        status: SwapRequestStatus,
        responded_at: str,
    ) -> Optional[Shift]:
        shift = await self.shifts.get(req.shift_id)
        if status == SwapRequestStatus.DECLINED:
            await self.store.update(
                Collection.SWAP_REQUESTS, req.id, {"status": status.value, "respondedAt": responded_at}
            )
            return shift

        if shift is None:
            raise NotFoundError(Collection.SHIFTS, req.shift_id, code="shift_not_found")
        _check_transferable(req, shift)

        await self.shifts.update(
            req.shift_id, {"employee_id": req.to_employee_id, "employee_name": req.to_employee_name}
        )
        try:
            await self.store.update(
                Collection.SWAP_REQUESTS, req.id, {"status": status.value, "respondedAt": responded_at}
            )
        except Exception:
            logger.warning(
                "closing swap request failed, reverting shift owner",
                extra={"request_id": req.id, "shift_id": req.shift_id, "owner": shift.employee_id},
            )
            try:
                await self.shifts.update(
                    req.shift_id, {"employee_id": shift.employee_id, "employee_name": shift.employee_name}
                )
            except Exception:
                logger.exception(
                    "swap compensation failed, shift left with recipient",
                    extra={"request_id": req.id, "shift_id": req.shift_id, "to": req.to_employee_id},
                )
            raise
        return shift

    async def enrich(self, requests: list[SwapRequest]) -> list[SwapRequest]:
        """Fill the shift snapshot where it is missing.

        Lookups run concurrently; a deleted shift or a failed lookup marks the
        request as ``shift_unavailable`` instead of raising.
        """
        missing = [r for r in requests if r.shift is None]
        if not missing:
            return list(requests)

        results = await asyncio.gather(*(self.shifts.get(r.shift_id) for r in missing), return_exceptions=True)
        filled: dict[str, SwapRequest] = {}
        for r, res in zip(missing, results):
            if isinstance(res, BaseException):
                logger.warning("swap enrichment lookup failed", extra={"request_id": r.id, "shift_id": r.shift_id, "error": repr(res)})
                res = None
            if res is None:
                filled[r.id] = r.model_copy(update={"shift_unavailable": True})
            else:
                filled[r.id] = r.model_copy(update={"shift": res})
        return [filled.get(r.id, r) if r.shift is None else r for r in requests]

    async def _list(self, where: Optional[dict[str, Any]]) -> list[SwapRequest]:
        rows = await query_with_fallback(self.store, Collection.SWAP_REQUESTS, where, NEWEST_FIRST)
        return await self.enrich([SwapRequest.from_record(r) for r in rows])

    async def list_inbox(self, to_short_id: str, status: SwapRequestStatus | None = None) -> list[SwapRequest]:
        where: dict[str, Any] = {"toEmployeeId": str(to_short_id)}
        if status is not None:
            where["status"] = SwapRequestStatus(status).value
        return await self._list(where)

    async def list_outgoing(self, from_short_id: str, status: SwapRequestStatus | None = None) -> list[SwapRequest]:
        where: dict[str, Any] = {"fromEmployeeId": str(from_short_id)}
        if status is not None:
            where["status"] = SwapRequestStatus(status).value
        return await self._list(where)

    async def list_all(self) -> list[SwapRequest]:
        return await self._list(None)

    def subscribe_inbox(
        self,
        to_short_id: str,
        callback: Callable[[list[SwapRequest]], Any],
        on_error: ErrorHandler | None = None,
    ) -> Subscription:
        async def _convert(rows: list[Record]) -> list[SwapRequest]:
            return await self.enrich([SwapRequest.from_record(r) for r in rows])

        return self.store.subscribe(
            Collection.SWAP_REQUESTS,
            {"toEmployeeId": str(to_short_id)},
            NEWEST_FIRST,
            callback,
            transform=_convert,
            on_error=on_error,
        )

    async def cleanup(self, *, resolved_only: bool = False) -> int:
        rows = await self.store.get_all(Collection.SWAP_REQUESTS)
        removed = 0
        for r in rows:
            if resolved_only and r.get("status") == SwapRequestStatus.PENDING.value:
                continue
            await self.store.delete(Collection.SWAP_REQUESTS, r["id"])
            removed += 1
        logger.info("swap requests cleaned up", extra={"removed": removed, "resolved_only": resolved_only})
        return removed


def _check_respondable(req: SwapRequest, responder: Employee) -> None:
    if not req.is_pending:
        raise ValidationError("request_not_pending", f"swap request {req.id} is already {req.status.value}")
    if short_id(responder.name) != req.to_employee_id:
        raise ValidationError("not_request_recipient", f"only {req.to_employee_name} can respond to this request")


def _check_transferable(req: SwapRequest, shift: Shift) -> None:
    if shift.employee_id != req.from_employee_id:
        raise ValidationError(
            "shift_owner_changed",
            f"{shift.describe()} is no longer owned by {req.from_employee_id}",
        )


def _entry_details(req: SwapRequest) -> dict[str, Any]:
    return {"requestId": req.id, "shiftId": req.shift_id, "from": req.from_employee_id, "to": req.to_employee_id}


def _response_entry(
    req: SwapRequest, shift: Optional[Shift], status: SwapRequestStatus, responder: Employee
) -> dict[str, Any]:
    accepted = status == SwapRequestStatus.ACCEPTED
    what = shift.describe() if shift is not None else req.describe_shift()
    verb = "accepted" if accepted else "declined"
    return dict(
        kind=ActivityType.SWAP_ACCEPTED if accepted else ActivityType.SWAP_DECLINED,
        description=f"{req.to_employee_name} {verb} swap request from {req.from_employee_name} for {what}",
        user_id=responder.id,
        user_name=responder.name,
    )
