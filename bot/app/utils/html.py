from __future__ import annotations

import html

from shared.schemas import Shift, SwapRequest


def esc(s: str | None) -> str:
    if s is None:
        return ""
    return html.escape(str(s), quote=False)


def format_shift_line(shift: Shift) -> str:
    return (
        f"📅 <b>{shift.date.strftime('%a %d.%m.%Y')}</b> "
        f"{esc(shift.type.value)} {esc(shift.start_time)}–{esc(shift.end_time)}"
    )


def format_shift_list(shifts: list[Shift]) -> str:
    if not shifts:
        return "You have no upcoming shifts."
    return "\n".join(["<b>Your upcoming shifts</b>", *[format_shift_line(s) for s in shifts]])


def format_swap_request(req: SwapRequest) -> str:
    lines = [f"🔁 <b>{esc(req.from_employee_name)}</b> asks you to take their shift"]
    if req.shift is not None:
        lines.append(format_shift_line(req.shift))
    else:
        lines.append(f"<i>{esc(req.describe_shift())}</i>")
    if not req.is_pending:
        lines.append(f"Status: <b>{esc(req.status.value)}</b>")
    return "\n".join(lines)
