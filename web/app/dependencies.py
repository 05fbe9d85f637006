from __future__ import annotations

from fastapi import HTTPException, Request, status

from shared.enums import EmployeeRole
from shared.schemas import Employee
from shared.services.core import SchedulingCore


def get_core(request: Request) -> SchedulingCore:
    return request.app.state.core


async def load_actor(core: SchedulingCore, employee_id: str) -> Employee:
    """Resolve the acting employee by durable id (raises NotFoundError)."""
    return await core.directory.require(employee_id)


async def require_manager(core: SchedulingCore, employee_id: str) -> Employee:
    emp = await load_actor(core, employee_id)
    if emp.role != EmployeeRole.MANAGER:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"code": "manager_required", "message": f"{emp.name} is not a manager"},
        )
    return emp
