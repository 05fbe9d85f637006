import logging

import httpx

from shared.schemas import Employee, SwapRequest


logger = logging.getLogger(__name__)


class Messenger:
    def __init__(self, bot_token: str):
        self.base = f"https://api.telegram.org/bot{bot_token}"

    async def send_message(self, chat_id: int, text: str) -> bool:
        url = f"{self.base}/sendMessage"
        async with httpx.AsyncClient(timeout=10) as client:
            try:
                resp = await client.post(url, data={"chat_id": chat_id, "text": text})
                return resp.status_code == 200 and resp.json().get("ok") is True
            except httpx.HTTPError:
                logger.exception("telegram send failed", extra={"chat_id": chat_id})
                return False

    async def notify_swap_request(self, req: SwapRequest, recipient: Employee) -> bool:
        if recipient.tg_id is None:
            return False
        text = (
            f"{req.from_employee_name} asks you to take their {req.describe_shift()}.\n"
            "Open /inbox to accept or decline."
        )
        ok = await self.send_message(int(recipient.tg_id), text)
        logger.info("swap request notification", extra={"request_id": req.id, "to": req.to_employee_id, "ok": ok})
        return ok
