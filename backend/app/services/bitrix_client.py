import asyncio
import json
import logging
from typing import Any

import httpx

from ..utils.error_handlers import UpstreamServiceError


logger = logging.getLogger(__name__)

# Contact user fields configured in the CRM for bot applications.
CONTACT_FIELDS = {
    "position": "UF_CRM_1752239621",
    "city": "UF_CRM_1752239635",
    "degree": "UF_CRM_1752239653",
    "username": "UF_CRM_CONTACT_1745579971270",
    "age": "UF_CRM_1752622669492",
    "phone_backup": "UF_CRM_1747689959",
}

RESUME_FIELD = "UF_CRM_1752621810"
DIPLOMA_FIELD = "UF_CRM_1752621831"
# Voice answers, question 1..3
VOICE_FIELDS = ("UF_CRM_1752621857", "UF_CRM_1752621874", "UF_CRM_1752621887")
# Text answers, question 1..3 (also receive "Voice answer: <url>" for voice replies)
ANSWER_FIELDS = ("UF_CRM_1752241370", "UF_CRM_1752241378", "UF_CRM_1752241386")

# field -> human label, in display order
FILE_FIELDS = {
    RESUME_FIELD: "Resume",
    DIPLOMA_FIELD: "Diploma",
    VOICE_FIELDS[0]: "Voice Q1",
    VOICE_FIELDS[1]: "Voice Q2",
    VOICE_FIELDS[2]: "Voice Q3",
}

DEAL_CATEGORY_ID = "55"
DEAL_STATUS_ID = "C55:NEW"
DEAL_UTM_SOURCE = "hr_telegram_bot"

_RETRY_STATUSES = {408, 429, 500, 502, 503, 504}


class CRMError(UpstreamServiceError):
    def __init__(self, message: str, *, status_code: int | None = None, method: str | None = None):
        super().__init__(message, details={"crm_status": status_code, "method": method})
        self.crm_status = status_code
        self.method = method


class CRMUnavailable(CRMError):
    pass


def _safe_truncate(s: str, n: int = 800) -> str:
    s = s or ""
    if len(s) <= n:
        return s
    return s[:n] + "…"


class BitrixClient:
    """
    Thin async client for a Bitrix24 inbound webhook (`https://<portal>/rest/<user>/<token>`).

    Methods map 1:1 onto REST methods; the caller decides ordering. Transient
    failures are retried here with exponential backoff, everything else raises CRMError.
    """

    def __init__(
        self,
        webhook_base: str,
        *,
        timeout_s: float = 30.0,
        max_retries: int = 2,
        transport: httpx.AsyncBaseTransport | None = None,
        log_payloads: bool = False,
    ):
        self.webhook_base = (webhook_base or "").rstrip("/")
        self.timeout_s = timeout_s
        self.max_retries = max_retries
        self.transport = transport
        self.log_payloads = log_payloads

    async def call(self, method: str, payload: dict[str, Any] | None = None) -> Any:
        if not self.webhook_base:
            raise CRMUnavailable("CRM webhook URL is not configured", method=method)

        url = f"{self.webhook_base}/{method}.json"
        body = payload or {}

        for attempt in range(self.max_retries + 1):
            try:
                async with httpx.AsyncClient(timeout=self.timeout_s, transport=self.transport) as client:
                    if self.log_payloads:
                        logger.info("CRM request method=%s body=%s", method, _safe_truncate(json.dumps(body, ensure_ascii=False)))
                    r = await client.post(url, json=body)

                if r.status_code in _RETRY_STATUSES and attempt < self.max_retries:
                    backoff = 0.5 * (2**attempt)
                    logger.warning("CRM HTTP %s on %s; retrying in %.1fs", r.status_code, method, backoff)
                    await asyncio.sleep(backoff)
                    continue

                try:
                    data = r.json()
                except ValueError:
                    data = None

                if r.status_code >= 400 or not isinstance(data, dict) or data.get("error"):
                    description = ""
                    if isinstance(data, dict):
                        description = str(data.get("error_description") or data.get("error") or "")
                    message = description or _safe_truncate(r.text, 300)
                    logger.error("CRM %s failed status=%s: %s", method, r.status_code, message)
                    raise CRMError(f"CRM {method} failed: {message}", status_code=r.status_code, method=method)

                return data

            except (httpx.ReadTimeout, httpx.ConnectTimeout, httpx.PoolTimeout):
                if attempt < self.max_retries:
                    backoff = 0.5 * (2**attempt)
                    logger.warning("CRM timeout on %s; retrying in %.1fs", method, backoff)
                    await asyncio.sleep(backoff)
                    continue
                raise CRMUnavailable(f"CRM {method} timed out", method=method) from None
            except httpx.RequestError as e:
                if attempt < self.max_retries:
                    backoff = 0.5 * (2**attempt)
                    logger.warning("CRM network error (%s) on %s; retrying in %.1fs", type(e).__name__, method, backoff)
                    await asyncio.sleep(backoff)
                    continue
                raise CRMUnavailable(f"CRM {method} failed: {type(e).__name__}", method=method) from e

        raise CRMUnavailable(f"CRM {method} kept failing after {self.max_retries} retries", method=method)

    # -------------------- contacts --------------------

    async def find_contact_by_phone(self, phone: str) -> str | None:
        if not phone:
            return None
        data = await self.call("crm.contact.list", {"filter": {"PHONE": phone}, "select": ["ID"]})
        rows = data.get("result") or []
        return str(rows[0]["ID"]) if rows else None

    async def create_contact(self, fields: dict[str, Any]) -> str:
        data = await self.call("crm.contact.add", {"fields": fields})
        contact_id = data.get("result")
        if not contact_id:
            raise CRMError("CRM did not return a contact id", method="crm.contact.add")
        return str(contact_id)

    async def update_contact(self, contact_id: str, fields: dict[str, Any]) -> None:
        await self.call("crm.contact.update", {"id": contact_id, "fields": fields})

    async def list_contacts(
        self,
        select: list[str],
        filter: dict[str, Any] | None = None,
        *,
        max_pages: int = 200,
    ) -> list[dict[str, Any]]:
        """All contacts matching `filter`, following the `next` cursor (50 per page)."""
        out: list[dict[str, Any]] = []
        start: int | None = 0
        pages = 0
        while start is not None and pages < max_pages:
            data = await self.call(
                "crm.contact.list",
                {"order": {"ID": "DESC"}, "filter": filter or {}, "select": select, "start": start},
            )
            out.extend(data.get("result") or [])
            start = data.get("next")
            pages += 1
        return out

    # -------------------- deals --------------------

    async def find_deal_by_contact(self, contact_id: str) -> str | None:
        if not contact_id:
            return None
        data = await self.call("crm.deal.list", {"filter": {"CONTACT_ID": contact_id}, "select": ["ID"]})
        rows = data.get("result") or []
        return str(rows[0]["ID"]) if rows else None

    async def create_deal(self, fields: dict[str, Any]) -> str:
        data = await self.call("crm.deal.add", {"fields": fields, "params": {"REGISTER_SONET_EVENT": "Y"}})
        deal_id = data.get("result")
        if not deal_id:
            raise CRMError("CRM did not return a deal id", method="crm.deal.add")
        return str(deal_id)

    async def update_deal(self, deal_id: str, fields: dict[str, Any]) -> None:
        await self.call("crm.deal.update", {"id": deal_id, "fields": fields, "params": {"REGISTER_SONET_EVENT": "Y"}})
