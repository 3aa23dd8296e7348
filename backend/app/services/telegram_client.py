import asyncio
from dataclasses import dataclass
import logging
from pathlib import PurePosixPath

import httpx


logger = logging.getLogger(__name__)

_RETRY_STATUSES = {408, 429, 500, 502, 503, 504}


@dataclass(frozen=True)
class FileFetched:
    file_id: str
    file_path: str
    data: bytes

    @property
    def extension(self) -> str:
        return PurePosixPath(self.file_path).suffix.lower()


@dataclass(frozen=True)
class FileFetchFailed:
    file_id: str
    reason: str  # not_a_file | no_token | http_error | timeout | network | empty
    retriable: bool = False
    status_code: int | None = None


FetchResult = FileFetched | FileFetchFailed


class TelegramFileSource:
    """
    Resolves a bot file_id to its bytes (getFile, then the file download URL).

    Always returns a FetchResult; callers branch on the type instead of guessing
    from the shape of the id string.
    """

    def __init__(
        self,
        bot_token: str,
        *,
        api_base: str = "https://api.telegram.org",
        timeout_s: float = 30.0,
        max_retries: int = 2,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.bot_token = (bot_token or "").strip()
        self.api_base = (api_base or "").rstrip("/")
        self.timeout_s = timeout_s
        self.max_retries = max_retries
        self.transport = transport

    async def fetch_file(self, file_id: str) -> FetchResult:
        file_id = (file_id or "").strip()
        if not self.bot_token:
            logger.error("No bot token configured; cannot fetch %s", file_id)
            return FileFetchFailed(file_id=file_id, reason="no_token")
        if not file_id:
            return FileFetchFailed(file_id=file_id, reason="not_a_file")

        async with httpx.AsyncClient(timeout=self.timeout_s, transport=self.transport) as client:
            info = await self._request(client, f"{self.api_base}/bot{self.bot_token}/getFile", file_id, params={"file_id": file_id})
            if isinstance(info, FileFetchFailed):
                return info

            try:
                payload = info.json()
            except ValueError:
                payload = {}
            result = payload.get("result") if isinstance(payload, dict) and payload.get("ok") else None
            file_path = (result or {}).get("file_path")
            if not file_path:
                logger.warning("getFile returned no file_path for %s: %s", file_id, payload)
                return FileFetchFailed(file_id=file_id, reason="not_a_file")

            download = await self._request(client, f"{self.api_base}/file/bot{self.bot_token}/{file_path}", file_id)
            if isinstance(download, FileFetchFailed):
                return download

        if not download.content:
            return FileFetchFailed(file_id=file_id, reason="empty")

        logger.info("Fetched %s (%d bytes) from %s", file_id, len(download.content), file_path)
        return FileFetched(file_id=file_id, file_path=file_path, data=download.content)

    async def _request(
        self,
        client: httpx.AsyncClient,
        url: str,
        file_id: str,
        *,
        params: dict | None = None,
    ) -> httpx.Response | FileFetchFailed:
        for attempt in range(self.max_retries + 1):
            try:
                r = await client.get(url, params=params)
            except (httpx.ReadTimeout, httpx.ConnectTimeout, httpx.PoolTimeout):
                if attempt < self.max_retries:
                    backoff = 0.5 * (2**attempt)
                    logger.warning("Telegram timeout for %s; retrying in %.1fs", file_id, backoff)
                    await asyncio.sleep(backoff)
                    continue
                return FileFetchFailed(file_id=file_id, reason="timeout", retriable=True)
            except httpx.RequestError as e:
                if attempt < self.max_retries:
                    backoff = 0.5 * (2**attempt)
                    logger.warning("Telegram network error (%s) for %s; retrying in %.1fs", type(e).__name__, file_id, backoff)
                    await asyncio.sleep(backoff)
                    continue
                return FileFetchFailed(file_id=file_id, reason="network", retriable=True)

            if r.status_code in _RETRY_STATUSES:
                if attempt < self.max_retries:
                    backoff = 0.5 * (2**attempt)
                    logger.warning("Telegram HTTP %s for %s; retrying in %.1fs", r.status_code, file_id, backoff)
                    await asyncio.sleep(backoff)
                    continue
                return FileFetchFailed(file_id=file_id, reason="http_error", retriable=True, status_code=r.status_code)

            if r.status_code in {400, 404}:
                # Telegram answers 400 "wrong file_id" for anything that is not a file id.
                return FileFetchFailed(file_id=file_id, reason="not_a_file", status_code=r.status_code)
            if r.status_code >= 400:
                logger.error("Telegram HTTP %s for %s", r.status_code, file_id)
                return FileFetchFailed(file_id=file_id, reason="http_error", status_code=r.status_code)
            return r

        return FileFetchFailed(file_id=file_id, reason="http_error", retriable=True)
