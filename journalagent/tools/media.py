"""Remote image download into inline multimodal parts."""

from __future__ import annotations

import base64

import httpx

from journalagent.config.settings import settings
from journalagent.core.transcript import InlineMediaPart
from journalagent.util.http_client import SharedAsyncClient, describe_http_error
from journalagent.util.logger import logger


image_http_client = SharedAsyncClient("images", timeout=lambda: settings.image_fetch_timeout_seconds)


class ImageFetcher:
    def __init__(self, *, http: SharedAsyncClient | None = None, max_bytes: int | None = None) -> None:
        self._http = http or image_http_client
        self._max_bytes = settings.image_fetch_max_bytes if max_bytes is None else max_bytes

    async def fetch(self, url: str) -> InlineMediaPart | None:
        """Inline part for ``url``, or ``None`` when it cannot be fetched as an image."""

        if not url.lower().startswith(("http://", "https://")):
            logger.warning("image fetch skipped, unsupported url scheme")
            return None
        client = await self._http.get()
        try:
            async with client.stream("GET", url) as response:
                if response.status_code >= 400:
                    logger.warning("image fetch failed url=%s status=%s", url[:80], response.status_code)
                    return None
                mime_type = response.headers.get("content-type", "image/png").split(";")[0].strip().lower() or "image/png"
                if not mime_type.startswith("image/"):
                    logger.warning("image fetch rejected url=%s content_type=%s", url[:80], mime_type)
                    return None
                body = bytearray()
                async for chunk in response.aiter_bytes():
                    body.extend(chunk)
                    if len(body) > self._max_bytes:
                        # 超过上限立即断开，不读完剩余内容
                        logger.warning("image fetch rejected url=%s bytes>%s", url[:80], self._max_bytes)
                        return None
        except httpx.HTTPError as exc:
            logger.warning("image fetch failed url=%s error=%s", url[:80], describe_http_error(exc))
            return None
        return InlineMediaPart(mime_type=mime_type, data=base64.b64encode(bytes(body)).decode("ascii"))
