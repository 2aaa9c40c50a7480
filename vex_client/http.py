"""HTTP client for Vex server file endpoints."""

from __future__ import annotations

import aiohttp

from .errors import (
    VexConnectionError,
    VexResponseError,
    VexTimeout,
)


class VexHttpClient:
    """HTTP client wrapper for Vex server file endpoints."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        host: str,
        *,
        secure: bool = True,
    ) -> None:
        self._session = session
        self._host = host
        self._secure = secure

    @property
    def base_url(self) -> str:
        scheme = "https" if self._secure else "http"
        return f"{scheme}://{self._host}"

    def file_url(self, file_id: str) -> str:
        return f"{self.base_url}/file/{file_id}"

    async def download_file(self, file_id: str) -> tuple[bytes, str]:
        """Fetch an uploaded file's content.

        Returns:
            File bytes and the reported content type.

        Raises:
            VexResponseError: If the server returns a non-200 status
            VexTimeout: If the request times out
            VexConnectionError: If the network request fails
        """
        url = self.file_url(file_id)
        try:
            async with self._session.get(
                url,
                timeout=aiohttp.ClientTimeout(total=30),
            ) as resp:
                if resp.status != 200:
                    raise VexResponseError(
                        resp.status, f"File download failed for {file_id}"
                    )
                content = await resp.read()
                content_type = resp.headers.get(
                    "Content-Type", "application/octet-stream"
                )
                return content, content_type
        except TimeoutError as err:
            raise VexTimeout("File download timed out") from err
        except aiohttp.ClientError as err:
            raise VexConnectionError("File download failed") from err
