"""Test VexHttpClient file downloads."""

from __future__ import annotations

from unittest.mock import MagicMock

import aiohttp
import pytest

from vex_client import VexHttpClient
from vex_client.errors import (
    VexConnectionError,
    VexResponseError,
    VexTimeout,
)

from .conftest import create_mock_response


class TestDownloadFile:
    """Test GET /file/<fileID>."""

    async def test_download_success(self, mock_session: MagicMock) -> None:
        """Test successful download returns content and type."""
        client = VexHttpClient(mock_session, "chat.example.org:8000")

        mock_session.get.return_value = create_mock_response(
            status=200,
            read_data=b"\x89PNG",
            headers={"Content-Type": "image/png"},
        )

        content, content_type = await client.download_file("f-1")

        assert content == b"\x89PNG"
        assert content_type == "image/png"
        call_args = mock_session.get.call_args
        assert call_args.args[0] == "https://chat.example.org:8000/file/f-1"

    async def test_download_defaults_content_type(self, mock_session: MagicMock) -> None:
        """Test missing Content-Type falls back to octet-stream."""
        client = VexHttpClient(mock_session, "localhost:8000", secure=False)

        mock_session.get.return_value = create_mock_response(status=200, read_data=b"x")

        _, content_type = await client.download_file("f-1")

        assert content_type == "application/octet-stream"
        assert client.file_url("f-1") == "http://localhost:8000/file/f-1"

    async def test_download_404_raises_response_error(
        self, mock_session: MagicMock
    ) -> None:
        """Test missing file raises VexResponseError with the status."""
        client = VexHttpClient(mock_session, "chat.example.org:8000")

        mock_session.get.return_value = create_mock_response(status=404)

        with pytest.raises(VexResponseError, match="f-1") as exc_info:
            await client.download_file("f-1")
        assert exc_info.value.status == 404

    async def test_download_timeout_raises_vex_timeout(
        self, mock_session: MagicMock
    ) -> None:
        """Test timeout raises VexTimeout."""
        client = VexHttpClient(mock_session, "chat.example.org:8000")

        mock_session.get.side_effect = TimeoutError("Request timed out")

        with pytest.raises(VexTimeout, match="File download timed out"):
            await client.download_file("f-1")

    async def test_download_client_error_raises_connection_error(
        self, mock_session: MagicMock
    ) -> None:
        """Test aiohttp ClientError raises VexConnectionError."""
        client = VexHttpClient(mock_session, "chat.example.org:8000")

        mock_session.get.side_effect = aiohttp.ClientError("Connection refused")

        with pytest.raises(VexConnectionError, match="File download failed"):
            await client.download_file("f-1")

    async def test_download_uses_30_second_timeout(
        self, mock_session: MagicMock
    ) -> None:
        """Test download request uses 30 second timeout."""
        client = VexHttpClient(mock_session, "chat.example.org:8000")

        mock_session.get.return_value = create_mock_response(status=200, read_data=b"")

        await client.download_file("f-1")

        timeout = mock_session.get.call_args.kwargs.get("timeout")
        assert timeout is not None
        assert timeout.total == 30
