"""Unit tests for SalesExportClient."""
from unittest.mock import AsyncMock, MagicMock

import pytest

from pulse_core.sources.exceptions import SourceRequestError, SourceUnavailable
from pulse_core.sources.sales_client import SalesExportClient


CSV_TEXT = "event,item_name,plan,date,checkbox,price\npurchase,Course,Full,2024-01-01,true,10\n"


def _response(status: int = 200, text: str = ""):
    mock_response = AsyncMock()
    mock_response.status = status
    mock_response.text.return_value = text
    mock_response.headers = {}
    mock_response.__aenter__.return_value = mock_response
    return mock_response


@pytest.fixture
def mock_session():
    """Mock aiohttp ClientSession."""
    return MagicMock()


def test_requires_source(mock_session):
    with pytest.raises(ValueError):
        SalesExportClient("", mock_session)


@pytest.mark.asyncio
async def test_remote_download(mock_session):
    client = SalesExportClient("https://example.com/export.csv", mock_session)
    mock_session.get.return_value = _response(text=CSV_TEXT)

    assert client.is_remote
    assert await client.fetch_csv() == CSV_TEXT
    mock_session.get.assert_called_once_with("https://example.com/export.csv")


@pytest.mark.asyncio
async def test_remote_server_error_is_retried(mock_session):
    sleep = AsyncMock()
    client = SalesExportClient(
        "https://example.com/export.csv", mock_session, sleep=sleep
    )
    mock_session.get.side_effect = [_response(status=502, text="bad gateway"),
                                    _response(text=CSV_TEXT)]

    assert await client.fetch_csv() == CSV_TEXT
    sleep.assert_awaited_once_with(1.0)


@pytest.mark.asyncio
async def test_remote_not_found_is_not_retried(mock_session):
    client = SalesExportClient(
        "https://example.com/export.csv", mock_session, sleep=AsyncMock()
    )
    mock_session.get.return_value = _response(status=404, text="gone")

    with pytest.raises(SourceRequestError):
        await client.fetch_csv()

    assert mock_session.get.call_count == 1


@pytest.mark.asyncio
async def test_local_file(tmp_path, mock_session):
    export = tmp_path / "sales.csv"
    export.write_text(CSV_TEXT, encoding="utf-8")

    client = SalesExportClient(str(export), mock_session)
    assert not client.is_remote
    assert await client.fetch_csv() == CSV_TEXT

    client = SalesExportClient(f"file://{export}", mock_session)
    assert await client.fetch_csv() == CSV_TEXT
    mock_session.get.assert_not_called()


@pytest.mark.asyncio
async def test_missing_local_file(tmp_path, mock_session):
    client = SalesExportClient(str(tmp_path / "missing.csv"), mock_session)

    with pytest.raises(SourceUnavailable):
        await client.fetch_csv()
