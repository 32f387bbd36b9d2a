"""Integration tests for background job submission retries"""

import httpx
import pytest
from unittest.mock import AsyncMock, patch
from statement_ledger.domain.exceptions import JobSubmissionError
from statement_ledger.infrastructure.clients.jobs import WebhookJobClient

WEBHOOK_URL = "http://jobs.example/jobs"


def _response(status_code: int) -> httpx.Response:
    return httpx.Response(status_code, request=httpx.Request("POST", WEBHOOK_URL))


@patch("statement_ledger.infrastructure.clients.jobs.asyncio.sleep", new_callable=AsyncMock)
@patch("httpx.AsyncClient.post")
async def test_submit_retries_then_succeeds(mock_post: AsyncMock, mock_sleep: AsyncMock):
    """Test 5xx responses are retried with exponential backoff"""
    mock_post.side_effect = [_response(503), _response(502), _response(202)]

    await WebhookJobClient(WEBHOOK_URL).submit("categorize-businesses", {"batch_id": 1})

    assert mock_post.await_count == 3
    assert [call.args[0] for call in mock_sleep.await_args_list] == [1.0, 2.0]
    assert mock_post.await_args.kwargs["json"] == {"job": "categorize-businesses", "payload": {"batch_id": 1}}


@patch("statement_ledger.infrastructure.clients.jobs.asyncio.sleep", new_callable=AsyncMock)
@patch("httpx.AsyncClient.post")
async def test_submit_gives_up_after_max_retries(mock_post: AsyncMock, mock_sleep: AsyncMock):
    mock_post.side_effect = httpx.ConnectError("refused")
    client = WebhookJobClient(WEBHOOK_URL)

    with pytest.raises(JobSubmissionError):
        await client.submit("categorize-businesses", {"batch_id": 1})

    assert mock_post.await_count == client.max_retries
