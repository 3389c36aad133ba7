"""
Cursor Agent Client Tests
=========================
"""

import json
from uuid import uuid4

import httpx
import pytest

from orchestra.core.integrations.cursor_agent import CursorAgentClient
from orchestra.core.models import Credential, Epic, Repository, Task
from orchestra.core.orchestration.errors import (
    AgentLaunchError,
    PreconditionError,
    ValidationError,
)

API_URL = "https://cursor.test/v0/agents"
WEBHOOK_URL = "https://orchestra.test/webhooks/cursor/1"
BRANCH = "cursor-agent/task-1-abcd1234"


def make_task(description: str = "Add a health endpoint", github_url: str = "https://github.com/acme/widgets") -> Task:
    repository = Repository(id=uuid4(), name="acme/widgets", github_url=github_url)
    epic = Epic(id=uuid4(), title="Widgets", base_branch="develop", repository=repository)
    return Task(id=uuid4(), description=description, position=0, epic=epic)


def make_client(handler, api_key: str = "cursor-key") -> CursorAgentClient:
    credential = Credential(service_name="cursor_agent", name="Cursor", api_key=api_key)
    return CursorAgentClient(
        credential,
        api_url=API_URL,
        webhook_secret="s3cret",
        transport=httpx.MockTransport(handler),
    )


class TestConstruction:
    def test_requires_credential(self):
        with pytest.raises(PreconditionError):
            CursorAgentClient(None)

    def test_requires_api_key(self):
        with pytest.raises(PreconditionError):
            CursorAgentClient(Credential(service_name="cursor_agent", name="Cursor", api_key="  "))


class TestLaunchAgent:
    async def test_request_shape(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(201, json={"id": "agent-9", "status": "CREATING"})

        task = make_task()
        body = await make_client(handler).launch_agent(task, WEBHOOK_URL, BRANCH)

        assert body["id"] == "agent-9"
        [request] = requests
        assert request.method == "POST"
        assert str(request.url) == API_URL
        assert request.headers["Authorization"] == "Bearer cursor-key"
        assert json.loads(request.content) == {
            "prompt": {"text": "Add a health endpoint"},
            "source": {"repository": "https://github.com/acme/widgets", "ref": "develop"},
            "target": {"branchName": BRANCH, "autoCreatePr": True},
            "webhook": {"url": WEBHOOK_URL, "secret": "s3cret"},
        }

    async def test_error_response_message(self):
        def handler(request):
            return httpx.Response(401, json={"error": "Invalid API key"})

        with pytest.raises(AgentLaunchError) as exc_info:
            await make_client(handler).launch_agent(make_task(), WEBHOOK_URL, BRANCH)

        assert exc_info.value.message == "Cursor API request failed (401): Invalid API key"

    async def test_error_response_plain_text(self):
        def handler(request):
            return httpx.Response(502, text="Bad Gateway")

        with pytest.raises(AgentLaunchError) as exc_info:
            await make_client(handler).launch_agent(make_task(), WEBHOOK_URL, BRANCH)

        assert exc_info.value.message == "Cursor API request failed (502): Bad Gateway"

    async def test_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(AgentLaunchError) as exc_info:
            await make_client(handler).launch_agent(make_task(), WEBHOOK_URL, BRANCH)

        assert exc_info.value.message.startswith("Failed to communicate with Cursor API")

    @pytest.mark.parametrize(
        "response",
        [httpx.Response(200, text="not json"), httpx.Response(200, json=["agent-1"])],
    )
    async def test_unparseable_body(self, response):
        with pytest.raises(AgentLaunchError) as exc_info:
            await make_client(lambda request: response).launch_agent(make_task(), WEBHOOK_URL, BRANCH)

        assert exc_info.value.message.startswith("Failed to parse Cursor API response")


class TestLaunchValidation:
    """Incomplete input never reaches the network."""

    def handler(self, request):
        raise AssertionError("no request expected")

    async def test_blank_description(self):
        with pytest.raises(ValidationError):
            await make_client(self.handler).launch_agent(make_task(description=" "), WEBHOOK_URL, BRANCH)

    async def test_missing_github_url(self):
        with pytest.raises(ValidationError):
            await make_client(self.handler).launch_agent(make_task(github_url=""), WEBHOOK_URL, BRANCH)

    async def test_blank_branch(self):
        with pytest.raises(ValidationError):
            await make_client(self.handler).launch_agent(make_task(), WEBHOOK_URL, "")

    async def test_blank_webhook_url(self):
        with pytest.raises(ValidationError):
            await make_client(self.handler).launch_agent(make_task(), "", BRANCH)
