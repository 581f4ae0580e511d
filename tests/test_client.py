import time
from urllib.parse import parse_qs

import httpx
import pytest
import pytest_asyncio

from conftest import make_chat
from inbox_mirror.config import RemoteConfig
from inbox_mirror.mirror.engine import MirrorEngine
from inbox_mirror.remote.client import RemoteAPIError, RemoteAuthError, RemoteClient


class FakeMessenger:
    """Scripted remote API for httpx.MockTransport."""

    def __init__(self):
        self.token_status = 200
        self.token_calls = 0
        self.issued = []
        self.reject_tokens = set()
        self.requests: list[httpx.Request] = []
        self.chats = [make_chat("a", "a1")]
        self.messages = [{"id": "m1", "created": 1, "author_id": 555, "type": "text"}]
        self.status = 200

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path == "/token":
            self.token_calls += 1
            if self.token_status != 200:
                return httpx.Response(self.token_status, text="invalid_client")
            token = f"tok-{self.token_calls}"
            self.issued.append(token)
            return httpx.Response(200, json={"access_token": token, "expires_in": 86400})

        token = request.headers.get("authorization", "").removeprefix("Bearer ")
        if token in self.reject_tokens:
            return httpx.Response(401, json={"error": "expired"})
        if self.status != 200:
            return httpx.Response(self.status, text="upstream error")
        if request.url.path.endswith("/messages/"):
            return httpx.Response(200, json={"messages": self.messages})
        if request.url.path.endswith("/chats"):
            return httpx.Response(200, json={"chats": self.chats})
        return httpx.Response(404)


@pytest.fixture
def messenger():
    return FakeMessenger()


@pytest.fixture
def remote_config():
    return RemoteConfig(api_base="https://api.test", client_id="cid", client_secret="secret", user_id="100")


@pytest_asyncio.fixture
async def client(messenger, remote_config):
    remote = RemoteClient(remote_config, transport=httpx.MockTransport(messenger))
    yield remote
    await remote.aclose()


@pytest.mark.asyncio
async def test_token_request_is_form_encoded_client_credentials(client, messenger):
    token = await client.get_token()

    assert token == "tok-1"
    request = messenger.requests[0]
    assert request.method == "POST"
    assert request.headers["content-type"] == "application/x-www-form-urlencoded"
    form = parse_qs(request.content.decode())
    assert form == {"grant_type": ["client_credentials"], "client_id": ["cid"], "client_secret": ["secret"]}


@pytest.mark.asyncio
async def test_token_is_reused_while_valid(client, messenger):
    await client.list_conversations(0, 100)
    await client.get_recent_messages("a", 50)

    assert messenger.token_calls == 1


@pytest.mark.asyncio
async def test_token_refreshed_inside_safety_margin(client, messenger, remote_config):
    await client.get_token()
    client.token_cache.expires_at = time.time() + remote_config.token_refresh_margin_seconds - 1

    assert await client.get_token() == "tok-2"


@pytest.mark.asyncio
async def test_unauthorized_triggers_single_reauthorization(client, messenger):
    await client.get_token()
    messenger.reject_tokens.add("tok-1")

    chats = await client.list_conversations(0, 100)

    assert [c["id"] for c in chats] == ["a"]
    assert messenger.token_calls == 2
    assert messenger.requests[-1].headers["authorization"] == "Bearer tok-2"


@pytest.mark.asyncio
async def test_unauthorized_after_retry_fails(client, messenger):
    messenger.reject_tokens.update({"tok-1", "tok-2", "tok-3"})

    with pytest.raises(RemoteAPIError):
        await client.list_conversations(0, 100)
    assert messenger.token_calls == 2


@pytest.mark.asyncio
async def test_listing_request_shape(client, messenger):
    await client.list_conversations(200, 100)

    request = messenger.requests[-1]
    assert request.url.path == "/messenger/v2/accounts/100/chats"
    assert dict(request.url.params) == {"chat_types": "u2i", "limit": "100", "offset": "200"}
    assert request.headers["authorization"] == "Bearer tok-1"


@pytest.mark.asyncio
async def test_messages_request_shape(client, messenger):
    messages = await client.get_recent_messages("u2i-abc~def", 50)

    request = messenger.requests[-1]
    assert request.url.path == "/messenger/v3/accounts/100/chats/u2i-abc~def/messages/"
    assert dict(request.url.params) == {"limit": "50", "offset": "0"}
    assert messages[0]["id"] == "m1"


@pytest.mark.asyncio
async def test_non_200_raises_remote_error(client, messenger):
    messenger.status = 503

    with pytest.raises(RemoteAPIError):
        await client.get_recent_messages("a", 50)


@pytest.mark.asyncio
async def test_malformed_listing_raises(client, messenger):
    messenger.chats = None

    with pytest.raises(RemoteAPIError):
        await client.list_conversations(0, 100)


@pytest.mark.asyncio
async def test_token_failure_raises_auth_error(client, messenger):
    messenger.token_status = 500

    with pytest.raises(RemoteAuthError):
        await client.list_conversations(0, 100)


@pytest.mark.asyncio
async def test_transport_error_raises_remote_error(remote_config):
    def broken(request):
        raise httpx.ConnectError("connection refused", request=request)

    remote = RemoteClient(remote_config, transport=httpx.MockTransport(broken))
    try:
        with pytest.raises(RemoteAuthError):
            await remote.get_token()
    finally:
        await remote.aclose()


@pytest.mark.asyncio
async def test_token_failure_is_not_fatal_for_sweep_or_refresh(
    client, messenger, cache_store, state_store, sync_config
):
    messenger.token_status = 500
    engine = MirrorEngine(client, cache_store, state_store, sync_config)

    report = await engine.run_sweep()
    refreshed = await engine.refresh_conversation("a")

    assert report.status == "completed"
    assert report.listing_failed
    assert report.errors == 1
    assert refreshed is False


@pytest.mark.asyncio
async def test_sweep_against_fake_messenger(client, messenger, cache_store, state_store, sync_config):
    messenger.chats = [make_chat("a", "a1"), make_chat("b", "b1")]
    engine = MirrorEngine(client, cache_store, state_store, sync_config)

    report = await engine.run_sweep()

    assert (report.checked, report.updated, report.errors) == (2, 2, 0)
    assert cache_store.load("b").messages[0].id == "m1"
