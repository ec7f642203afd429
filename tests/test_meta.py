"""Messenger / WhatsApp webhook handshake, events and test sends."""

import hashlib
import hmac
import json

import httpx
import pytest

from agent_relay.config import AgentSeed, MetaConfig, MetaSeed
from agent_relay.messenger.meta import GraphClient, GraphSendError, classify_entry
from tests.fakes import FakeProvider

pytestmark = pytest.mark.integration


def _messenger_entry(sender="1", text="hello"):
    return {"id": "page", "messaging": [{"sender": {"id": sender}, "message": {"text": text}}]}


def _whatsapp_entry(sender="15551234", text="hola", phone_number_id=None):
    value = {"messages": [{"from": sender, "text": {"body": text}}]}
    if phone_number_id:
        value["metadata"] = {"phone_number_id": phone_number_id}
    return {"id": "waba", "changes": [{"field": "messages", "value": value}]}


def test_classify_entry():
    assert classify_entry(_messenger_entry()) == "messenger"
    assert classify_entry(_whatsapp_entry()) == "whatsapp"
    assert classify_entry({"id": "x"}) == "unknown"
    assert classify_entry("junk") == "unknown"


async def test_handshake_echoes_challenge(client):
    response = await client.get(
        "/meta/webhook",
        params={
            "agentId": "support",
            "hub.mode": "subscribe",
            "hub.verify_token": "verify-me",
            "hub.challenge": "12345",
        },
    )

    assert response.status_code == 200
    assert response.text == "12345"


async def test_handshake_rejects_wrong_token(client):
    response = await client.get(
        "/meta/webhook",
        params={
            "agentId": "support",
            "hub.mode": "subscribe",
            "hub.verify_token": "wrong",
            "hub.challenge": "12345",
        },
    )

    assert response.status_code == 403
    assert "12345" not in response.text


async def test_handshake_errors(client):
    missing = await client.get("/meta/webhook", params={"hub.mode": "subscribe"})
    unknown = await client.get("/meta/webhook", params={"agentId": "ghost"})

    assert missing.status_code == 400
    assert missing.json() == {"error": "Missing agentId"}
    assert unknown.status_code == 404
    assert unknown.json() == {"error": "Meta config not found"}


async def test_handshake_works_before_access_token_is_set(make_relay, make_client):
    relay = await make_relay(
        agents=[AgentSeed(id="ops", name="Ops", meta=MetaSeed(verify_token="v", access_token=""))]
    )
    client = make_client(relay)

    handshake = await client.get(
        "/meta/webhook",
        params={
            "agentId": "ops",
            "hub.mode": "subscribe",
            "hub.verify_token": "v",
            "hub.challenge": "42",
        },
    )
    event = await client.post("/meta/webhook?agentId=ops", json={"entry": [_messenger_entry()]})

    assert handshake.status_code == 200
    assert handshake.text == "42"
    assert event.status_code == 404


async def test_mixed_payload_replies_on_both_channels(make_relay, make_client, graph):
    relay = await make_relay([FakeProvider(reply="Hi!")])
    client = make_client(relay)

    response = await client.post(
        "/meta/webhook?agentId=support",
        json={"object": "page", "entry": [_messenger_entry(), _whatsapp_entry()]},
    )

    assert response.json() == {"ok": True}
    assert graph.messenger == [("page-token", "1", "Hi!")]
    assert graph.whatsapp == [("page-token", "PNID", "15551234", "Hi!")]
    assert await relay.sessions.get_latest("support", "messenger_1") is not None
    assert await relay.sessions.get_latest("support", "whatsapp_15551234") is not None


async def test_events_do_not_replay_history(make_relay, make_client):
    provider = FakeProvider(reply="ok")
    relay = await make_relay([provider])
    client = make_client(relay)

    for text in ("one", "two"):
        await client.post(
            "/meta/webhook?agentId=support", json={"entry": [_messenger_entry(text=text)]}
        )

    assert provider.calls[1]["messages"] == [{"role": "user", "content": "two"}]


async def test_failed_send_does_not_stop_other_messages(relay, client, graph):
    graph.fail_recipients.add("1")
    entry = {
        "messaging": [
            {"sender": {"id": "1"}, "message": {"text": "first"}},
            {"sender": {"id": "2"}, "message": {"text": "second"}},
        ]
    }

    response = await client.post("/meta/webhook?agentId=support", json={"entry": [entry]})

    assert response.status_code == 200
    assert [r for _, r, _ in graph.messenger] == ["2"]
    assert await relay.sessions.get_latest("support", "messenger_1") is not None


async def test_non_text_events_are_skipped(relay, client, graph):
    entry = {"messaging": [{"sender": {"id": "1"}, "delivery": {"watermark": 1}}]}

    response = await client.post("/meta/webhook?agentId=support", json={"entry": [entry]})
    no_entries = await client.post("/meta/webhook?agentId=support", json={"object": "page"})

    assert response.json() == no_entries.json() == {"ok": True}
    assert graph.messenger == []


def _sign(secret: str, body: bytes) -> str:
    return "sha256=" + hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


async def test_signed_agent_requires_valid_signature(relay, client, graph):
    body = json.dumps({"entry": [_whatsapp_entry(phone_number_id="META_PNID")]}).encode()
    headers = {"Content-Type": "application/json"}

    unsigned = await client.post("/meta/webhook?agentId=sales", content=body, headers=headers)
    signed = await client.post(
        "/meta/webhook?agentId=sales",
        content=body,
        headers={**headers, "X-Hub-Signature-256": _sign("shh", body)},
    )

    assert unsigned.status_code == 401
    assert signed.status_code == 200
    assert graph.whatsapp[0][:3] == ("sales-token", "META_PNID", "15551234")


async def test_whatsapp_without_phone_number_id_still_records_turn(relay, client, graph):
    body = json.dumps({"entry": [_whatsapp_entry()]}).encode()

    response = await client.post(
        "/meta/webhook?agentId=sales",
        content=body,
        headers={"Content-Type": "application/json", "X-Hub-Signature-256": _sign("shh", body)},
    )

    assert response.json() == {"ok": True}
    assert graph.whatsapp == []
    session = await relay.sessions.get_latest("sales", "whatsapp_15551234")
    assert len(await relay.sessions.get_messages(session.session_id)) == 2


async def test_whatsapp_test_send(client, graph):
    ok = await client.post(
        "/meta/whatsapp/test-send", json={"agentId": "support", "to": "15550000", "text": "ping"}
    )
    no_phone = await client.post(
        "/meta/whatsapp/test-send", json={"agentId": "sales", "to": "15550000", "text": "ping"}
    )
    missing = await client.post("/meta/whatsapp/test-send", json={"agentId": "support"})

    assert ok.json() == {"ok": True}
    assert graph.whatsapp == [("page-token", "PNID", "15550000", "ping")]
    assert no_phone.status_code == 400
    assert no_phone.json() == {"error": "Missing whatsappPhoneNumberId"}
    assert missing.status_code == 400


async def test_graph_client_request_shapes():
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json={"message_id": "m"})

    client = GraphClient(MetaConfig(), httpx.AsyncClient(transport=httpx.MockTransport(handler)))
    await client.send_messenger("tok", "99", "hi")
    await client.send_whatsapp("tok", "PNID", "155", "hola")
    await client.aclose()

    messenger, whatsapp = requests
    assert messenger.url.path == "/v18.0/me/messages"
    assert messenger.url.params["access_token"] == "tok"
    assert json.loads(messenger.content) == {"recipient": {"id": "99"}, "message": {"text": "hi"}}
    assert whatsapp.url.path == "/v18.0/PNID/messages"
    assert whatsapp.headers["Authorization"] == "Bearer tok"
    assert json.loads(whatsapp.content) == {
        "messaging_product": "whatsapp",
        "to": "155",
        "type": "text",
        "text": {"body": "hola"},
    }


async def test_graph_client_raises_on_error_status():
    client = GraphClient(
        MetaConfig(),
        httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(400))),
    )

    with pytest.raises(GraphSendError):
        await client.send_messenger("tok", "99", "hi")
    await client.aclose()


async def test_signature_is_checked_before_parsing(client):
    body = b"{not json"
    headers = {"Content-Type": "application/json"}

    unsigned = await client.post("/meta/webhook?agentId=sales", content=body, headers=headers)
    signed = await client.post(
        "/meta/webhook?agentId=sales",
        content=body,
        headers={**headers, "X-Hub-Signature-256": _sign("shh", body)},
    )

    assert unsigned.status_code == 401
    assert signed.status_code == 200
    assert signed.json() == {"ok": True}
