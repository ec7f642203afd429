"""Provider fallback chain and the provider backends."""

import json
from types import SimpleNamespace

import httpx
import pytest

from agent_relay.ai.generator import ResponseGenerator
from agent_relay.ai.providers import (
    AnthropicProvider,
    MalformedResponse,
    OpenAICompatibleProvider,
    ProviderRejected,
    ProviderUnavailable,
    build_providers,
    normalize_turns,
)
from agent_relay.config import ProviderConfig
from tests.fakes import FakeProvider

USER_TURN = [{"role": "user", "content": "hi"}]


async def test_no_providers_gives_neutral_fallback():
    result = await ResponseGenerator([]).generate_reply("sys", USER_TURN)

    assert result.text == "You said: hi"
    assert result.degraded
    assert result.reason == "no_provider"


async def test_first_success_wins():
    first = FakeProvider("first", reply="from first")
    second = FakeProvider("second", reply="from second")

    result = await ResponseGenerator([first, second]).generate_reply("sys", USER_TURN, 0.3)

    assert result.text == "from first"
    assert result.provider == "first"
    assert not result.degraded
    assert second.calls == []
    assert first.calls[0]["temperature"] == 0.3
    assert first.calls[0]["system"] == "sys"


async def test_falls_through_to_next_provider():
    rejected = FakeProvider("bad", error=ProviderRejected("HTTP 401"))
    backup = FakeProvider("backup", reply="backup reply")

    result = await ResponseGenerator([rejected, backup]).generate_reply("sys", USER_TURN)

    assert result.text == "backup reply"
    assert result.provider == "backup"


async def test_all_failures_degrade_with_last_reason():
    providers = [
        FakeProvider("a", error=ProviderUnavailable("down")),
        FakeProvider("b", error=MalformedResponse("empty")),
    ]

    result = await ResponseGenerator(providers).generate_reply("sys", USER_TURN)

    assert result.text == "You said: hi"
    assert result.degraded
    assert result.reason == "malformed_response"


async def test_slow_provider_times_out():
    slow = FakeProvider("slow", delay=1.0)

    result = await ResponseGenerator([slow], timeout=0.05).generate_reply("sys", USER_TURN)

    assert result.degraded
    assert result.reason == "timeout"


async def test_unexpected_exception_degrades():
    broken = FakeProvider("broken", error=RuntimeError("boom"))

    result = await ResponseGenerator([broken]).generate_reply("sys", USER_TURN)

    assert result.degraded
    assert result.reason == "provider_unavailable"


async def test_last_message_must_be_user():
    with pytest.raises(ValueError):
        await ResponseGenerator([]).generate_reply(
            "sys", [{"role": "assistant", "content": "hello"}]
        )


def test_normalize_turns_merges_and_trims():
    turns = normalize_turns(
        [
            {"role": "assistant", "content": "welcome"},
            {"role": "user", "content": "a"},
            {"role": "user", "content": "b"},
            {"role": "assistant", "content": ""},
            {"role": "assistant", "content": "c"},
        ]
    )

    assert turns == [
        {"role": "user", "content": "a\n\nb"},
        {"role": "assistant", "content": "c"},
    ]


def test_build_providers_skips_missing_keys():
    providers = build_providers(
        [
            ProviderConfig(name="anthropic", kind="anthropic", api_key=""),
            ProviderConfig(name="openrouter", kind="openai_compatible", api_key="sk-or"),
            ProviderConfig(name="mystery", kind="other", api_key="x"),
        ],
        default_model="openai/gpt-4o-mini",
    )

    assert [p.name for p in providers] == ["openrouter"]


def _openai_provider(handler) -> OpenAICompatibleProvider:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return OpenAICompatibleProvider(
        ProviderConfig(name="openrouter", kind="openai_compatible", api_key="sk-or"),
        default_model="openai/gpt-4o-mini",
        client=client,
    )


async def test_openai_compatible_success():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "choices": [{"message": {"content": " hello "}}],
                "usage": {"prompt_tokens": 5, "completion_tokens": 2},
            },
        )

    provider = _openai_provider(handler)
    reply = await provider.complete("sys", USER_TURN, 0.2, preferred_model="meta/llama-3")
    await provider.aclose()

    assert reply.text == "hello"
    assert reply.output_tokens == 2
    assert seen["url"] == "https://openrouter.ai/api/v1/chat/completions"
    assert seen["auth"] == "Bearer sk-or"
    assert seen["body"]["model"] == "meta/llama-3"
    assert seen["body"]["messages"][0] == {"role": "system", "content": "sys"}


async def test_openai_compatible_ignores_foreign_model_name():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"choices": [{"message": {"content": "ok"}}]})

    provider = _openai_provider(handler)
    await provider.complete("sys", USER_TURN, 0.2, preferred_model="claude-3-5-haiku-latest")
    await provider.aclose()

    assert seen["body"]["model"] == "openai/gpt-4o-mini"


@pytest.mark.parametrize(
    "response, error",
    [
        (httpx.Response(401, json={"error": "bad key"}), ProviderRejected),
        (httpx.Response(503, text="overloaded"), ProviderUnavailable),
        (httpx.Response(200, json={"choices": []}), MalformedResponse),
        (httpx.Response(200, json={"choices": [{"message": {"content": "  "}}]}), MalformedResponse),
    ],
)
async def test_openai_compatible_failures(response, error):
    provider = _openai_provider(lambda request: response)

    with pytest.raises(error):
        await provider.complete("sys", USER_TURN, 0.2)
    await provider.aclose()


async def test_openai_compatible_transport_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused")

    provider = _openai_provider(handler)

    with pytest.raises(ProviderUnavailable):
        await provider.complete("sys", USER_TURN, 0.2)
    await provider.aclose()


class _FakeMessages:
    def __init__(self, response):
        self.response = response
        self.kwargs = None

    async def create(self, **kwargs):
        self.kwargs = kwargs
        return self.response


def _anthropic_provider(response) -> tuple[AnthropicProvider, _FakeMessages]:
    messages = _FakeMessages(response)
    client = SimpleNamespace(messages=messages)
    provider = AnthropicProvider(
        ProviderConfig(name="anthropic", kind="anthropic", api_key="sk-ant", model="claude-test"),
        client=client,
    )
    return provider, messages


async def test_anthropic_joins_text_blocks():
    response = SimpleNamespace(
        content=[
            SimpleNamespace(type="text", text="Hello "),
            SimpleNamespace(type="tool_use", text="ignored"),
            SimpleNamespace(type="text", text="there"),
        ],
        usage=SimpleNamespace(input_tokens=10, output_tokens=3),
    )
    provider, messages = _anthropic_provider(response)

    reply = await provider.complete(
        "sys",
        [{"role": "assistant", "content": "welcome"}, *USER_TURN],
        0.4,
        preferred_model="openai/gpt-4o-mini",
    )

    assert reply.text == "Hello there"
    assert reply.input_tokens == 10
    assert messages.kwargs["model"] == "claude-test"
    assert messages.kwargs["system"] == "sys"
    assert messages.kwargs["messages"] == USER_TURN


async def test_anthropic_empty_reply_is_malformed():
    provider, _ = _anthropic_provider(SimpleNamespace(content=[], usage=None))

    with pytest.raises(MalformedResponse):
        await provider.complete("sys", USER_TURN, 0.4)
