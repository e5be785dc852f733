"""Tests for the embedding providers."""

import json

import httpx
import numpy as np
import pytest

from squad_memory.config import Config
from squad_memory.embeddings import (
    GeminiProvider,
    OpenAIProvider,
    ProviderKind,
    VoyageProvider,
    create_provider,
    list_providers,
)
from squad_memory.errors import ProviderUnavailable


def openai_style_handler(dimension: int, requests: list):
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        requests.append((request, body))
        # Reverse order to check results are re-sorted by index
        data = [
            {"index": i, "embedding": [float(i)] * dimension}
            for i in range(len(body["input"]))
        ][::-1]
        return httpx.Response(200, json={"data": data})

    return handler


class TestOpenAIProvider:
    def test_embeds_in_order(self):
        requests = []
        provider = OpenAIProvider(
            "sk-test", transport=httpx.MockTransport(openai_style_handler(1536, requests))
        )
        vectors = provider.embed(["a", "b", "c"])

        assert len(vectors) == 3
        assert [v[0] for v in vectors] == [0.0, 1.0, 2.0]
        assert vectors[0].dtype == np.float32
        request, body = requests[0]
        assert request.headers["Authorization"] == "Bearer sk-test"
        assert body["model"] == "text-embedding-3-small"

    def test_splits_into_provider_batches(self):
        requests = []
        provider = OpenAIProvider(
            "sk-test", transport=httpx.MockTransport(openai_style_handler(1536, requests))
        )
        provider.max_batch_size = 2
        assert len(provider.embed(["a", "b", "c", "d", "e"])) == 5
        assert [len(body["input"]) for _, body in requests] == [2, 2, 1]

    def test_empty_input_makes_no_request(self):
        def handler(request):
            raise AssertionError("unexpected request")

        provider = OpenAIProvider("sk-test", transport=httpx.MockTransport(handler))
        assert provider.embed([]) == []

    def test_http_error_is_provider_unavailable(self):
        transport = httpx.MockTransport(lambda r: httpx.Response(429, text="rate limited"))
        provider = OpenAIProvider("sk-test", transport=transport)
        with pytest.raises(ProviderUnavailable, match="HTTP 429"):
            provider.embed(["a"])

    def test_network_error_is_provider_unavailable(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        provider = OpenAIProvider("sk-test", transport=httpx.MockTransport(handler))
        with pytest.raises(ProviderUnavailable, match="connection refused"):
            provider.embed(["a"])

    def test_timeout_is_provider_unavailable(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        provider = OpenAIProvider("sk-test", transport=httpx.MockTransport(handler))
        with pytest.raises(ProviderUnavailable, match="timed out"):
            provider.embed(["a"])

    def test_wrong_dimension_is_provider_unavailable(self):
        requests = []
        provider = OpenAIProvider(
            "sk-test", transport=httpx.MockTransport(openai_style_handler(3, requests))
        )
        with pytest.raises(ProviderUnavailable, match="dimension"):
            provider.embed(["a"])

    def test_malformed_payload_is_provider_unavailable(self):
        transport = httpx.MockTransport(lambda r: httpx.Response(200, json={"oops": []}))
        provider = OpenAIProvider("sk-test", transport=transport)
        with pytest.raises(ProviderUnavailable, match="malformed"):
            provider.embed(["a"])

    def test_unknown_model(self):
        with pytest.raises(ValueError, match="Unknown model"):
            OpenAIProvider("sk-test", model="text-embedding-9")

    def test_identity(self):
        provider = OpenAIProvider("sk-test", model="text-embedding-3-large")
        assert provider.identity == ("openai", "text-embedding-3-large", 3072)


class TestVoyageProvider:
    def test_embeds(self):
        requests = []
        provider = VoyageProvider(
            "pa-test",
            model="voyage-3-lite",
            transport=httpx.MockTransport(openai_style_handler(512, requests)),
        )
        vectors = provider.embed(["a", "b"])
        assert [v.shape for v in vectors] == [(512,), (512,)]
        assert str(requests[0][0].url) == VoyageProvider.url


class TestGeminiProvider:
    def test_batch_embed_contents(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            seen.append(request)
            return httpx.Response(
                200,
                json={"embeddings": [{"values": [0.5] * 768} for _ in body["requests"]]},
            )

        provider = GeminiProvider(
            "g-key", model="text-embedding-004", transport=httpx.MockTransport(handler)
        )
        vectors = provider.embed(["a", "b"])

        assert len(vectors) == 2
        assert seen[0].headers["x-goog-api-key"] == "g-key"
        assert seen[0].url.path.endswith("text-embedding-004:batchEmbedContents")

    def test_count_mismatch_is_provider_unavailable(self):
        transport = httpx.MockTransport(
            lambda r: httpx.Response(200, json={"embeddings": [{"values": [0.1] * 3072}]})
        )
        provider = GeminiProvider("g-key", transport=transport)
        with pytest.raises(ProviderUnavailable, match="expected 2 embeddings"):
            provider.embed(["a", "b"])


class TestCreateProvider:
    def test_no_keys_is_keyword_only(self):
        assert create_provider(Config(), env={}) is None

    def test_auto_detect_order(self):
        env = {"VOYAGE_API_KEY": "v", "GEMINI_API_KEY": "g"}
        provider = create_provider(Config(), env=env)
        assert provider.kind == ProviderKind.GEMINI

    def test_explicit_provider_wins(self):
        env = {"OPENAI_API_KEY": "o", "VOYAGE_API_KEY": "v"}
        provider = create_provider(Config(provider="voyage"), env=env)
        assert isinstance(provider, VoyageProvider)

    def test_explicit_none(self):
        assert create_provider(Config(provider="none"), env={"OPENAI_API_KEY": "o"}) is None

    def test_explicit_without_key(self, caplog):
        assert create_provider(Config(provider="openai"), env={}) is None
        assert "OPENAI_API_KEY" in caplog.text

    def test_blank_key_ignored(self):
        assert create_provider(Config(), env={"OPENAI_API_KEY": "  "}) is None

    def test_model_override(self):
        provider = create_provider(
            Config(model="text-embedding-3-large"), env={"OPENAI_API_KEY": "o"}
        )
        assert provider.dimension == 3072

    def test_unknown_provider(self):
        with pytest.raises(ValueError):
            create_provider(Config(provider="cohere"), env={})


class TestListProviders:
    def test_reports_availability(self):
        providers = list_providers(env={"VOYAGE_API_KEY": "v"})
        by_id = {p["id"]: p for p in providers}
        assert set(by_id) == {"openai", "gemini", "voyage"}
        assert by_id["voyage"]["available"] is True
        assert by_id["openai"]["env_var"] == "OPENAI_API_KEY"
