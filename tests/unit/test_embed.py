"""Unit tests for imagerag.core.embed."""

import json
import threading

import httpx
import pytest

from imagerag.core.embed import EMPTY_PLACEHOLDER, OllamaEmbedder, sanitize_texts
from imagerag.core.exceptions import (
    EmbeddingRequestError,
    EmbeddingResponseError,
    EmbeddingServiceUnavailable,
    OperationCancelled,
)

BASE = "http://ollama.test:11434"


class Recorder:
    """MockTransport handler recording every request."""

    def __init__(self, alive=True, embed=None):
        self.alive = alive
        self.embed = embed or (lambda prompt, index: httpx.Response(200, json={"embedding": [float(len(prompt)), 1.0]}))
        self.prompts = []
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.method == "GET":
            if self.alive is None:
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(200 if self.alive else 503, text="Ollama is running")
        body = json.loads(request.content)
        self.prompts.append(body["prompt"])
        return self.embed(body["prompt"], len(self.prompts) - 1)


def _embedder(recorder, **kwargs):
    client = httpx.Client(transport=httpx.MockTransport(recorder))
    return OllamaEmbedder(model="test-model", base_path=BASE, client=client,
                          retry_attempts=kwargs.pop("retry_attempts", 1), **kwargs)


class TestSanitizeTexts:
    def test_blank_strings_replaced(self):
        assert sanitize_texts(["a", "", "   ", None]) == ["a", EMPTY_PLACEHOLDER, EMPTY_PLACEHOLDER, EMPTY_PLACEHOLDER]


class TestEmbedBatch:
    """Tests for batch embedding."""

    def test_one_vector_per_text_in_order(self):
        recorder = Recorder()
        vectors = _embedder(recorder).embed_batch(["a", "bbb"])
        assert vectors == [[1.0, 1.0], [3.0, 1.0]]
        assert recorder.prompts == ["a", "bbb"]

    def test_request_body_and_url(self):
        recorder = Recorder()
        _embedder(recorder).embed_batch(["hello"])
        post = recorder.requests[-1]
        assert str(post.url) == f"{BASE}/api/embeddings"
        assert json.loads(post.content) == {"model": "test-model", "prompt": "hello"}

    def test_empty_input_sends_nothing(self):
        recorder = Recorder()
        assert _embedder(recorder).embed_batch([]) == []
        assert recorder.requests == []

    def test_blank_prompt_uses_placeholder(self):
        recorder = Recorder()
        _embedder(recorder).embed_batch(["  "])
        assert recorder.prompts == [EMPTY_PLACEHOLDER]

    def test_unreachable_service_names_address(self):
        recorder = Recorder(alive=None)
        with pytest.raises(EmbeddingServiceUnavailable) as exc_info:
            _embedder(recorder).embed_batch(["a"])
        assert BASE in str(exc_info.value)
        assert recorder.prompts == []

    def test_non_ok_probe_fails_fast(self):
        recorder = Recorder(alive=False)
        with pytest.raises(EmbeddingServiceUnavailable):
            _embedder(recorder).embed_batch(["a", "b"])
        assert recorder.prompts == []

    def test_error_status_aborts_batch(self):
        def embed(prompt, index):
            if index == 1:
                return httpx.Response(500, text="model not loaded")
            return httpx.Response(200, json={"embedding": [1.0]})

        recorder = Recorder(embed=embed)
        with pytest.raises(EmbeddingRequestError) as exc_info:
            _embedder(recorder).embed_batch(["a", "b", "c"])
        assert exc_info.value.status_code == 500
        assert "model not loaded" in str(exc_info.value)
        assert recorder.prompts == ["a", "b"]

    def test_missing_embedding_field_aborts_batch(self):
        recorder = Recorder(embed=lambda prompt, index: httpx.Response(200, json={"vector": [1.0]}))
        with pytest.raises(EmbeddingResponseError):
            _embedder(recorder).embed_batch(["a", "b"])
        assert recorder.prompts == ["a"]

    def test_bearer_token_sent(self):
        recorder = Recorder()
        _embedder(recorder, auth_token="secret-token").embed_batch(["a"])
        assert recorder.requests[-1].headers["Authorization"] == "Bearer secret-token"

    def test_transport_error_is_retried(self):
        attempts = {"count": 0}

        def handler(request):
            if request.method == "GET":
                return httpx.Response(200)
            attempts["count"] += 1
            if attempts["count"] == 1:
                raise httpx.ReadTimeout("timed out", request=request)
            return httpx.Response(200, json={"embedding": [0.5, 0.5]})

        client = httpx.Client(transport=httpx.MockTransport(handler))
        embedder = OllamaEmbedder(model="m", base_path=BASE, client=client, retry_attempts=2)
        assert embedder.embed_batch(["a"]) == [[0.5, 0.5]]
        assert attempts["count"] == 2

    def test_cancel_stops_before_request(self):
        recorder = Recorder()
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(OperationCancelled):
            _embedder(recorder).embed_batch(["a"], cancel_event=cancel)
        assert recorder.prompts == []


class TestEmbedText:
    def test_single_text_is_batch_of_one(self):
        recorder = Recorder()
        assert _embedder(recorder).embed_text("abcd") == [4.0, 1.0]
        assert recorder.prompts == ["abcd"]


def test_from_config_uses_settings(config):
    embedder = OllamaEmbedder.from_config(config)
    try:
        assert embedder.base_path == "http://embed.test"
        assert embedder.model == config.embed_model
        assert embedder.embeddings_url == "http://embed.test/api/embeddings"
    finally:
        embedder.close()
