from unittest.mock import MagicMock, patch

import pytest
import requests

import config
import vision
from errors import ExternalServiceError
from vision import GeminiVisionService, OllamaVisionService


def _response(status=200, body=None, text=""):
    response = MagicMock()
    response.status_code = status
    response.text = text
    response.json.return_value = body if body is not None else {}
    return response


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def ollama(sleeps):
    return OllamaVisionService(host="http://ollama:11434/", model="llava",
                               timeout=5, max_retries=3, backoff_seconds=20,
                               sleep=sleeps.append)


@pytest.fixture
def gemini(sleeps):
    return GeminiVisionService(api_key="secret", model="gemini-2.0-flash",
                               timeout=5, max_retries=3, backoff_seconds=20,
                               sleep=sleeps.append)


# ============================================================================
# Text cleanup
# ============================================================================


@pytest.mark.parametrize("raw,expected", [
    ("This image shows a red bicycle", "A red bicycle."),
    ("The picture shows two people talking!", "Two people talking!"),
    ("Here is a description: bar chart of sales", "Bar chart of sales."),
    ("  a map of Europe.  ", "A map of Europe."),
    ("", ""),
])
def test_clean_alt_text(raw, expected):
    assert vision.clean_alt_text(raw) == expected


def test_build_prompt_includes_context():
    assert vision.build_prompt() == vision.PROMPT
    assert "Context: quarterly sales" in vision.build_prompt("quarterly sales")


# ============================================================================
# Ollama
# ============================================================================


def test_ollama_request(ollama):
    with patch("vision.requests.post", return_value=_response(body={"response": "a cat"})) as post:
        assert ollama.generate_alt_text("QUJD") == "A cat."

    url = post.call_args.args[0]
    body = post.call_args.kwargs["json"]
    assert url == "http://ollama:11434/api/generate"
    assert post.call_args.kwargs["timeout"] == 5
    assert body["model"] == "llava"
    assert body["images"] == ["QUJD"]
    assert body["stream"] is False
    assert body["options"]["temperature"] == config.VISION_TEMPERATURE


def test_rate_limit_is_retried_with_growing_delay(ollama, sleeps):
    responses = [_response(429), _response(429), _response(body={"response": "a dog"})]
    with patch("vision.requests.post", side_effect=responses) as post:
        assert ollama.generate_alt_text("QUJD") == "A dog."
    assert post.call_count == 3
    assert sleeps == [20, 40]


def test_rate_limit_gives_up_after_max_retries(ollama, sleeps):
    with patch("vision.requests.post", return_value=_response(429)) as post:
        with pytest.raises(ExternalServiceError, match="rate limit exceeded"):
            ollama.generate_alt_text("QUJD")
    assert post.call_count == 3
    assert sleeps == [20, 40]


def test_server_error_is_not_retried(ollama, sleeps):
    with patch("vision.requests.post", return_value=_response(500, text="boom")) as post:
        with pytest.raises(ExternalServiceError, match="HTTP 500"):
            ollama.generate_alt_text("QUJD")
    assert post.call_count == 1
    assert sleeps == []


def test_timeout_becomes_service_error(ollama):
    with patch("vision.requests.post", side_effect=requests.Timeout("slow")):
        with pytest.raises(ExternalServiceError, match="timed out"):
            ollama.generate_alt_text("QUJD")


def test_empty_response_is_an_error(ollama):
    with patch("vision.requests.post", return_value=_response(body={"response": ""})):
        with pytest.raises(ExternalServiceError):
            ollama.generate_alt_text("QUJD")


def test_invalid_json_is_an_error(ollama):
    response = _response()
    response.json.side_effect = ValueError("no json")
    with patch("vision.requests.post", return_value=response):
        with pytest.raises(ExternalServiceError, match="invalid JSON"):
            ollama.generate_alt_text("QUJD")


def test_ollama_model_listing(ollama):
    tags = _response(body={"models": [{"name": "llava:latest"}, {"name": "mistral"}]})
    with patch("vision.requests.get", return_value=tags):
        assert ollama.check_connection() is True
        assert ollama.is_model_available() is True

    with patch("vision.requests.get", side_effect=requests.ConnectionError("refused")):
        assert ollama.check_connection() is False
        assert ollama.is_model_available() is False


# ============================================================================
# Gemini
# ============================================================================


def test_gemini_request(gemini):
    body = {"candidates": [{"content": {"parts": [{"text": "This image shows "},
                                                  {"text": "a pie chart"}]}}]}
    with patch("vision.requests.post", return_value=_response(body=body)) as post:
        assert gemini.generate_alt_text("QUJD", mime_type="image/jpeg") == "A pie chart."

    assert post.call_args.args[0].endswith("/gemini-2.0-flash:generateContent")
    assert post.call_args.kwargs["params"] == {"key": "secret"}
    parts = post.call_args.kwargs["json"]["contents"][0]["parts"]
    assert parts[1] == {"inline_data": {"mime_type": "image/jpeg", "data": "QUJD"}}


def test_gemini_without_candidates(gemini):
    with patch("vision.requests.post", return_value=_response(body={"candidates": []})):
        with pytest.raises(ExternalServiceError, match="no candidate text"):
            gemini.generate_alt_text("QUJD")


def test_gemini_without_key_makes_no_request():
    service = GeminiVisionService(api_key="")
    assert service.check_connection() is False
    with patch("vision.requests.post") as post:
        with pytest.raises(ExternalServiceError):
            service.generate_alt_text("QUJD")
    post.assert_not_called()


# ============================================================================
# Batches and provider selection
# ============================================================================


def test_batch_failures_become_sentinel(ollama):
    responses = [_response(body={"response": "a tree"}), _response(500),
                 _response(body={"response": "a house"})]
    images = [{"id": "a", "base64": "QQ=="}, {"id": "b", "base64": "Qg=="},
              {"id": "c", "base64": "Qw==", "context": "cover page"}]
    with patch("vision.requests.post", side_effect=responses):
        entries = ollama.generate_batch_alt_text(images)

    assert [(e.id, e.alt_text) for e in entries] == [
        ("a", "A tree."), ("b", config.ALT_TEXT_UNAVAILABLE), ("c", "A house."),
    ]


@pytest.mark.parametrize("provider,key,expected", [
    ("ollama", "secret", "ollama"),
    ("Gemini", "", "gemini"),
    ("", "secret", "gemini"),
    ("", "", "ollama"),
    ("something-else", "", "ollama"),
])
def test_select_provider(provider, key, expected):
    assert vision.select_provider(provider, gemini_api_key=key) == expected


def test_create_vision_service(monkeypatch):
    monkeypatch.setattr(config, "GEMINI_API_KEY", "")
    assert isinstance(vision.create_vision_service("ollama"), OllamaVisionService)
    assert isinstance(vision.create_vision_service("gemini"), GeminiVisionService)


# ============================================================================
# Unexpected response shapes
# ============================================================================


@pytest.mark.parametrize("body", [["unexpected"], "text", {"response": 42}, {"response": "   "}])
def test_ollama_unexpected_body_is_a_service_error(ollama, body):
    with patch("vision.requests.post", return_value=_response(body=body)):
        with pytest.raises(ExternalServiceError):
            ollama.generate_alt_text("QUJD")


@pytest.mark.parametrize("body", [
    {"candidates": [{"content": {"parts": ["x"]}}]},
    {"candidates": [{"content": {"parts": [{"text": 5}]}}]},
    {"candidates": [{"content": None}]},
    {"candidates": "none"},
])
def test_gemini_unexpected_body_is_a_service_error(gemini, body):
    with patch("vision.requests.post", return_value=_response(body=body)):
        with pytest.raises(ExternalServiceError):
            gemini.generate_alt_text("QUJD")


def test_batch_continues_past_malformed_response(ollama):
    responses = [_response(body=["unexpected"]), _response(body={"response": "a boat"})]
    images = [{"id": "a", "base64": "QQ=="}, {"id": "b", "base64": "Qg=="}]
    with patch("vision.requests.post", side_effect=responses):
        entries = ollama.generate_batch_alt_text(images)

    assert [(e.id, e.alt_text) for e in entries] == [
        ("a", config.ALT_TEXT_UNAVAILABLE), ("b", "A boat."),
    ]


def test_model_listing_tolerates_unexpected_shape(ollama):
    with patch("vision.requests.get", return_value=_response(body=["llava"])):
        assert ollama.check_connection() is True
        assert ollama.is_model_available() is False
