"""
Tests for the chat-completions oracle client and JSON answer parsing.
HTTP is served by httpx.MockTransport.
"""

import json

import httpx
import pytest

from app.observability.cost_tracker import OracleUsageTracker
from app.oracles.classification import (
    DisabledClassificationOracle, HttpClassificationOracle, OracleError, parse_json_response,
)


def completion(content: str, prompt_tokens: int = 120, completion_tokens: int = 30) -> dict:
    return {
        "choices": [{"message": {"role": "assistant", "content": content}}],
        "usage": {"prompt_tokens": prompt_tokens, "completion_tokens": completion_tokens},
    }


def oracle_with(handler, api_key: str = "test-key") -> HttpClassificationOracle:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpClassificationOracle(base_url="https://llm.test/v1", api_key=api_key, client=client,
                                    max_concurrent=2)


class TestParseJsonResponse:

    def test_plain_json(self):
        assert parse_json_response('{"a": 1}') == {"a": 1}

    def test_code_fence(self):
        assert parse_json_response('```json\n{"asset_class": "equity"}\n```') == {"asset_class": "equity"}

    def test_bare_fence(self):
        assert parse_json_response('```\n[1, 2]\n```') == [1, 2]

    def test_surrounding_prose(self):
        content = 'Here is the result:\n{"date": "2024-03-31", "confidence": "high"}\nHope that helps.'
        assert parse_json_response(content)["date"] == "2024-03-31"

    def test_trailing_commas(self):
        assert parse_json_response('{"assets": [{"name": "Gold",},],}') == {"assets": [{"name": "Gold"}]}

    def test_array_in_prose(self):
        assert parse_json_response("Values: [1, 2, 3] done") == [1, 2, 3]

    def test_object_preferred_over_array(self):
        assert parse_json_response('Assets: [{"name": "PPF"}] done') == {"name": "PPF"}

    @pytest.mark.parametrize("content", ["", "   ", "no json here at all"])
    def test_unparseable(self, content):
        with pytest.raises(OracleError) as exc:
            parse_json_response(content)
        assert exc.value.error_code == "ORACLE_BAD_RESPONSE"


class TestDisabledOracle:

    async def test_always_raises(self):
        oracle = DisabledClassificationOracle()
        assert not oracle.is_enabled
        with pytest.raises(OracleError) as exc:
            await oracle.classify_text("s", "u", operation="classify_asset")
        assert exc.value.error_code == "ORACLE_DISABLED"


class TestHttpClassificationOracle:

    async def test_classify_text(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=completion('{"asset_class": "debt", "asset_subclass": "ppf"}'))

        oracle = oracle_with(handler)
        tracker = OracleUsageTracker("tmp_20240410_abcdefg")
        answer = await oracle.classify_text("system", "user", operation="classify_asset",
                                            model="small-model", tracker=tracker)

        assert answer == {"asset_class": "debt", "asset_subclass": "ppf"}
        assert seen["url"] == "https://llm.test/v1/chat/completions"
        assert seen["auth"] == "Bearer test-key"
        assert seen["body"]["model"] == "small-model"
        assert seen["body"]["response_format"] == {"type": "json_object"}
        assert [m["role"] for m in seen["body"]["messages"]] == ["system", "user"]

        summary = tracker.summary()
        assert summary["calls"] == 1
        assert summary["input_tokens"] == 120
        assert summary["output_tokens"] == 30
        assert summary["calls_by_operation"] == {"classify_asset": 1}
        await oracle.aclose()

    async def test_classify_images_sends_data_urls(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=completion('{"assets": []}'))

        oracle = oracle_with(handler)
        answer = await oracle.classify_images("extract", [b"\x89PNG one", b"\x89PNG two"],
                                              operation="extract_vision")

        assert answer == {"assets": []}
        content = seen["body"]["messages"][0]["content"]
        assert content[0] == {"type": "text", "text": "extract"}
        assert len(content) == 3
        assert content[1]["image_url"]["url"].startswith("data:image/png;base64,")

    async def test_no_images(self):
        oracle = oracle_with(lambda request: httpx.Response(200, json=completion("{}")))
        with pytest.raises(OracleError) as exc:
            await oracle.classify_images("extract", [], operation="extract_vision")
        assert exc.value.error_code == "ORACLE_BAD_REQUEST"

    async def test_missing_key_disables(self):
        oracle = oracle_with(lambda request: httpx.Response(200, json=completion("{}")), api_key="")
        assert not oracle.is_enabled
        with pytest.raises(OracleError) as exc:
            await oracle.classify_text("s", "u", operation="classify_asset")
        assert exc.value.error_code == "ORACLE_DISABLED"

    @pytest.mark.parametrize("status,retryable", [(429, True), (503, True), (400, False)])
    async def test_http_errors(self, status, retryable):
        oracle = oracle_with(lambda request: httpx.Response(status, json={"error": "nope"}))
        with pytest.raises(OracleError) as exc:
            await oracle.classify_text("s", "u", operation="classify_asset")
        assert exc.value.error_code == "ORACLE_HTTP_ERROR"
        assert exc.value.retryable is retryable

    async def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        oracle = oracle_with(handler)
        with pytest.raises(OracleError) as exc:
            await oracle.classify_text("s", "u", operation="classify_asset")
        assert exc.value.error_code == "ORACLE_TIMEOUT"
        assert exc.value.retryable

    async def test_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        oracle = oracle_with(handler)
        with pytest.raises(OracleError) as exc:
            await oracle.classify_text("s", "u", operation="classify_asset")
        assert exc.value.error_code == "ORACLE_UNREACHABLE"

    async def test_non_json_body(self):
        oracle = oracle_with(lambda request: httpx.Response(200, text="<html>gateway</html>"))
        with pytest.raises(OracleError) as exc:
            await oracle.classify_text("s", "u", operation="classify_asset")
        assert exc.value.error_code == "ORACLE_BAD_RESPONSE"

    async def test_missing_choices(self):
        oracle = oracle_with(lambda request: httpx.Response(200, json={"choices": []}))
        with pytest.raises(OracleError) as exc:
            await oracle.classify_text("s", "u", operation="classify_asset")
        assert exc.value.error_code == "ORACLE_BAD_RESPONSE"

    async def test_unparseable_content(self):
        oracle = oracle_with(lambda request: httpx.Response(200, json=completion("I cannot help with that")))
        with pytest.raises(OracleError) as exc:
            await oracle.classify_text("s", "u", operation="classify_asset")
        assert exc.value.error_code == "ORACLE_BAD_RESPONSE"
