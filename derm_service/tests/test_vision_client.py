"""Tests for the vision analysis client against a mocked chat completions API."""
import asyncio
import json
from dataclasses import replace

import httpx
import pytest

from derm_service.context_assembler import ClinicalContext
from derm_service.errors import (
    AIConfigurationError,
    AIRateLimitError,
    AIResponseError,
    AIServiceError,
    AITimeoutError,
    ImageCountError,
    UpstreamImageRejectedError,
)
from derm_service.models import AnalysisOptions
from derm_service.tests.conftest import RecordingSleep, chat_completion, report_completion
from derm_service.vision_client import VisionAnalysisClient

IMAGE = "https://images.test/lesion.jpg"


class ScriptedTransport:
    """Returns the scripted responses in order and records each request."""

    def __init__(self, responses):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        # The last scripted item repeats forever
        item = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(item, type) and issubclass(item, httpx.TransportError):
            raise item("scripted transport failure", request=request)
        return httpx.Response(item.status_code, headers=item.headers, content=item.content)


def make_client(settings, responses):
    transport = ScriptedTransport(responses)
    sleep = RecordingSleep()
    client = VisionAnalysisClient(
        settings,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(transport)),
        sleep=sleep,
    )
    return client, transport, sleep


def ok(report: dict) -> httpx.Response:
    return httpx.Response(200, json=report_completion(report))


class TestImageCount:
    """Image count is checked before any network call."""

    @pytest.mark.parametrize("count", [0, 6])
    def test_out_of_range_makes_no_calls(self, settings, photo_report_dict, count):
        client, transport, _ = make_client(settings, [ok(photo_report_dict)])
        with pytest.raises(ImageCountError):
            asyncio.run(client.analyze([IMAGE] * count, ClinicalContext()))
        assert transport.requests == []

    def test_count_checked_before_missing_key(self, settings):
        client, transport, _ = make_client(replace(settings, vision_api_key=None), [httpx.Response(200)])
        with pytest.raises(ImageCountError):
            asyncio.run(client.analyze([], ClinicalContext()))


class TestRequestShape:

    def test_one_image_part_per_url(self, settings, photo_report_dict):
        client, transport, _ = make_client(settings, [ok(photo_report_dict)])
        urls = [f"https://images.test/{i}.png" for i in range(3)]
        context = ClinicalContext(patient_age=42, chief_complaint="Changing mole")

        result = asyncio.run(client.analyze(urls, context))

        assert result.attempts == 1
        assert result.model == "gpt-4o"
        request = transport.requests[0]
        assert request.url.path == "/v1/chat/completions"
        assert request.headers["authorization"] == "Bearer sk-test"
        body = json.loads(request.content)
        assert body["response_format"] == {"type": "json_object"}
        assert body["temperature"] == 0.2
        assert body["max_tokens"] == 1200
        user_parts = body["messages"][1]["content"]
        assert user_parts[0]["type"] == "text"
        assert "Changing mole" in user_parts[0]["text"]
        assert "42 years" in user_parts[0]["text"]
        assert [p["image_url"]["url"] for p in user_parts[1:]] == urls

    def test_clinical_notes_in_prompt(self, settings):
        client, _, _ = make_client(settings, [httpx.Response(200)])
        context = ClinicalContext(clinical_text={"exam_notes": "firm nodule, 8 mm"})
        text = client.build_messages([IMAGE], context)[1]["content"][0]["text"]
        assert "Clinical notes from the consultation:\n- Exam notes: firm nodule, 8 mm" in text

    def test_options_override_defaults(self, settings, photo_report_dict):
        client, transport, _ = make_client(settings, [ok(photo_report_dict)])
        options = AnalysisOptions(model="gpt-4o-mini", temperature=0.0, maxTokens=800)
        result = asyncio.run(client.analyze([IMAGE], ClinicalContext(), options))
        body = json.loads(transport.requests[0].content)
        assert (body["model"], body["temperature"], body["max_tokens"]) == ("gpt-4o-mini", 0.0, 800)
        assert result.model == "gpt-4o-mini"


class TestFailureHandling:

    def test_missing_key_fails_without_calls(self, settings):
        client, transport, sleep = make_client(replace(settings, vision_api_key=None), [httpx.Response(200)])
        with pytest.raises(AIConfigurationError):
            asyncio.run(client.analyze([IMAGE], ClinicalContext()))
        assert transport.requests == []

    @pytest.mark.parametrize("status", [401, 403])
    def test_rejected_credentials_single_call(self, settings, status):
        client, transport, sleep = make_client(
            settings, [httpx.Response(status, json={"error": {"message": "Incorrect API key"}})]
        )
        with pytest.raises(AIConfigurationError) as exc_info:
            asyncio.run(client.analyze([IMAGE], ClinicalContext()))
        assert len(transport.requests) == 1
        assert exc_info.value.attempts == 1
        assert sleep.delays == []

    def test_image_rejection_not_retried(self, settings):
        body = {"error": {"code": "invalid_image_format", "message": "Invalid image format"}}
        client, transport, _ = make_client(settings, [httpx.Response(400, json=body)])
        with pytest.raises(UpstreamImageRejectedError) as exc_info:
            asyncio.run(client.analyze([IMAGE], ClinicalContext()))
        assert exc_info.value.status_code == 422
        assert len(transport.requests) == 1

    def test_schema_failure_retried_then_succeeds(self, settings, photo_report_dict):
        bad = dict(photo_report_dict, confidence_score=3)
        client, transport, sleep = make_client(settings, [ok(bad), ok(photo_report_dict)])
        result = asyncio.run(client.analyze([IMAGE], ClinicalContext()))
        assert result.attempts == 2
        assert len(transport.requests) == 2
        assert sleep.delays == [1.0]

    def test_persistent_server_error_exhausts_retries(self, settings):
        client, transport, sleep = make_client(settings, [httpx.Response(500, text="upstream down")])
        with pytest.raises(AIServiceError) as exc_info:
            asyncio.run(client.analyze([IMAGE], ClinicalContext()))
        assert len(transport.requests) == 3
        assert exc_info.value.attempts == 3
        assert sleep.delays == [1.0, 2.0]

    def test_rate_limit_carries_retry_after(self, settings):
        client, transport, _ = make_client(
            settings, [httpx.Response(429, headers={"retry-after": "12"}, json={"error": "slow down"})]
        )
        with pytest.raises(AIRateLimitError) as exc_info:
            asyncio.run(client.analyze([IMAGE], ClinicalContext()))
        assert exc_info.value.retry_after == 12
        assert len(transport.requests) == 3

    def test_timeout_is_retryable(self, settings, photo_report_dict):
        client, transport, _ = make_client(
            settings, [httpx.ReadTimeout, ok(photo_report_dict)]
        )
        result = asyncio.run(client.analyze([IMAGE], ClinicalContext()))
        assert result.attempts == 2

    def test_timeout_exhausted(self, settings):
        client, transport, _ = make_client(settings, [httpx.ReadTimeout])
        with pytest.raises(AITimeoutError):
            asyncio.run(client.analyze([IMAGE], ClinicalContext()))
        assert len(transport.requests) == 3

    def test_refusal_is_retryable(self, settings, photo_report_dict):
        refusal = httpx.Response(200, json=chat_completion("I'm sorry, I can't help with that."))
        client, transport, _ = make_client(settings, [refusal, ok(photo_report_dict)])
        result = asyncio.run(client.analyze([IMAGE], ClinicalContext()))
        assert result.attempts == 2

    def test_malformed_payload(self, settings):
        client, transport, _ = make_client(settings, [httpx.Response(200, json={"choices": []})])
        with pytest.raises(AIResponseError):
            asyncio.run(client.analyze([IMAGE], ClinicalContext()))
