"""
Tests for the Gemini-backed image generator and prompt planner, and for
GeminiService response handling. The Gemini client is always mocked.
"""

import asyncio
import json
import time

import pytest
from google.genai import errors
from unittest.mock import AsyncMock, MagicMock, patch

from mockforge.core.config import Config
from mockforge.services.gemini_service import GeminiService, RateLimitError, is_rate_limit_error
from mockforge.services.image_synthesis.gemini_collaborators import (
    GeminiImageGenerator,
    GeminiPromptPlanner,
    build_planner_user_prompt,
    is_transient_error,
    parse_json_lenient,
)
from mockforge.services.image_synthesis.models import PlannerIntent, PromptPlanRequest


def _request(*ids):
    return PromptPlanRequest(
        app_prompt="Plant care app",
        platform="mobile",
        style_preset="minimal",
        intents=[PlannerIntent(id=i, screen_name="Home", alt=f"plant {i}", aspect="4:5") for i in ids],
    )


def _service_returning(*texts):
    service = MagicMock()
    service.generate_json = AsyncMock(side_effect=list(texts))
    return service


class TestParseJsonLenient:

    def test_plain(self):
        assert parse_json_lenient('{"prompts": []}') == {"prompts": []}

    def test_fenced(self):
        assert parse_json_lenient('```json\n{"a": 1}\n```') == {"a": 1}

    def test_surrounding_prose_and_trailing_comma(self):
        text = 'Sure! Here you go: {"prompts": [{"id": "x", "prompt": "y"},]} Enjoy.'
        assert parse_json_lenient(text) == {"prompts": [{"id": "x", "prompt": "y"}]}

    def test_braces_inside_strings(self):
        assert parse_json_lenient('{"a": "}{"}') == {"a": "}{"}

    def test_garbage_raises(self):
        with pytest.raises(ValueError):
            parse_json_lenient("no json here")


class TestErrorClassification:

    def test_transient(self):
        assert is_transient_error(Exception("read ECONNRESET"))
        assert is_transient_error(ConnectionError("boom"))
        assert not is_transient_error(ValueError("bad schema"))

    def test_rate_limit(self):
        assert is_rate_limit_error(Exception("429 Too Many Requests"))
        assert is_rate_limit_error(Exception("Quota exceeded"))
        assert not is_rate_limit_error(Exception("bad request"))

    def test_model_not_supported_is_not_rate_limit(self):
        message = ("404 NOT_FOUND. models/custom is not found for API version v1beta, "
                   "or is not supported for generateContent.")
        assert not is_rate_limit_error(Exception(message))
        assert not is_rate_limit_error(Exception("Invalid value at 'generation_config.temperature'"))

    def test_api_error_code(self):
        error = errors.APIError(429, {"error": {
            "code": 429, "message": "Resource has been exhausted", "status": "RESOURCE_EXHAUSTED",
        }})
        assert is_rate_limit_error(error)
        assert is_rate_limit_error(Exception("RESOURCE_EXHAUSTED"))
        assert is_rate_limit_error(Exception("Rate limit reached for model"))


class TestGeminiPromptPlanner:

    def test_user_prompt_lists_intents(self):
        prompt = build_planner_user_prompt(_request("a", "b"))
        assert "appPrompt=Plant care app" in prompt
        assert "1. id=a" in prompt
        assert "2. id=b" in prompt
        assert "srcHint=none" in prompt

    @pytest.mark.asyncio
    async def test_returns_mapping_and_drops_blanks(self):
        payload = {"prompts": [
            {"id": "a", "prompt": " Monstera on a sunny sill, no text, no watermark, no logos. "},
            {"id": "b", "prompt": "  "},
            {"id": "", "prompt": "orphan"},
        ]}
        service = _service_returning(json.dumps(payload))

        mapping = await GeminiPromptPlanner(service=service).plan_prompts(_request("a", "b"))

        assert mapping == {"a": "Monstera on a sunny sill, no text, no watermark, no logos."}
        kwargs = service.generate_json.await_args.kwargs
        assert "Return JSON only." in kwargs["system_prompt"]

    @pytest.mark.asyncio
    async def test_empty_intents_skip_call(self):
        service = _service_returning()
        assert await GeminiPromptPlanner(service=service).plan_prompts(_request()) == {}
        service.generate_json.assert_not_called()

    @pytest.mark.asyncio
    async def test_falls_back_to_second_model(self):
        service = _service_returning(ValueError("model not found"), '{"prompts": [{"id": "a", "prompt": "p"}]}')
        planner = GeminiPromptPlanner(service=service)

        mapping = await planner.plan_prompts(_request("a"))

        assert mapping == {"a": "p"}
        models = [call.kwargs["model"] for call in service.generate_json.await_args_list]
        assert models == planner._models_to_try(None)
        assert len(set(models)) == 2

    @pytest.mark.asyncio
    async def test_transient_error_retries_same_model(self):
        service = _service_returning(ConnectionError("socket hang up"), '{"prompts": []}')
        planner = GeminiPromptPlanner(service=service)

        with patch("mockforge.services.image_synthesis.gemini_collaborators.asyncio.sleep", new=AsyncMock()) as sleep:
            mapping = await planner.plan_prompts(_request("a"))

        assert mapping == {}
        sleep.assert_awaited_once()
        delay = sleep.await_args.args[0]
        assert 0.4 <= delay <= 0.85
        models = [call.kwargs["model"] for call in service.generate_json.await_args_list]
        assert models[0] == models[1]

    @pytest.mark.asyncio
    async def test_all_models_fail_raises(self):
        service = _service_returning(ValueError("nope"), ValueError("still nope"))
        with pytest.raises(ValueError, match="still nope"):
            await GeminiPromptPlanner(service=service).plan_prompts(_request("a"))

    def test_image_model_not_used_for_planning(self):
        models = GeminiPromptPlanner(service=MagicMock())._models_to_try("models/gemini-2.5-flash-image")
        assert models[0] == Config.get_model("image_planner")

    def test_text_model_preferred(self):
        models = GeminiPromptPlanner(service=MagicMock())._models_to_try("models/gemini-custom-text")
        assert models[0] == "models/gemini-custom-text"


class TestGeminiImageGenerator:

    def _service(self, *results):
        service = MagicMock()
        service.generate_image = AsyncMock(side_effect=list(results))
        return service

    @pytest.mark.asyncio
    async def test_returns_data_uri(self):
        service = self._service({
            "image_base64": "QUJD", "mime_type": "image/jpeg",
            "model_used": "models/img-1", "description": "a cat",
        })
        generator = GeminiImageGenerator(service=service, default_model="models/img-default")

        image = await generator.generate("a cat", "image")

        assert image.src == "data:image/jpeg;base64,QUJD"
        assert image.model_used == "models/img-1"
        assert image.description == "a cat"
        assert service.generate_image.await_args.kwargs["model"] == "models/img-default"

    @pytest.mark.asyncio
    async def test_retries_default_model_after_failure(self):
        service = self._service(
            RuntimeError("unsupported model"),
            {"image_base64": "QUJD", "mime_type": "image/png", "model_used": "models/img-default"},
        )
        generator = GeminiImageGenerator(service=service, default_model="models/img-default")

        image = await generator.generate("a cat", "models/img-custom")

        assert image.src == "data:image/png;base64,QUJD"
        models = [call.kwargs["model"] for call in service.generate_image.await_args_list]
        assert models == ["models/img-custom", "models/img-default"]

    @pytest.mark.asyncio
    async def test_rate_limit_not_retried_on_default(self):
        service = self._service(RateLimitError("429"))
        generator = GeminiImageGenerator(service=service, default_model="models/img-default")

        with pytest.raises(RateLimitError):
            await generator.generate("a cat", "models/img-custom")
        assert service.generate_image.await_count == 1

    @pytest.mark.asyncio
    async def test_default_model_failure_propagates(self):
        service = self._service(RuntimeError("boom"))
        generator = GeminiImageGenerator(service=service, default_model="models/img-default")

        with pytest.raises(RuntimeError):
            await generator.generate("a cat", "models/img-default")


class TestGeminiService:

    def test_missing_api_key(self):
        with patch.object(Config, "GEMINI_API_KEY", ""):
            with pytest.raises(ValueError):
                GeminiService()

    @pytest.mark.asyncio
    async def test_generate_image_extracts_inline_data(self):
        text_part = MagicMock(text="A cozy cabin interior", inline_data=None)
        image_part = MagicMock(text=None)
        image_part.inline_data.data = b"ABC"
        image_part.inline_data.mime_type = "image/png"

        response = MagicMock(model_version="gemini-test-image")
        response.candidates = [MagicMock()]
        response.candidates[0].content.parts = [text_part, image_part]

        with patch("mockforge.services.gemini_service.genai.Client") as client_cls:
            client_cls.return_value.aio.models.generate_content = AsyncMock(return_value=response)
            service = GeminiService(api_key="test-key", requests_per_minute=0)
            result = await service.generate_image("cabin", model="models/img")

        assert result["image_base64"] == "QUJD"
        assert result["mime_type"] == "image/png"
        assert result["model_used"] == "gemini-test-image"
        assert result["description"] == "A cozy cabin interior"

    @pytest.mark.asyncio
    async def test_response_without_image_raises(self):
        response = MagicMock(model_version="m")
        response.candidates = [MagicMock()]
        response.candidates[0].content.parts = [MagicMock(text="sorry", inline_data=None)]

        with patch("mockforge.services.gemini_service.genai.Client") as client_cls:
            client_cls.return_value.aio.models.generate_content = AsyncMock(return_value=response)
            service = GeminiService(api_key="test-key", requests_per_minute=0)
            with pytest.raises(Exception, match="No image found"):
                await service.generate_image("cabin")

    @pytest.mark.asyncio
    async def test_non_rate_limit_error_not_retried(self):
        with patch("mockforge.services.gemini_service.genai.Client") as client_cls:
            generate = AsyncMock(side_effect=ValueError("bad request"))
            client_cls.return_value.aio.models.generate_content = generate
            service = GeminiService(api_key="test-key", requests_per_minute=0)
            with pytest.raises(ValueError):
                await service.generate_json("prompt", system_prompt="Return JSON only.")

        assert generate.await_count == 1

    @pytest.mark.asyncio
    async def test_generate_json_returns_text(self):
        with patch("mockforge.services.gemini_service.genai.Client") as client_cls:
            client_cls.return_value.aio.models.generate_content = AsyncMock(
                return_value=MagicMock(text='{"prompts": []}')
            )
            service = GeminiService(api_key="test-key", requests_per_minute=0)
            text = await service.generate_json("prompt")

        assert text == '{"prompts": []}'

    @pytest.mark.asyncio
    async def test_unsupported_model_falls_back_to_default(self):
        image_part = MagicMock(text=None)
        image_part.inline_data.data = b"ABC"
        image_part.inline_data.mime_type = "image/png"
        response = MagicMock(model_version="models/img-default")
        response.candidates = [MagicMock()]
        response.candidates[0].content.parts = [image_part]

        with patch("mockforge.services.gemini_service.genai.Client") as client_cls:
            generate = AsyncMock(side_effect=[
                Exception("404 NOT_FOUND. models/custom is not found for API version v1beta, "
                          "or is not supported for generateContent."),
                response,
            ])
            client_cls.return_value.aio.models.generate_content = generate
            service = GeminiService(api_key="test-key", requests_per_minute=0)
            generator = GeminiImageGenerator(service=service, default_model="models/img-default")
            image = await generator.generate("a cat", "models/custom")

        assert image.src == "data:image/png;base64,QUJD"
        models = [call.kwargs["model"] for call in generate.await_args_list]
        assert models == ["models/custom", "models/img-default"]

    @pytest.mark.asyncio
    async def test_concurrent_calls_are_spaced(self):
        with patch("mockforge.services.gemini_service.genai.Client"):
            service = GeminiService(api_key="test-key", requests_per_minute=0)
        service._min_delay = 0.05

        async def paced():
            await service._rate_limit()
            return time.time()

        first, second = sorted(await asyncio.gather(paced(), paced()))

        assert second - first >= 0.04
