# tests/test_translation.py
import httpx
import pytest

from search.translation import QueryNormalizer
from utils.background import BackgroundTasks


def translator(payload=None, status=200, calls=None):
    def handler(request):
        if calls is not None:
            calls.append(request)
        return httpx.Response(status, json=payload or {})

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def translation(text, lang):
    return {"data": {"translations": [{"translatedText": text, "detectedSourceLanguage": lang}]}}


@pytest.mark.asyncio
async def test_ascii_query_is_only_trimmed():
    calls = []
    normalizer = QueryNormalizer(api_key="k", client=translator(calls=calls))
    result = await normalizer.normalize("  egg  ")
    assert result.search_text == "egg"
    assert result.translation_info is None
    assert calls == []


@pytest.mark.asyncio
async def test_non_ascii_query_is_translated_and_cached(fake_db):
    background = BackgroundTasks("test")
    normalizer = QueryNormalizer(
        api_key="k", client=translator(translation("egg", "ja")), background=background
    )
    result = await normalizer.normalize("卵")
    assert result.search_text == "egg"
    assert result.translation_info.original_query == "卵"
    assert result.translation_info.detected_language == "ja"
    assert result.translation_info.from_cache is False

    await background.drain()
    assert fake_db.translation_cache.docs[0]["_id"] == "卵"

    again = await normalizer.normalize("卵")
    assert again.translation_info.from_cache is True


@pytest.mark.asyncio
async def test_translation_failure_fails_open():
    normalizer = QueryNormalizer(api_key="k", client=translator(status=500))
    result = await normalizer.normalize("œuf")
    assert result.search_text == "œuf"
    assert result.translation_info is None


@pytest.mark.asyncio
async def test_malformed_payload_fails_open():
    normalizer = QueryNormalizer(api_key="k", client=translator({"data": {}}))
    result = await normalizer.normalize("œuf")
    assert result.search_text == "œuf"
    assert result.translation_info is None


@pytest.mark.asyncio
async def test_missing_key_skips_translation():
    calls = []
    normalizer = QueryNormalizer(api_key=None, client=translator(calls=calls))
    result = await normalizer.normalize("œuf")
    assert result.search_text == "œuf"
    assert calls == []


@pytest.mark.asyncio
async def test_english_detection_is_untranslated():
    normalizer = QueryNormalizer(api_key="k", client=translator(translation("café", "en")))
    result = await normalizer.normalize("café")
    assert result.search_text == "café"
    assert result.translation_info is None
