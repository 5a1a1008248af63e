# search/translation.py
import logging
import os

from dotenv import load_dotenv
from httpx import AsyncClient, HTTPError

from crawler import db
from utils.background import BackgroundTasks
from .models import NormalizedQuery, TranslationInfo

load_dotenv()
GOOGLE_TRANSLATE_API_KEY = os.getenv("GOOGLE_TRANSLATE_API_KEY")
TRANSLATE_URL = "https://translation.googleapis.com/language/translate/v2"
TRANSLATE_TIMEOUT = 2.0

logger = logging.getLogger("search.translation")


def needs_translation(text):
    """Only text containing a non-ASCII character is sent for translation."""
    return any(ord(ch) > 127 for ch in text)


class QueryNormalizer:
    """
    Trims queries and translates non-English ones to English.

    Fails open: a missing key, timeout, HTTP error or unexpected payload
    returns the trimmed query without translation info. Successful
    translations are cached in the ``translation_cache`` collection and never
    expire.
    """

    def __init__(
        self,
        api_key=GOOGLE_TRANSLATE_API_KEY,
        timeout=TRANSLATE_TIMEOUT,
        client=None,
        background=None,
    ):
        self.api_key = api_key
        self.client = client or AsyncClient(timeout=timeout)
        self.background = background or BackgroundTasks("translation")

    async def close(self):
        await self.client.aclose()

    async def normalize(self, query):
        """
        Args:
            query (str): Raw user query

        Returns:
            NormalizedQuery: ``search_text`` to send to providers and, when the
                query was translated, ``translation_info``
        """
        text = (query or "").strip()
        if not text or not needs_translation(text):
            return NormalizedQuery(search_text=text)

        cached = await self._cached(text)
        if cached:
            return NormalizedQuery(
                search_text=cached["translated_text"],
                translation_info=TranslationInfo(
                    original_query=text,
                    translated_query=cached["translated_text"],
                    detected_language=cached.get("detected_language") or "und",
                    from_cache=True,
                ),
            )

        if not self.api_key:
            return NormalizedQuery(search_text=text)

        translated = await self._translate(text)
        if translated is None:
            return NormalizedQuery(search_text=text)

        translated_text, language = translated
        if language == "en" or not translated_text:
            return NormalizedQuery(search_text=text)

        self.background.submit(
            self._store(text, translated_text, language), label="translation-cache-put"
        )
        return NormalizedQuery(
            search_text=translated_text,
            translation_info=TranslationInfo(
                original_query=text,
                translated_query=translated_text,
                detected_language=language,
                from_cache=False,
            ),
        )

    async def _cached(self, text):
        try:
            return await db.get_db().translation_cache.find_one({"_id": text})
        except Exception as e:
            logger.warning(f"Translation cache read failed: {e}")
            return None

    async def _translate(self, text):
        """Call Google Translation v2; None on any failure."""
        try:
            resp = await self.client.post(
                TRANSLATE_URL,
                params={"key": self.api_key},
                json={"q": text, "target": "en", "format": "text"},
            )
            resp.raise_for_status()
            item = resp.json()["data"]["translations"][0]
            return item["translatedText"].strip(), item.get("detectedSourceLanguage") or "und"
        except HTTPError as e:
            logger.warning(f"Translation failed for {text!r}: {type(e).__name__}: {e}")
        except (KeyError, IndexError, TypeError, ValueError, AttributeError) as e:
            logger.warning(f"Unexpected translation payload for {text!r}: {e!r}")
        return None

    async def _store(self, text, translated_text, language):
        await db.get_db().translation_cache.update_one(
            {"_id": text},
            {
                "$set": {
                    "translated_text": translated_text,
                    "detected_language": language,
                    "created_at": db.utcnow(),
                }
            },
            upsert=True,
        )
