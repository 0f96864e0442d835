"""
Translation gateway for article titles and bodies.

Wraps an OpenAI-compatible chat completions endpoint with:
  - a language-skip check (no remote call when the text is already in the
    target language),
  - sentence-boundary chunking for long bodies,
  - retry with exponential backoff (1s, 2s, ...) via utils.retry_async.
"""

import asyncio
import logging
import re
from typing import Callable, List, Optional

import httpx
import openai
from langdetect import DetectorFactory, LangDetectException, detect
from openai import AsyncOpenAI

from instapod.config import TRANSLATION_TIMEOUT, TranslationConfig
from instapod.errors import TranslationFailed
from instapod.utils import hard_split, retry_async, strip_think_blocks

logger = logging.getLogger(__name__)

# langdetect is non-deterministic on short input unless seeded
DetectorFactory.seed = 0

MAX_CHARS_PER_CHUNK = 12_000  # ~4 000 tokens
MAX_ATTEMPTS = 3
BASE_DELAY = 1.0

# ISO 639-1 codes (langdetect output) for target language names
LANG_NAME_TO_CODE = {
    "svenska": "sv",
    "swedish": "sv",
    "english": "en",
    "engelska": "en",
    "deutsch": "de",
    "german": "de",
    "tyska": "de",
    "french": "fr",
    "français": "fr",
    "franska": "fr",
    "spanish": "es",
    "español": "es",
    "spanska": "es",
    "norwegian": "no",
    "norsk": "no",
    "norska": "no",
    "danish": "da",
    "dansk": "da",
    "danska": "da",
}

RETRYABLE_ERRORS = (
    openai.APIError,
    httpx.HTTPError,
    asyncio.TimeoutError,
    ValueError,
)

_SENTENCE_RE = re.compile(r"(?:[^.!?]*[.!?]+|[^.!?]+$)\s*")


def detect_language(text: str) -> str:
    """Return the ISO 639-1 code langdetect assigns to `text`, or "" if undetectable."""
    try:
        return detect(text)
    except LangDetectException:
        return ""


def language_code(language_name: str) -> str:
    return LANG_NAME_TO_CODE.get(language_name.strip().lower(), "")


def render_prompt(template: str, target_language: str) -> str:
    """Fill the {{target_language}} placeholder of a prompt template."""
    return re.sub(r"\{\{\s*target_language\s*\}\}", target_language, template)


def split_into_chunks(text: str, max_chars: int = MAX_CHARS_PER_CHUNK) -> List[str]:
    """Split text into chunks of at most max_chars, at sentence boundaries."""
    if len(text) <= max_chars:
        return [text]

    sentences = _SENTENCE_RE.findall(text) or [text]
    chunks = []
    current = ""
    for sentence in sentences:
        if len(sentence) > max_chars:
            if current.strip():
                chunks.append(current.strip())
            current = ""
            chunks.extend(hard_split(sentence, max_chars))
            continue
        if len(current) + len(sentence) > max_chars and current:
            chunks.append(current.strip())
            current = ""
        current += sentence
    if current.strip():
        chunks.append(current.strip())
    return chunks


class TranslationGateway:
    """Translate text through a chat completions endpoint.

    `client` and `sleep` are injectable so tests can run without network or
    real backoff delays.
    """

    def __init__(self, config: TranslationConfig, client: Optional[AsyncOpenAI] = None,
                 sleep: Callable = asyncio.sleep, timeout: float = TRANSLATION_TIMEOUT):
        self.config = config
        self.client = client or AsyncOpenAI(
            base_url=config.api_base.rstrip("/"),
            api_key=config.api_key,
            timeout=timeout,
            max_retries=0,  # retries are ours
        )
        self._sleep = sleep

    def should_skip(self, text: str, target_language: str) -> bool:
        if not self.config.skip_if_same:
            return False
        target_code = language_code(target_language)
        if not target_code:
            return False
        return detect_language(text) == target_code

    async def translate(self, text: str, target_language: Optional[str] = None,
                        is_title: bool = False) -> str:
        target_language = target_language or self.config.target_language
        if not text.strip():
            return text
        if self.should_skip(text, target_language):
            logger.info(f"  Already in {target_language}, skipping translation ({len(text)} chars)")
            return text

        if is_title:
            return await self._translate_chunk(text, target_language, is_title=True)

        chunks = split_into_chunks(text)
        if len(chunks) > 1:
            logger.info(f"  Translating {len(text)} chars in {len(chunks)} chunks")
        translated = []
        for i, chunk in enumerate(chunks, 1):
            result = await self._translate_chunk(chunk, target_language)
            logger.debug(f"  Translated chunk {i}/{len(chunks)} ({len(chunk)} -> {len(result)} chars)")
            translated.append(result)
        return "\n\n".join(translated)

    async def _translate_chunk(self, text: str, target_language: str, is_title: bool = False) -> str:
        template = self.config.title_prompt if is_title else self.config.text_prompt
        system = render_prompt(template, target_language)

        async def _call() -> str:
            resp = await self.client.chat.completions.create(
                model=self.config.model,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": text},
                ],
                temperature=0.3,
            )
            content = resp.choices[0].message.content if resp.choices else None
            result = strip_think_blocks(content or "")
            if not result:
                raise ValueError("Translation API returned an empty completion")
            return result

        try:
            return await retry_async(
                _call,
                attempts=MAX_ATTEMPTS,
                base_delay=BASE_DELAY,
                retry_on=RETRYABLE_ERRORS,
                sleep=self._sleep,
                label="translate",
            )
        except RETRYABLE_ERRORS as e:
            raise TranslationFailed(
                f"Translation failed after {MAX_ATTEMPTS} attempts: {e}"
            ) from e
