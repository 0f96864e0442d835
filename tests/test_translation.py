"""Tests for instapod/translation.py -- skip check, chunking, retry/backoff."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from instapod.config import TranslationConfig


def _response(text):
    resp = MagicMock()
    resp.choices = [MagicMock()]
    resp.choices[0].message.content = text
    return resp


def _gateway(create, **config):
    from instapod.translation import TranslationGateway
    client = MagicMock()
    client.chat.completions.create = create
    delays = []

    async def fake_sleep(t):
        delays.append(t)

    gateway = TranslationGateway(TranslationConfig(api_key="sk-test", **config), client=client, sleep=fake_sleep)
    return gateway, delays


class TestLanguageHelpers:

    def test_language_code(self):
        from instapod.translation import language_code
        assert language_code("svenska") == "sv"
        assert language_code(" Swedish ") == "sv"
        assert language_code("klingon") == ""

    def test_render_prompt(self):
        from instapod.translation import render_prompt
        assert render_prompt("Translate to {{target_language}}.", "svenska") == "Translate to svenska."
        assert render_prompt("To {{ target_language }}", "english") == "To english"

    def test_detect_language_empty(self):
        from instapod.translation import detect_language
        assert detect_language("") == ""


class TestSplitIntoChunks:

    def test_short_text_is_one_chunk(self):
        from instapod.translation import split_into_chunks
        assert split_into_chunks("Short. Text.", max_chars=100) == ["Short. Text."]

    def test_splits_at_sentence_boundaries(self):
        from instapod.translation import split_into_chunks
        text = "One sentence here. Two sentence here. Three sentence here."
        chunks = split_into_chunks(text, max_chars=40)
        assert chunks == ["One sentence here. Two sentence here.", "Three sentence here."]
        assert all(len(c) <= 40 for c in chunks)

    def test_trailing_fragment_is_kept(self):
        from instapod.translation import split_into_chunks
        text = "First sentence. Second sentence. no terminal punctuation"
        chunks = split_into_chunks(text, max_chars=25)
        assert chunks[-1] == "no terminal punctuation"

    def test_overlong_sentence_is_hard_split(self):
        from instapod.translation import split_into_chunks
        text = "word " * 30
        chunks = split_into_chunks(text.strip(), max_chars=22)
        assert all(len(c) <= 22 for c in chunks)
        assert " ".join(chunks).split() == text.split()


class TestTranslate:

    def test_skip_if_same_language_makes_no_calls(self):
        create = AsyncMock(return_value=_response("x"))
        gateway, _ = _gateway(create)
        with patch("instapod.translation.detect_language", return_value="sv"):
            result = asyncio.run(gateway.translate("Det här är redan svenska.", "svenska"))
        assert result == "Det här är redan svenska."
        assert create.await_count == 0

    def test_skip_disabled_translates(self):
        create = AsyncMock(return_value=_response("Hej"))
        gateway, _ = _gateway(create, skip_if_same=False)
        with patch("instapod.translation.detect_language", return_value="sv"):
            assert asyncio.run(gateway.translate("Hej", "svenska")) == "Hej"
        assert create.await_count == 1

    def test_empty_text_returned_unchanged(self):
        create = AsyncMock()
        gateway, _ = _gateway(create)
        assert asyncio.run(gateway.translate("   ")) == "   "
        assert create.await_count == 0

    def test_title_uses_title_prompt(self):
        create = AsyncMock(return_value=_response("Titel"))
        gateway, _ = _gateway(create, title_prompt="TITLE -> {{target_language}}")
        with patch("instapod.translation.detect_language", return_value="en"):
            assert asyncio.run(gateway.translate("Title", is_title=True)) == "Titel"
        messages = create.await_args.kwargs["messages"]
        assert messages[0] == {"role": "system", "content": "TITLE -> svenska"}
        assert messages[1] == {"role": "user", "content": "Title"}

    def test_long_body_is_chunked_and_joined(self):
        create = AsyncMock(side_effect=[_response("A"), _response("B")])
        gateway, _ = _gateway(create)
        text = "x" * 7000 + ". " + "y" * 7000 + "."
        with patch("instapod.translation.detect_language", return_value="en"):
            result = asyncio.run(gateway.translate(text))
        assert create.await_count == 2
        assert result == "A\n\nB"

    def test_think_blocks_are_stripped(self):
        create = AsyncMock(return_value=_response("<think>plan</think>Hej världen"))
        gateway, _ = _gateway(create)
        with patch("instapod.translation.detect_language", return_value="en"):
            assert asyncio.run(gateway.translate("Hello world")) == "Hej världen"

    def test_retry_fail_fail_success(self):
        import httpx
        create = AsyncMock(side_effect=[
            httpx.ConnectError("refused"),
            httpx.ReadTimeout("slow"),
            _response("Hej"),
        ])
        gateway, delays = _gateway(create)
        with patch("instapod.translation.detect_language", return_value="en"):
            assert asyncio.run(gateway.translate("Hello")) == "Hej"
        assert create.await_count == 3
        assert delays == [1.0, 2.0]

    def test_exhaustion_raises_translation_failed(self):
        import httpx
        from instapod.errors import TranslationFailed
        create = AsyncMock(side_effect=httpx.ConnectError("refused"))
        gateway, delays = _gateway(create)
        with patch("instapod.translation.detect_language", return_value="en"):
            with pytest.raises(TranslationFailed):
                asyncio.run(gateway.translate("Hello"))
        assert create.await_count == 3
        assert delays == [1.0, 2.0]

    def test_empty_completion_is_retried(self):
        create = AsyncMock(side_effect=[_response(""), _response("Hej")])
        gateway, delays = _gateway(create)
        with patch("instapod.translation.detect_language", return_value="en"):
            assert asyncio.run(gateway.translate("Hello")) == "Hej"
        assert delays == [1.0]
