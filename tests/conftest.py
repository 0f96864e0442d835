"""Shared pytest fixtures for the Instapod test suite."""

import asyncio

import pytest

from instapod.config import ENV_OVERRIDES, validate_config
from instapod.errors import SynthesisFailed
from instapod.models import SourceItem, SynthesisResult


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep the developer's environment out of config loading."""
    for key in list(ENV_OVERRIDES) + ["CONFIG_PATH"]:
        monkeypatch.delenv(key, raising=False)


@pytest.fixture
def data_dir(tmp_path):
    d = tmp_path / "data"
    d.mkdir()
    return d


@pytest.fixture
def make_config(data_dir):
    """Factory for a valid AppConfig; keyword sections are merged over the base."""
    def _make(**sections):
        raw = {
            "instapaper": {
                "consumer_key": "ck",
                "consumer_secret": "cs",
                "username": "reader@example.com",
                "password": "secret",
            },
            "server": {"base_url": "https://pod.example.com"},
            "admin": {"username": "admin", "password": "adminpass"},
            "data_dir": str(data_dir),
        }
        for key, value in sections.items():
            if isinstance(value, dict) and isinstance(raw.get(key), dict):
                raw[key] = {**raw[key], **value}
            else:
                raw[key] = value
        return validate_config(raw)
    return _make


ARTICLE_HTML = "<html><body><h1>Heading</h1><p>First paragraph.</p><p>Second paragraph.</p></body></html>"


class FakeSource:
    """In-memory article source. `items` maps tag (None = untagged listing) to items."""

    def __init__(self, items, content=None, tagged=None):
        self.items = list(items)
        self.tagged = tagged or {}
        self.content = content or {}
        self.list_calls = []
        self.fetch_calls = []

    async def list_items(self, tag=None):
        self.list_calls.append(tag)
        if tag is None:
            return list(self.items)
        return list(self.tagged.get(tag, []))

    async def fetch_content(self, item_id):
        self.fetch_calls.append(item_id)
        return self.content.get(item_id, ARTICLE_HTML)


class FakeTranslator:
    def __init__(self, prefix="[sv] ", delay=0.0):
        self.prefix = prefix
        self.delay = delay
        self.calls = []
        self.active = 0
        self.max_active = 0

    async def translate(self, text, target_language=None, is_title=False):
        self.calls.append((text, is_title))
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            return f"{self.prefix}{text}"
        finally:
            self.active -= 1


class FakeSynthesizer:
    """Returns 192 000 bytes of fake audio; raises for ids listed in `fail_on`."""

    def __init__(self, fail_on=(), delay=0.0):
        self.fail_on = set(fail_on)
        self.delay = delay
        self.calls = []
        self.active = 0
        self.max_active = 0

    async def synthesize(self, text, voice=None):
        self.calls.append(text)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            for marker in self.fail_on:
                if marker in text:
                    raise SynthesisFailed(f"boom on {marker}")
            return SynthesisResult(audio=b"\xff" * 192_000, duration_seconds=12)
        finally:
            self.active -= 1


def make_items(*ids):
    return [SourceItem(id=str(i), title=f"Article {i}", source_url=f"https://www.site{i}.com/post")
            for i in ids]


@pytest.fixture
def fake_source():
    return FakeSource(make_items(1, 2, 3))


@pytest.fixture
def fake_synthesizer():
    return FakeSynthesizer()


@pytest.fixture
def fake_translator():
    return FakeTranslator()
