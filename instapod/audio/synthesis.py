"""
Synthesis gateway: text in, MP3 bytes + estimated duration out.

Each call runs instapod.audio.tts_worker in its own process and waits for it
with a timeout. The worker writes into a private temp directory; this side
reads the bytes back and cleans up, so nothing half-written ever lands in the
audio directory.
"""

import asyncio
import json
import logging
import shutil
import sys
import tempfile
from pathlib import Path
from typing import List, Optional, Sequence

from instapod.config import SYNTHESIS_TIMEOUT, TtsConfig
from instapod.errors import SynthesisFailed
from instapod.models import SynthesisResult
from instapod.utils import slugify

logger = logging.getLogger(__name__)

# edge-tts emits 128 kbit/s MP3, i.e. 16 000 bytes per second of audio.
AUDIO_BYTES_PER_SECOND = 16_000

MAX_SLUG_LEN = 60

WORKER_COMMAND = (sys.executable, "-m", "instapod.audio.tts_worker")


def estimate_duration(size_bytes: int) -> int:
    """Approximate duration in whole seconds from MP3 size at the fixed bitrate."""
    return max(0, int(round(size_bytes / AUDIO_BYTES_PER_SECOND)))


def audio_filename(item_id: str, title: str) -> str:
    """Filesystem-safe audio name: "<id>-<slug>.mp3". The id prefix keeps names unique."""
    slug = slugify(title, max_len=MAX_SLUG_LEN)
    return f"{item_id}-{slug}.mp3" if slug else f"{item_id}.mp3"


class SynthesisGateway:
    """Run TTS in an isolated child process."""

    def __init__(self, config: TtsConfig, timeout: float = SYNTHESIS_TIMEOUT,
                 command: Optional[Sequence[str]] = None):
        self.config = config
        self.timeout = timeout
        self.command: List[str] = list(command or WORKER_COMMAND)

    async def synthesize(self, text: str, voice: Optional[TtsConfig] = None) -> SynthesisResult:
        voice = voice or self.config
        if not text.strip():
            raise SynthesisFailed("Nothing to synthesize: empty text")

        workdir = Path(tempfile.mkdtemp(prefix="instapod-tts-"))
        output_path = workdir / "episode.mp3"
        try:
            size = await self._run_worker({
                "text": text,
                "output_path": str(output_path),
                "voice": voice.voice,
                "rate": voice.rate,
                "pitch": voice.pitch,
            })
            try:
                audio = output_path.read_bytes()
            except OSError as e:
                raise SynthesisFailed(f"TTS worker reported success but wrote no audio: {e}") from e
            if not audio:
                raise SynthesisFailed("TTS worker produced an empty audio file")
            if size != len(audio):
                logger.warning(f"  TTS worker reported {size} bytes, read {len(audio)}")
            return SynthesisResult(audio=audio, duration_seconds=estimate_duration(len(audio)))
        finally:
            shutil.rmtree(workdir, ignore_errors=True)

    async def _run_worker(self, request: dict) -> int:
        payload = json.dumps(request).encode("utf-8")
        try:
            proc = await asyncio.create_subprocess_exec(
                *self.command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=None,  # inherit: worker logs go to our stderr
            )
        except OSError as e:
            raise SynthesisFailed(f"Could not start TTS worker: {e}") from e

        try:
            stdout, _ = await asyncio.wait_for(proc.communicate(payload), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            proc.kill()
            await proc.wait()
            raise SynthesisFailed(f"TTS worker timed out after {self.timeout:.0f}s") from e

        if proc.returncode != 0:
            raise SynthesisFailed(f"TTS worker exited with code {proc.returncode}")

        try:
            return int(json.loads(stdout.decode("utf-8"))["size"])
        except (ValueError, KeyError, TypeError) as e:
            raise SynthesisFailed(f"TTS worker returned invalid output: {stdout[:200]!r}") from e
