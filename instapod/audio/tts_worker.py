"""
TTS worker, run as a child process so a hang or crash in the speech engine
cannot take down the server or the scheduler.

Usage: python -m instapod.audio.tts_worker  < request.json

Request (stdin, JSON): {"text", "output_path", "voice", "rate", "pitch"}
Response (stdout, JSON): {"size": <bytes written>}
Exit code 0 on success, 1 on any failure (details go to stderr).
"""

import asyncio
import json
import logging
import re
import sys
from pathlib import Path
from typing import List

import edge_tts

from instapod.utils import hard_split

logger = logging.getLogger("instapod.tts_worker")

MAX_CHARS_PER_CHUNK = 5000

_SENTENCE_RE = re.compile(r"(?:[^.!?]*[.!?]+|[^.!?]+$)\s*")


def split_text_for_tts(text: str, max_chars: int = MAX_CHARS_PER_CHUNK) -> List[str]:
    """Split at paragraph boundaries, falling back to sentences for long paragraphs."""
    if len(text) <= max_chars:
        return [text]

    chunks = []
    current = ""
    for paragraph in re.split(r"\n\n+", text):
        if current and len(current) + len(paragraph) + 2 > max_chars:
            chunks.append(current.strip())
            current = ""

        if len(paragraph) > max_chars:
            if current:
                chunks.append(current.strip())
                current = ""
            for sentence in _SENTENCE_RE.findall(paragraph) or [paragraph]:
                if len(sentence) > max_chars:
                    if current.strip():
                        chunks.append(current.strip())
                    current = ""
                    chunks.extend(hard_split(sentence, max_chars))
                    continue
                if current and len(current) + len(sentence) > max_chars:
                    chunks.append(current.strip())
                    current = ""
                current += sentence
        else:
            current += ("\n\n" if current else "") + paragraph

    if current.strip():
        chunks.append(current.strip())
    return [c for c in chunks if c]


async def synthesize_chunk(text: str, output_path: Path, voice: str, rate: str, pitch: str) -> None:
    communicate = edge_tts.Communicate(text, voice, rate=rate, pitch=pitch)
    await communicate.save(str(output_path))


async def synthesize_to_file(text: str, output_path: Path, voice: str, rate: str, pitch: str) -> int:
    """Synthesize `text` into one MP3 at output_path. Returns its size in bytes."""
    output_path.parent.mkdir(parents=True, exist_ok=True)
    chunks = split_text_for_tts(text)

    if len(chunks) == 1:
        await synthesize_chunk(chunks[0], output_path, voice, rate, pitch)
    else:
        logger.info(f"[tts] Splitting into {len(chunks)} chunks for TTS")
        part_paths = [output_path.with_name(f"{output_path.stem}.part{i}{output_path.suffix}")
                      for i in range(len(chunks))]
        try:
            for chunk, part in zip(chunks, part_paths):
                await synthesize_chunk(chunk, part, voice, rate, pitch)
            # MP3 frames concatenate byte-wise
            with open(output_path, "wb") as out:
                for part in part_paths:
                    out.write(part.read_bytes())
        finally:
            for part in part_paths:
                try:
                    part.unlink(missing_ok=True)
                except OSError as e:
                    logger.warning(f"[tts] Could not remove {part}: {e}")

    return output_path.stat().st_size


def main() -> int:
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(levelname)s - %(name)s - %(message)s',
        stream=sys.stderr,
    )
    try:
        request = json.loads(sys.stdin.read())
        size = asyncio.run(synthesize_to_file(
            request["text"],
            Path(request["output_path"]),
            request["voice"],
            request.get("rate", "+0%"),
            request.get("pitch", "+0Hz"),
        ))
    except Exception as e:
        logger.error(f"[tts-worker] Fatal: {type(e).__name__}: {e}")
        return 1
    sys.stdout.write(json.dumps({"size": size}))
    sys.stdout.flush()
    return 0


if __name__ == "__main__":
    sys.exit(main())
