"""Shared utility functions for the Instapod pipeline."""
import asyncio
import logging
import os
import re
import tempfile
import unicodedata
from pathlib import Path
from typing import Awaitable, Callable, List, Tuple, Type, TypeVar, Union

logger = logging.getLogger(__name__)

T = TypeVar("T")


def strip_think_blocks(text: str) -> str:
    """Remove <think>...</think> blocks from LLM output (reasoning-model safety net)."""
    return re.sub(r"<think>.*?</think>", "", text, flags=re.DOTALL).strip()


async def retry_async(
    func: Callable[[], Awaitable[T]],
    *,
    attempts: int = 3,
    base_delay: float = 1.0,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    label: str = "call",
) -> T:
    """Await `func()` up to `attempts` times with exponential backoff.

    Delays double from `base_delay` (1s, 2s, 4s, ...) and are only slept
    between attempts, never after the last one. Exceptions outside `retry_on`
    propagate immediately; after the final attempt the last exception is
    re-raised unchanged.
    """
    if attempts < 1:
        raise ValueError("attempts must be >= 1")
    for attempt in range(attempts):
        try:
            return await func()
        except retry_on as e:
            if attempt + 1 >= attempts:
                logger.error(f"  {label} failed after {attempts} attempts: {e}")
                raise
            wait = base_delay * (2 ** attempt)
            logger.warning(
                f"  {label} attempt {attempt + 1}/{attempts} failed "
                f"({type(e).__name__}: {e}), retrying in {wait:.1f}s..."
            )
            await sleep(wait)
    raise AssertionError("unreachable")


def atomic_write_bytes(path: Union[str, Path], data: bytes) -> None:
    """Write `data` to `path` via a temp file in the same directory + os.replace.

    Readers see either the previous file or the complete new one. OSError
    propagates to the caller; the temp file is removed on failure.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except OSError:
            pass
        raise


def atomic_write_text(path: Union[str, Path], text: str) -> None:
    atomic_write_bytes(path, text.encode("utf-8"))


def slugify(text: str, max_len: int = 60) -> str:
    """Convert text to a filesystem-safe ASCII slug (diacritics stripped)."""
    decomposed = unicodedata.normalize("NFKD", text)
    ascii_text = "".join(c for c in decomposed if not unicodedata.combining(c))
    slug = re.sub(r"[^a-z0-9]+", "-", ascii_text.lower()).strip("-")
    return slug[:max_len].strip("-")


def hard_split(sentence: str, max_chars: int) -> List[str]:
    """Split an over-long sentence at whitespace (or mid-word if it has none)."""
    pieces = []
    rest = sentence.strip()
    while len(rest) > max_chars:
        cut = rest.rfind(" ", 0, max_chars + 1)
        if cut <= 0:
            cut = max_chars
        pieces.append(rest[:cut].strip())
        rest = rest[cut:].strip()
    if rest:
        pieces.append(rest)
    return pieces
