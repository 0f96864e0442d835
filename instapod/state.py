"""
Durable record of what the pipeline has processed.

state.json is the single source of truth. Every read re-loads it from disk so
writes made by other processes are always visible, and every write replaces
the file atomically (temp file + os.replace), so a crash leaves either the old
or the new file, never a truncated one.
"""

import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Union

from pydantic import ValidationError

from instapod.errors import StateWriteFailed
from instapod.models import Episode, PipelineState
from instapod.utils import atomic_write_text

logger = logging.getLogger(__name__)

STATE_FILENAME = "state.json"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class StateStore:
    """Persisted PipelineState with atomic commit semantics."""

    def __init__(self, data_dir: Union[str, Path]):
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.path = self.data_dir / STATE_FILENAME
        self._write_lock = threading.Lock()

    # --- reading -----------------------------------------------------------

    def load(self) -> PipelineState:
        """Read state from disk. Missing or corrupt files degrade to an empty state."""
        try:
            content = self.path.read_bytes()
        except FileNotFoundError:
            return PipelineState()
        except OSError as e:
            logger.warning(f"[state] Could not read {self.path}: {e} -- starting clean")
            return PipelineState()
        try:
            return PipelineState.model_validate_json(content)
        except ValidationError as e:
            logger.warning(f"[state] Corrupt state file {self.path} ({e.error_count()} errors) -- starting clean")
        except ValueError as e:
            # undecodable bytes
            logger.warning(f"[state] Unreadable state file {self.path}: {e} -- starting clean")
        return PipelineState()

    def is_processed(self, item_id: str) -> bool:
        return item_id in self.load().episodes

    def get_episode(self, item_id: str) -> Optional[Episode]:
        return self.load().episodes.get(item_id)

    def list_episodes(self) -> List[Episode]:
        """Committed episodes, newest first; ties broken by id ascending."""
        episodes = list(self.load().episodes.values())
        episodes.sort(key=lambda ep: ep.id)
        episodes.sort(key=lambda ep: ep.published_at, reverse=True)
        return episodes

    def get_last_run(self) -> Optional[datetime]:
        return self.load().last_run_at

    def status(self) -> dict:
        state = self.load()
        return {
            "episode_count": len(state.episodes),
            "last_run_at": state.last_run_at.isoformat() if state.last_run_at else None,
        }

    # --- writing -----------------------------------------------------------

    def _save(self, state: PipelineState) -> None:
        try:
            atomic_write_text(self.path, state.model_dump_json(indent=2))
        except OSError as e:
            raise StateWriteFailed(f"Could not write {self.path}: {e}") from e

    def commit(self, episode: Episode) -> None:
        """Record a finished episode and stamp last_run_at, in one atomic write."""
        with self._write_lock:
            state = self.load()
            state.episodes[episode.id] = episode
            state.last_run_at = _now()
            self._save(state)

    def touch_last_run(self) -> None:
        with self._write_lock:
            state = self.load()
            state.last_run_at = _now()
            self._save(state)

    def delete(self, item_id: str) -> Optional[Episode]:
        """Remove an episode record (admin action). Returns the removed episode, if any."""
        with self._write_lock:
            state = self.load()
            episode = state.episodes.pop(item_id, None)
            if episode is not None:
                self._save(state)
            return episode
