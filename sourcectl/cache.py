"""In-memory file state cache."""

import logging
import threading
from pathlib import Path
from typing import Iterable, Optional

from sourcectl.state import FileState, PathLike, normalize_path

logger = logging.getLogger(__name__)


class StateCache:
    """
    Mapping from normalized path to its last known FileState.

    Entries are immutable and replaced wholesale, so readers only ever see a
    complete state. The lock is held for dictionary access only; nothing
    slow happens while it is taken.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._states: dict[Path, FileState] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._states)

    def __contains__(self, path: PathLike) -> bool:
        key = normalize_path(path)
        with self._lock:
            return key in self._states

    def get(self, path: PathLike) -> FileState:
        """
        Get the cached state of a path.

        Args:
            path: File path (any form, normalized here)

        Returns:
            Cached FileState, or an UNKNOWN state if the path was never populated
        """
        key = normalize_path(path)
        with self._lock:
            state = self._states.get(key)
        if state is None:
            return FileState.unknown(key)
        return state

    def get_many(self, paths: Iterable[PathLike]) -> dict[Path, FileState]:
        """Get states for several paths (UNKNOWN for missing ones)."""
        keys = [normalize_path(p) for p in paths]
        with self._lock:
            found = {key: self._states.get(key) for key in keys}
        return {key: state if state is not None else FileState.unknown(key) for key, state in found.items()}

    def snapshot(self) -> dict[Path, FileState]:
        """Copy of every cached entry."""
        with self._lock:
            return dict(self._states)

    def merge(self, states: Iterable[FileState]) -> set[Path]:
        """
        Replace the entries for every path named in states.

        An incoming state older than the stored one is ignored, so applying
        the same payload again leaves the cache unchanged.

        Args:
            states: FileStates produced by a succeeded command

        Returns:
            Set of paths whose state actually changed
        """
        changed: set[Path] = set()
        incoming = list(states)
        with self._lock:
            for state in incoming:
                if not state.is_known:
                    continue
                current: Optional[FileState] = self._states.get(state.path)
                if current is not None and current.last_update_timestamp > state.last_update_timestamp:
                    logger.debug(f"Ignoring out-of-date state for {state.path}")
                    continue
                if not state.same_state(current):
                    changed.add(state.path)
                self._states[state.path] = state

        if changed:
            logger.debug(f"Merged {len(incoming)} states, {len(changed)} changed")
        return changed

    def invalidate(self, paths: Optional[Iterable[PathLike]] = None) -> set[Path]:
        """
        Drop entries so they are re-populated on next access.

        Args:
            paths: Paths to drop; None drops everything

        Returns:
            Set of paths that were removed
        """
        removed: set[Path] = set()
        with self._lock:
            if paths is None:
                removed.update(self._states)
                self._states.clear()
            else:
                for path in paths:
                    key = normalize_path(path)
                    if self._states.pop(key, None) is not None:
                        removed.add(key)

        logger.debug(f"Invalidated {len(removed)} cached states")
        return removed
