"""Local progress cache - best-effort record of completed identities."""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path

from batcheval.engine.contracts import ProgressCache

logger = logging.getLogger(__name__)


def _entry(identity: str, score: int) -> dict:
    return {
        "identity": identity,
        "score": score,
        "finished_at": datetime.now(timezone.utc).isoformat(),
    }


class InMemoryProgressCache(ProgressCache):
    def __init__(self):
        self._entries: list[dict] = []

    def record(self, identity: str, score: int) -> None:
        self._entries.append(_entry(identity, score))

    def completed(self) -> list[dict]:
        return list(self._entries)


class JsonProgressCache(ProgressCache):
    """Completed identities kept in a JSON file. Not authoritative."""

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._entries = self._load()

    def _load(self) -> list[dict]:
        if not self.path.exists():
            return []
        try:
            with self.path.open("r", encoding="utf-8") as f:
                content = f.read().strip()
            if not content:
                return []
            data = json.loads(content)
        except (json.JSONDecodeError, OSError) as e:
            logger.warning(f"Ignoring unreadable progress cache {self.path}: {e}")
            return []
        return data if isinstance(data, list) else []

    def record(self, identity: str, score: int) -> None:
        self._entries.append(_entry(identity, score))
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("w", encoding="utf-8") as f:
            json.dump(self._entries, f, indent=2, ensure_ascii=False)

    def completed(self) -> list[dict]:
        return list(self._entries)
