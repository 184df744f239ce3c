"""Persisted record of conversation titles whose reveal animation has played."""
import json
import logging
from pathlib import Path
from typing import Iterator, Set, Union

logger = logging.getLogger(__name__)


class TypedTitleStore:
    """
    Set of conversation ids backed by a JSON file.

    Loaded once on construction; every mark_typed() writes the file back
    before returning. Missing or unreadable storage starts empty.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._ids: Set[str] = self._load()

    def _load(self) -> Set[str]:
        if not self.path.exists():
            return set()
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.error("Failed to read typed titles from %s: %s", self.path, e)
            return set()
        if not isinstance(data, list):
            logger.error("Typed titles in %s are not a list, ignoring", self.path)
            return set()
        return {str(item) for item in data}

    def _save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(sorted(self._ids)), encoding="utf-8")

    def has(self, conversation_id: str) -> bool:
        return conversation_id in self._ids

    def mark_typed(self, conversation_id: str) -> None:
        if conversation_id in self._ids:
            return
        self._ids.add(conversation_id)
        self._save()

    def __contains__(self, conversation_id: object) -> bool:
        return conversation_id in self._ids

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._ids))

    def __len__(self) -> int:
        return len(self._ids)
