from typing import Dict, Iterator, Sequence

ROOT_CONTAINER_ID = "0"


class PathContainerCache:
    """
    Browsing path -> ContentDirectory container id.

    Paths are sequences of entry names; the root (empty path) is always
    container "0". The first id recorded for a path is kept for the rest of
    the session.
    """

    def __init__(self):
        self._ids: Dict[str, str] = {"": ROOT_CONTAINER_ID}

    @staticmethod
    def key(path: Sequence[str]) -> str:
        return "/".join(path)

    def container_id(self, path: Sequence[str]) -> str:
        return self._ids.get(self.key(path), ROOT_CONTAINER_ID)

    def remember(self, path: Sequence[str], container_id: str) -> bool:
        """Record the id for `path` unless one is known. Returns True if added."""
        key = self.key(path)
        if key in self._ids:
            return False
        self._ids[key] = container_id
        return True

    def reset(self):
        self._ids = {"": ROOT_CONTAINER_ID}

    def __getitem__(self, key: str) -> str:
        return self._ids[key]

    def __contains__(self, key: object) -> bool:
        return key in self._ids

    def __iter__(self) -> Iterator[str]:
        return iter(self._ids)

    def __len__(self) -> int:
        return len(self._ids)
