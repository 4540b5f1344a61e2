import os
import re
from pathlib import Path
from typing import Dict, Optional
from uuid import uuid4

from meowbot_core.config.settings import settings
from meowbot_core.domain.conversation import KeyValueStore
from meowbot_core.domain.exceptions import BusinessError


class InMemoryKVStore(KeyValueStore):
    """进程内的键值存储，主要用于测试与临时会话。"""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def read(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def write(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileKVStore(KeyValueStore):
    """每个 key 对应 root 目录下的一个文件，写入采用临时文件 + os.replace。"""

    _SAFE_KEY = re.compile(r"^[A-Za-z0-9_.-]+$")

    def __init__(self, root: str | Path | None = None):
        self._root = Path(root or settings.storage_root).resolve()
        self._root.mkdir(parents=True, exist_ok=True)

    def read(self, key: str) -> Optional[str]:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            return path.read_text(encoding="utf-8")
        except OSError as e:
            raise BusinessError(code="STORE_READ_ERROR", message=str(e))

    def write(self, key: str, value: str) -> None:
        path = self._path(key)
        tmp_path = self._root / f"{key}.{uuid4().hex}.tmp"
        try:
            tmp_path.write_text(value, encoding="utf-8")
            os.replace(tmp_path, path)
        except OSError as e:
            tmp_path.unlink(missing_ok=True)
            raise BusinessError(code="STORE_WRITE_ERROR", message=str(e))

    def remove(self, key: str) -> None:
        try:
            self._path(key).unlink(missing_ok=True)
        except OSError as e:
            raise BusinessError(code="STORE_DELETE_ERROR", message=str(e))

    def _path(self, key: str) -> Path:
        if not self._SAFE_KEY.match(key):
            raise BusinessError(code="INVALID_STORE_KEY", message=key)
        return self._root / f"{key}.json"
