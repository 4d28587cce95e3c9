"""
查询缓存模块。
以接口路径为键缓存 GET 结果；变更操作后按路径前缀失效，使列表视图无需手动刷新。
"""
import copy
import threading
from typing import Any, Callable, Dict, Optional


class QueryCache:
    def __init__(self):
        self._data: Dict[str, Any] = {}
        self._lock = threading.RLock()

    @staticmethod
    def _segments(key: str):
        return [s for s in key.split("?")[0].split("/") if s]

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._data[key] = value

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._data

    def get_or_fetch(self, key: str, fetcher: Callable[[], Any]) -> Any:
        with self._lock:
            if key in self._data:
                return self._data[key]
        value = fetcher()
        self.set(key, value)
        return value

    def invalidate(self, prefix: str) -> int:
        """
        失效以 prefix 开头的所有缓存项 (按路径段匹配，/api/products 不会误伤 /api/products-x)。
        返回被删除的条目数。
        """
        target = self._segments(prefix)
        with self._lock:
            doomed = [k for k in self._data if self._segments(k)[:len(target)] == target]
            for k in doomed:
                del self._data[k]
            return len(doomed)

    def patch(self, key: str, func: Callable[[Any], Any]) -> Optional[Any]:
        """
        就地修改缓存项 (乐观更新)，返回修改前的快照，供回滚使用。
        缓存中没有该键时什么也不做，返回 None。
        """
        with self._lock:
            if key not in self._data:
                return None
            before = copy.deepcopy(self._data[key])
            self._data[key] = func(copy.deepcopy(before))
            return before

    def clear(self) -> None:
        with self._lock:
            self._data.clear()
