"""
REST 接口封装模块。
统一负责请求发送 (JSON / multipart)、错误映射、GET 结果缓存以及带退避的多端点重试。
"""
import logging
import time
from typing import Any, Dict, Iterable, Optional

import requests

from jewelry_store.cache import QueryCache

logger = logging.getLogger(__name__)

NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}


class ApiError(Exception):
    """网络错误或非 2xx 响应。status 为 None 表示请求根本没有到达服务器。"""

    def __init__(self, status: Optional[int], message: str, path: str = ""):
        super().__init__(f"{status}: {message}" if status else message)
        self.status = status
        self.message = message
        self.path = path


class AuthenticationError(ApiError):
    """管理接口鉴权失败 (401/403)，调用方应引导用户重新登录。"""


class ApiClient:
    """
    后端接口客户端。
    session 可注入 (测试时传入假对象)，需提供 requests.Session.request 的签名。
    """

    def __init__(
        self,
        base_url: str,
        session: Optional[requests.Session] = None,
        timeout: float = 10.0,
        cache: Optional[QueryCache] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout
        self.cache = cache if cache is not None else QueryCache()

    # ==========================================
    # 基础请求
    # ==========================================

    def request(
        self,
        method: str,
        path: str,
        json: Any = None,
        files: Optional[Dict[str, Any]] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> requests.Response:
        """
        发送请求。带 files 时使用 multipart，不设置 JSON Content-Type。
        非 2xx 响应抛出 ApiError；401/403 抛出 AuthenticationError。
        """
        url = f"{self.base_url}{path}"
        headers = dict(NO_CACHE_HEADERS)
        kwargs: Dict[str, Any] = {"headers": headers, "timeout": self.timeout}
        if files is not None:
            kwargs["files"] = files
            if data is not None:
                kwargs["data"] = data
        elif json is not None:
            kwargs["json"] = json

        if "/admin/" in path:
            logger.debug("管理接口请求 %s %s", method, path)

        try:
            resp = self.session.request(method, url, **kwargs)
        except requests.RequestException as e:
            logger.error("请求 %s %s 失败: %s", method, path, e)
            raise ApiError(None, str(e), path) from e

        if resp.status_code in (401, 403):
            raise AuthenticationError(resp.status_code, "未登录或登录已过期", path)
        if not (200 <= resp.status_code < 300):
            message = (resp.text or "").strip() or getattr(resp, "reason", "") or "请求失败"
            logger.error("接口 %s %s 返回 %s: %s", method, path, resp.status_code, message)
            raise ApiError(resp.status_code, message, path)
        return resp

    @staticmethod
    def _json(resp: requests.Response) -> Any:
        if resp.status_code == 204 or not (resp.text or "").strip():
            return None
        try:
            return resp.json()
        except ValueError as e:
            raise ApiError(resp.status_code, f"响应不是合法 JSON: {e}") from e

    def get_json(self, path: str, use_cache: bool = True) -> Any:
        if not use_cache:
            data = self._json(self.request("GET", path))
            self.cache.set(path, data)
            return data
        return self.cache.get_or_fetch(path, lambda: self._json(self.request("GET", path)))

    def send_json(self, method: str, path: str, payload: Any = None) -> Any:
        return self._json(self.request(method, path, json=payload))

    def upload(self, method: str, path: str, files: Dict[str, Any], data: Optional[Dict[str, Any]] = None) -> Any:
        return self._json(self.request(method, path, files=files, data=data))

    def invalidate(self, *prefixes: str) -> None:
        for prefix in prefixes:
            self.cache.invalidate(prefix)

    # ==========================================
    # 重试与多端点回退
    # ==========================================

    def fetch_with_fallback(
        self,
        paths: Iterable[str],
        attempts: int = 3,
        backoff: float = 0.5,
        sleep=time.sleep,
    ) -> Any:
        """
        依次尝试多个端点读取同一资源，每个端点最多重试 attempts 次，间隔按 backoff × 次数递增。
        404 不重试，直接换下一个端点；鉴权失败时继续尝试后续 (免鉴权) 端点。
        全部失败后抛出最后一个错误。
        """
        last_error: Optional[ApiError] = None
        for path in paths:
            for attempt in range(1, attempts + 1):
                try:
                    data = self._json(self.request("GET", path))
                    self.cache.set(path, data)
                    return data
                except ApiError as e:
                    last_error = e
                    logger.warning("读取 %s 失败 (第 %d/%d 次): %s", path, attempt, attempts, e)
                    if isinstance(e, AuthenticationError) or e.status == 404:
                        break
                    if attempt < attempts:
                        sleep(backoff * attempt)
        if last_error is None:
            raise ApiError(None, "没有可用的端点")
        raise last_error
