import json
import os
import sys
from urllib.parse import urlparse

import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from jewelry_store.api_client import ApiClient
from jewelry_store.config import Settings

BASE_URL = "http://store.test"


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=None):
        self.status_code = status_code
        self._payload = payload
        if text is not None:
            self.text = text
        else:
            self.text = "" if payload is None else json.dumps(payload)
        self.reason = "Error" if status_code >= 400 else "OK"

    def json(self):
        return json.loads(self.text)


class FakeBackend:
    """
    模拟商城后端：实现 requests.Session.request 的签名，数据保存在内存中。
    failures: {(method, path): [status, ...]} 按顺序返回的错误状态码。
    hooks: {(method, path): callable} 在处理请求前调用，用于模拟并发的后台刷新。
    """

    def __init__(self):
        self.calls = []
        self.failures = {}
        self.hooks = {}
        self.product_types = [
            {"id": 1, "name": "Rings", "description": "Finger rings", "displayOrder": 10, "isActive": True},
        ]
        self.messages = [
            {"id": 1, "name": "Asha", "email": "asha@example.com", "phone": "98765", "message": "Need a custom ring", "isRead": False, "createdAt": "2024-05-01T10:00:00Z"},
            {"id": 2, "name": "Ben", "email": "ben@mail.com", "phone": None, "message": "Shipping question", "isRead": True, "createdAt": "2024-05-03T10:00:00Z"},
            {"id": 3, "name": "Chitra", "email": "chitra@example.com", "phone": None, "message": "Earrings repair", "isRead": False, "createdAt": "2024-05-02T10:00:00Z"},
        ]
        self.metal_types = [
            {"id": 1, "name": "Gold", "priceModifier": 5000, "isActive": True},
            {"id": 2, "name": "Silver", "priceModifier": 80, "isActive": True},
        ]
        self.stone_types = [
            {"id": 1, "name": "Diamond", "priceModifier": 56000, "isActive": True},
            {"id": 2, "name": "Ruby", "priceModifier": 3000, "isActive": True},
        ]
        self.products = {
            7: {
                "id": 7,
                "name": "Solitaire Ring",
                "description": "Classic ring",
                "basePrice": 60000,
                "isFeatured": True,
                "details": json.dumps({"metalType": "Gold", "metalWeight": 10, "tagline": "Forever"}),
            },
        }
        self.exchange_rate = 83.0
        self._next_id = 100

    def request(self, method, url, headers=None, timeout=None, json=None, files=None, data=None):
        path = urlparse(url).path
        self.calls.append({"method": method, "path": path, "json": json, "files": files, "headers": headers})

        hook = self.hooks.get((method, path))
        if hook:
            hook()
        queue = self.failures.get((method, path))
        if queue:
            status = queue.pop(0)
            return FakeResponse(status, text=f"failure {status}")

        return self._route(method, path, json, files)

    def _new_id(self):
        self._next_id += 1
        return self._next_id

    def _route(self, method, path, body, files):
        parts = [p for p in path.split("/") if p]
        if len(parts) < 2 or parts[0] != "api":
            return FakeResponse(404, text="not found")
        resource = parts[1]
        rest = parts[2:]

        if resource == "product-types":
            if not rest and method == "GET":
                return FakeResponse(200, list(self.product_types))
            if not rest and method == "POST":
                item = dict(body, id=self._new_id())
                self.product_types.append(item)
                return FakeResponse(201, item)
            type_id = int(rest[0])
            if method == "PUT":
                for item in self.product_types:
                    if item["id"] == type_id:
                        item.update(body)
                        return FakeResponse(200, item)
                return FakeResponse(404, text="not found")
            if method == "DELETE":
                self.product_types = [t for t in self.product_types if t["id"] != type_id]
                return FakeResponse(204)

        if resource == "admin" and rest and rest[0] == "contact":
            if len(rest) == 1 and method == "GET":
                return FakeResponse(200, [dict(m) for m in self.messages])
            msg_id = int(rest[1])
            if method == "PUT":
                for m in self.messages:
                    if m["id"] == msg_id:
                        m.update(body)
                        return FakeResponse(200, m)
                return FakeResponse(404, text="not found")
            if method == "DELETE":
                self.messages = [m for m in self.messages if m["id"] != msg_id]
                return FakeResponse(204)

        if resource == "admin" and rest and rest[0] == "products":
            return self._product(method, int(rest[1]), body)

        if resource == "admin" and rest and rest[0] in ("metal-types", "stone-types"):
            return self._catalog(method, rest[0], rest[1:], body)

        if resource == "metal-types":
            return FakeResponse(200, [m for m in self.metal_types if m.get("isActive", True)])
        if resource == "stone-types":
            return FakeResponse(200, [s for s in self.stone_types if s.get("isActive", True)])
        if resource == "exchange-rate":
            return FakeResponse(200, {"rate": self.exchange_rate})

        if resource == "direct-product":
            return self._product("GET", int(rest[0]), None)

        if resource == "products":
            if not rest:
                return FakeResponse(200, list(self.products.values()))
            if rest == ["featured"]:
                return FakeResponse(200, [p for p in self.products.values() if p.get("isFeatured")])
            product_id = int(rest[0])
            if len(rest) == 2 and rest[1] == "image":
                if product_id not in self.products:
                    return FakeResponse(404, text="not found")
                filename = files["mainImage"][0]
                self.products[product_id]["imageUrl"] = f"/uploads/{filename}"
                return FakeResponse(200, self.products[product_id])
            return self._product(method, product_id, body)

        return FakeResponse(404, text="not found")

    def _catalog(self, method, kind, rest, body):
        entries = self.metal_types if kind == "metal-types" else self.stone_types
        if not rest:
            if method == "GET":
                return FakeResponse(200, list(entries))
            if method == "POST":
                item = dict(body, id=self._new_id())
                entries.append(item)
                return FakeResponse(201, item)
        entry_id = int(rest[0])
        for item in entries:
            if item["id"] == entry_id:
                if method == "PUT":
                    item.update(body)
                    return FakeResponse(200, item)
                if method == "DELETE":
                    entries.remove(item)
                    return FakeResponse(204)
        return FakeResponse(404, text="not found")

    def _product(self, method, product_id, body):
        if product_id not in self.products:
            return FakeResponse(404, text="product not found")
        if method == "GET":
            return FakeResponse(200, dict(self.products[product_id]))
        if method == "PATCH":
            self.products[product_id].update(body)
            return FakeResponse(200, dict(self.products[product_id]))
        if method == "DELETE":
            del self.products[product_id]
            return FakeResponse(204)
        return FakeResponse(405, text="method not allowed")

    def count(self, method, path):
        return sum(1 for c in self.calls if c["method"] == method and c["path"] == path)


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def client(backend):
    return ApiClient(BASE_URL, session=backend)


@pytest.fixture
def settings():
    return Settings(api_base_url=BASE_URL, fetch_retries=2, fetch_backoff=0.0)
