"""商品编辑会话 (状态机 + 乐观更新 + 对账) 测试。"""
import json

import pytest

from jewelry_store.api_client import AuthenticationError
from jewelry_store.details import extract_product_spec
from jewelry_store.models import Product
from jewelry_store.pricing.calculator import calculate_price
from jewelry_store.pricing.rates import RateTable
from jewelry_store.service import ProductService
from jewelry_store.session import EditSession, InvalidTransition, SessionState

RATES = RateTable({"Gold": 5000, "Silver": 80}, {"Diamond": 56000})


def pricer(spec):
    return calculate_price(spec, RATES)


@pytest.fixture
def products(client, settings):
    return ProductService(client, settings)


@pytest.fixture
def session(products):
    s = EditSession(products.get(7), products, pricer=pricer)
    s.recalculate()
    return s


def test_initial_state_and_price(session):
    assert session.state is SessionState.IDLE
    assert session.breakdown.total == 62500


def test_invalid_transitions_are_rejected(session):
    with pytest.raises(InvalidTransition):
        session.cancel()
    session.open_section("basic")
    with pytest.raises(InvalidTransition):
        session.open_section("materials")
    with pytest.raises(ValueError):
        EditSession(session.product, session.products).open_section("pricing")


def test_save_outside_editing_is_rejected(session, backend):
    with pytest.raises(InvalidTransition):
        session.save()
    assert session.state is SessionState.IDLE
    assert backend.count("PATCH", "/api/products/7") == 0


def test_cancel_returns_to_idle(session):
    session.open_section("basic")
    session.update_draft(name="Changed")
    session.cancel()
    assert session.state is SessionState.IDLE
    assert session.product.name == "Solitaire Ring"


def test_materials_save_recalculates_price(session, backend):
    session.open_section("materials")
    assert session.draft["metal_type"] == "Gold"
    session.update_draft(metal_weight=12, primary_stone="Diamond", primary_stone_weight=0.5)

    assert session.save() is True
    assert session.state is SessionState.IDLE
    assert not session.refresh_suppressed

    # 12g × 5000 + 0.5ct × 56000 = 88000；管理费 22000
    assert session.breakdown.total == 110000
    stored = json.loads(backend.products[7]["details"])
    assert stored["metalWeight"] == 12
    assert stored["tagline"] == "Forever"
    assert backend.products[7]["calculatedPriceINR"] == 110000
    # 保存后重新读取确认
    assert backend.count("GET", "/api/products/7") == 2


def test_removed_stone_stays_removed_despite_ai_inputs(products, backend):
    backend.products[7]["aiInputs"] = {"mainStoneType": "Diamond", "mainStoneWeight": 0.5}
    session = EditSession(products.get(7), products, pricer=pricer)

    session.open_section("materials")
    assert session.draft["primary_stone"] == "Diamond"
    session.update_draft(primary_stone="None", primary_stone_weight=0)
    assert session.save() is True

    session.open_section("materials")
    assert session.draft["primary_stone"] == "None"
    assert session.draft["primary_stone_weight"] == 0.0
    assert session.breakdown.total == 62500


def test_background_refresh_during_save_is_ignored(session, backend):
    stale = Product.from_api(dict(backend.products[7]))
    seen = {}

    def concurrent_refresh():
        seen["applied"] = session.on_server_data(stale)
        seen["state"] = session.state
        seen["weight"] = extract_product_spec(session.product).metal_weight

    backend.hooks[("PATCH", "/api/products/7")] = concurrent_refresh

    session.open_section("materials")
    session.update_draft(metal_weight=15)
    assert session.save() is True

    assert seen == {"applied": False, "state": SessionState.SAVING, "weight": 15}
    assert extract_product_spec(session.product).metal_weight == 15


def test_refresh_applies_when_idle(session):
    fresh = Product(id=7, name="Renamed")
    assert session.on_server_data(fresh) is True
    assert session.product.name == "Renamed"
    assert session.on_server_data(Product(id=99, name="Other")) is False


def test_save_failure_rolls_back_and_keeps_draft(session, backend):
    backend.failures[("PATCH", "/api/products/7")] = [500]
    session.open_section("basic")
    session.update_draft(name="New Name", base_price=70000)

    assert session.save() is False
    assert session.state is SessionState.EDITING
    assert session.draft["name"] == "New Name"
    assert session.product.name == "Solitaire Ring"
    assert "failure 500" in session.last_error
    assert not session.refresh_suppressed

    # 重试成功
    assert session.save() is True
    assert session.product.name == "New Name"
    assert backend.products[7]["basePrice"] == 70000


def test_auth_failure_is_raised_after_returning_to_editing(session, backend):
    backend.failures[("PATCH", "/api/products/7")] = [401]
    session.open_section("basic")
    session.update_draft(name="X2")
    with pytest.raises(AuthenticationError):
        session.save()
    assert session.state is SessionState.EDITING
    assert not session.refresh_suppressed


def test_invalid_draft_stays_in_editing(session, backend):
    session.open_section("materials")
    session.update_draft(metal_weight=-3)
    assert session.save() is False
    assert session.state is SessionState.EDITING
    assert session.last_error
    assert backend.count("PATCH", "/api/products/7") == 0


def test_image_upload_section(session, backend):
    session.open_section("image")
    assert session.save() is False  # 未选择图片

    session.update_draft(filename="ring.png", content=b"\x89PNG", content_type="image/png")
    assert session.save() is True
    assert session.product.image_url == "/uploads/ring.png"
    upload = [c for c in backend.calls if c["path"] == "/api/products/7/image"][0]
    assert "mainImage" in upload["files"]
    assert upload["json"] is None
