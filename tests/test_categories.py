import json

import pytest

from validapass.categories import (
    CAT_BLACK, CAT_GOLD, CAT_VIP, CategoryMapper, load_offer_map,
)
from validapass.errors import CategoryMapError


def test_name_rules():
    m = CategoryMapper()
    assert m.map(offer_name_v2="Ingresso VIP") == CAT_VIP
    assert m.map(offer_name="Lote BLACK 2") == CAT_BLACK
    assert m.map(product_name="Wolf Gold - 1o lote") == CAT_GOLD
    # vip is checked before black
    assert m.map(offer_name_v2="VIP Black Experience") == CAT_VIP


def test_unknown_offer_gets_default():
    assert CategoryMapper().map("off-x", None, "Ingresso", None) == CAT_GOLD
    assert CategoryMapper(default="Camarote").map() == "Camarote"


def test_offer_id_overrides_name():
    m = CategoryMapper({"off-1": "Camarote"})
    assert m.map("off-1", None, "Ingresso VIP", None) == "Camarote"
    assert m.map(" off-1 ", None, None, None) == "Camarote"


def test_mapping_is_deterministic():
    m = CategoryMapper({"off-1": CAT_BLACK})
    args = ("off-2", "Lote vip", None, "Wolf Day")
    assert len({m.map(*args) for _ in range(20)}) == 1


def test_load_offer_map_from_file(tmp_path):
    f = tmp_path / "offers.json"
    f.write_text(json.dumps({"a": CAT_VIP, "b": "Camarote"}))
    assert load_offer_map(path=str(f)) == {"a": CAT_VIP, "b": "Camarote"}


@pytest.mark.parametrize("raw", [
    "not json",
    "[1, 2]",
    json.dumps({"a": "Platinum"}),
])
def test_load_offer_map_rejects_bad_tables(raw):
    with pytest.raises(CategoryMapError):
        load_offer_map(inline=raw)


def test_missing_file_is_an_error(tmp_path):
    with pytest.raises(CategoryMapError):
        load_offer_map(path=str(tmp_path / "missing.json"))


def test_unknown_default_is_rejected():
    with pytest.raises(CategoryMapError):
        CategoryMapper(default="Platinum")


def test_reload_swaps_the_table(monkeypatch):
    m = CategoryMapper()
    assert m.map("off-9") == CAT_GOLD

    monkeypatch.setenv("OFFER_CATEGORY_MAP", json.dumps({"off-9": CAT_VIP}))
    assert m.reload() == 1
    assert m.map("off-9") == CAT_VIP

    monkeypatch.setenv("OFFER_CATEGORY_MAP", json.dumps({"off-9": "Nope"}))
    with pytest.raises(CategoryMapError):
        m.reload()
    # a failed reload keeps the previous table
    assert m.map("off-9") == CAT_VIP
