from __future__ import annotations

import json

from shop_client.render_model import EMPTY_RENDER_MODEL, is_wanted, project
from shop_plugin.catalog_source import CatalogEntry, TraitRef
from shop_plugin.events import RawFeatureUpdate
from shop_plugin.shop_snapshot import ShopSnapshotBuilder

COSTS = {"TFT16_Jhin": 2, "TFT16_Viego": 4, "TFT16_Mystery": "?"}

CATALOG = {
    "TFT16_Jhin": CatalogEntry(
        id="TFT16_Jhin",
        display_name="Jhin",
        cost=2,
        image_ref="https://cdn.test/jhin.png",
        traits=(TraitRef("Bastion"), TraitRef("Deadeye")),
    ),
}


def _snapshot(**slots):
    builder = ShopSnapshotBuilder(lambda champion_id: COSTS.get(champion_id, "?"), clock=lambda: 1.0)
    payload = json.dumps({key: {"name": name} for key, name in slots.items()})
    builder.accept(RawFeatureUpdate("store", "shop_pieces", payload))
    return builder.snapshot


def test_no_snapshot_projects_empty_model():
    model = project(None, ["TFT16_Jhin"], CATALOG)
    assert model == EMPTY_RENDER_MODEL
    assert model.shop_empty
    assert len(model.slots) == 5


def test_projection_fills_slots_in_order():
    snapshot = _snapshot(shop_1="TFT16_Jhin", shop_2="Sold", shop_5="TFT16_Mystery")
    model = project(snapshot, ["TFT16_Jhin"], CATALOG, {"Bastion": "https://cdn.test/bastion.png"})

    jhin = model.slots[0]
    assert jhin.occupied and jhin.is_wanted
    assert jhin.display_name == "Jhin"
    assert jhin.color == "#11b288"
    assert [trait.name for trait in jhin.traits] == ["Bastion", "Deadeye"]
    assert jhin.traits[0].icon_url == "https://cdn.test/bastion.png"
    assert jhin.traits[1].icon_url is None
    assert jhin.traits[1].placeholder == "D"

    assert not model.slots[1].occupied
    assert not model.slots[2].occupied
    mystery = model.slots[4]
    assert mystery.cost_tier == "?"
    assert mystery.color == "white"
    assert mystery.display_name == "Mystery"
    assert mystery.traits == ()
    assert model.wanted_indexes() == (1,)


def test_projection_is_pure():
    snapshot = _snapshot(shop_1="TFT16_Jhin", shop_3="TFT16_Viego")
    first = project(snapshot, ("TFT16_Viego",), CATALOG, {})
    second = project(snapshot, ["TFT16_Viego"], dict(CATALOG), None)
    assert first == second


def test_wanted_matching_tolerates_prefix_drift():
    assert is_wanted("TFT16_Jhin", ["TFT16_Jhin"])
    assert is_wanted("TFT16_Jhin", ["TFT15_Jhin"])
    assert is_wanted("TFT16_JhinEnhanced", ["Jhin"])
    assert not is_wanted("TFT16_Viego", ["TFT16_Vi"])
    assert is_wanted("TFT16_Vi", ["TFT15_Vi"])
    assert not is_wanted("TFT16_Jhin", [])


def test_payload_is_plain_data():
    snapshot = _snapshot(shop_1="TFT16_Jhin")
    payload = project(snapshot, [], CATALOG).to_payload()

    assert payload["shop_empty"] is False
    assert payload["slots"][0]["champion"] == "TFT16_Jhin"
    assert payload["slots"][0]["tier"] == 2
    assert payload["slots"][0]["traits"][0] == {"name": "Bastion", "icon": None, "placeholder": "B"}
    assert json.loads(json.dumps(payload)) == payload
