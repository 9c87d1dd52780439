from __future__ import annotations

import pytest

from shop_client.asset_candidates import (
    build_candidates,
    hint_variants,
    naming_variants,
    placeholder_for,
    split_words,
    trait_key,
)

BASE = "https://cdn.test/game"
ROOT = f"{BASE}/assets/ux/traiticons"


@pytest.mark.parametrize(
    "name, expected",
    [("Bastion", "B"), ("TFT16_Bastion", "B"), ("  deadeye", "D"), ("9Lives", "9"), ("", "?"), ("---", "?")],
)
def test_placeholder_for(name, expected):
    assert placeholder_for(name) == expected


def test_trait_key_ignores_case_and_punctuation():
    assert trait_key("Void-Spawn ") == trait_key("voidspawn") == "voidspawn"


def test_split_words_handles_camel_case_and_separators():
    assert split_words("StarGuardian") == ["Star", "Guardian"]
    assert split_words("Star Guardian") == ["Star", "Guardian"]
    assert split_words("TFT16_Void_Spawn") == ["Void", "Spawn"]
    assert split_words("HTTPServer") == ["HTTP", "Server"]


def test_naming_variants_are_unique():
    assert naming_variants("Star Guardian") == ["star_guardian", "starguardian", "StarGuardian"]
    assert naming_variants("Bastion") == ["bastion", "Bastion"]
    assert naming_variants("") == []


def test_relative_hint_is_converted_to_cdn_url():
    hints = hint_variants("ASSETS/UX/TraitIcons/Trait_Icon_16_Bastion.TFT_Set16.tex", BASE)
    assert hints == [f"{ROOT}/trait_icon_16_bastion.tft_set16.png"]


def test_absolute_hint_is_tried_verbatim_first():
    hints = hint_variants("https://cdn.test/Icons/Bastion.TEX", BASE)
    assert hints == [
        "https://cdn.test/Icons/Bastion.TEX",
        "https://cdn.test/Icons/Bastion.png",
        "https://cdn.test/icons/bastion.png",
    ]


def test_candidates_are_ordered_newest_version_first():
    candidates = build_candidates("Star Guardian", base_url=BASE, set_versions=(15, 16))

    assert candidates[:2] == [
        f"{ROOT}/trait_icon_16_star_guardian.tft_set16.png",
        f"{ROOT}/trait_icon_16_star_guardian.png",
    ]
    first_15 = candidates.index(f"{ROOT}/trait_icon_15_star_guardian.tft_set15.png")
    last_16 = candidates.index(f"{ROOT}/trait_icon_16_StarGuardian.png")
    assert last_16 < first_15
    assert candidates[-1] == f"{ROOT}/StarGuardian.png"
    assert len(candidates) == len(set(candidates)) == 18


def test_hint_is_probed_before_generated_candidates():
    hint = "ASSETS/UX/TraitIcons/Trait_Icon_Custom.tex"
    candidates = build_candidates("Bastion", hint, base_url=BASE, set_versions=(16,))
    assert candidates[0] == f"{ROOT}/trait_icon_custom.png"
    assert candidates[1] == f"{ROOT}/trait_icon_16_bastion.tft_set16.png"


def test_unusable_name_without_hint_has_no_candidates():
    assert build_candidates("", base_url=BASE, set_versions=(16,)) == []
