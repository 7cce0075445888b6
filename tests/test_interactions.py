"""Tests for component custom_id encoding."""
from __future__ import annotations

import pytest

from order_board.interactions import (
    AcceptOrder,
    CancelWizard,
    PickDay,
    PickRoles,
    RateProject,
    ResolvePreview,
    decode,
    encode,
)
from order_board.models import PreviewAction


def test_encode_includes_prefix_kind_and_fields():
    assert encode(AcceptOrder("abc")) == "ob:accept:abc"
    assert encode(RateProject("abc", "77", 4)) == "ob:rate:abc:77:4"
    assert encode(ResolvePreview(PreviewAction.PUBLISH)) == "ob:preview:publish"
    assert encode(CancelWizard()) == "ob:wizard_cancel"


def test_decode_restores_typed_fields():
    action = decode("ob:rate:abc:77:4")
    assert action == RateProject("abc", "77", 4)
    assert isinstance(action.rating, int)

    assert decode("ob:preview:cancel") == ResolvePreview(PreviewAction.CANCEL)
    assert decode("ob:date_day:1") == PickDay(1)
    assert decode("ob:roles:front_end") == PickRoles("front_end")


@pytest.mark.parametrize(
    "custom_id",
    [
        None,
        "",
        "ob",
        "other:accept:abc",
        "ob:unknown:abc",
        "ob:accept",
        "ob:accept:abc:extra",
        "ob:rate:abc:77:five",
        "ob:preview:maybe",
    ],
)
def test_foreign_or_malformed_ids_decode_to_none(custom_id):
    assert decode(custom_id) is None


def test_overlong_custom_id_is_rejected():
    with pytest.raises(ValueError):
        encode(AcceptOrder("x" * 120))
