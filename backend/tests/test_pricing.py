import pytest

from gensy.services.pricing import credits_for


@pytest.mark.parametrize(
    "kwargs, expected",
    [
        ({"type": "image"}, 2),
        ({"type": "image", "quality": "standard"}, 2),
        ({"type": "image", "quality": "premium"}, 2),
        ({"type": "image", "quality": "ultra"}, 3),
        ({"type": "upscale"}, 2),
        ({"type": "upscale", "enhanced": True}, 3),
        ({"type": "batch", "count": 4}, 8),
        ({"type": "conversion"}, 0),
        ({"type": "video"}, 5),
    ],
)
def test_credit_costs(kwargs, expected) -> None:
    assert credits_for(**kwargs) == expected


def test_batch_needs_images() -> None:
    with pytest.raises(ValueError):
        credits_for("batch", count=0)


def test_unknown_type_is_rejected() -> None:
    with pytest.raises(ValueError):
        credits_for("audio")
