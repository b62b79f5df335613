"""Event label colours (``label_id`` 1-10)."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class LabelColor:
    id: int
    name: str
    hex: str


LABEL_COLORS: tuple[LabelColor, ...] = (
    LabelColor(1, "Emerald green", "#2ecc87"),
    LabelColor(2, "Modern cyan", "#3dc2c8"),
    LabelColor(3, "Deep sky blue", "#47b2f7"),
    LabelColor(4, "Pastel brown", "#948078"),
    LabelColor(5, "Midnight black", "#212121"),
    LabelColor(6, "Apple red", "#e73b3b"),
    LabelColor(7, "French rose", "#f35f8c"),
    LabelColor(8, "Coral pink", "#fb7f77"),
    LabelColor(9, "Bright orange", "#fdc02d"),
    LabelColor(10, "Soft violet", "#b38bdc"),
)

_BY_ID = {color.id: color for color in LABEL_COLORS}


def get_label_color(label_id: int | None) -> LabelColor | None:
    if label_id is None:
        return None
    return _BY_ID.get(label_id)


def get_label_color_name(label_id: int | None) -> str | None:
    color = get_label_color(label_id)
    return color.name if color else None


def get_label_color_hex(label_id: int | None) -> str | None:
    color = get_label_color(label_id)
    return color.hex if color else None
