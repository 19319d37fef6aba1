"""Shared serialization helpers for camelCase conversion.

Provides the ``snake_to_camel`` alias generator and the two model
configurations every record in :mod:`consent_audit.models` uses:
a mutable camelCase config for builders and a frozen one for
records that must not change after construction.
"""

from __future__ import annotations

from typing import Any

import pydantic


def snake_to_camel(name: str) -> str:
    """Convert a snake_case string to camelCase.

    Args:
        name: A snake_case identifier such as
            ``"my_field_name"``.

    Returns:
        The camelCase equivalent, e.g. ``"myFieldName"``.
    """
    parts = name.split("_")
    return parts[0] + "".join(w.capitalize() for w in parts[1:])


CAMEL_CONFIG = pydantic.ConfigDict(alias_generator=snake_to_camel, populate_by_name=True)

FROZEN_CAMEL_CONFIG = pydantic.ConfigDict(
    alias_generator=snake_to_camel,
    populate_by_name=True,
    frozen=True,
)


def to_camel_dict(model: pydantic.BaseModel) -> dict[str, Any]:
    """Dump *model* to a JSON-safe dict with camelCase keys."""
    return model.model_dump(mode="json", by_alias=True)
