# src/formgraph/core/dag/presets.py
"""Ready-made NodeConfig builders for common form fields.

Each builder returns a plain NodeConfig, so the result can be tweaked with
``dataclasses.replace`` (for example to add ``when`` inside a factory):

    .node("aspect_ratio", lambda ctx, ext: replace(enum_node(RATIOS, default="1:1"), when=not ctx["images"]), ["images"])
"""

from __future__ import annotations

from collections.abc import Hashable, Mapping, Sequence
from typing import Annotated, Any, Literal

from pydantic import Field

from formgraph.core.dag.models import NodeConfig

MAX_SEED = 2**32 - 1

type Option = Hashable | Mapping[str, Any]


def _normalize_options(options: Sequence[Option]) -> tuple[dict[str, Any], ...]:
    """Accept bare values or ``{"label", "value", ...}`` mappings."""
    normalized = []
    for option in options:
        if isinstance(option, Mapping):
            if "value" not in option:
                raise ValueError(f"Option {option!r} has no 'value'")
            normalized.append({"label": str(option["value"]), **option})
        else:
            normalized.append({"label": str(option), "value": option})
    return tuple(normalized)


def enum_node(options: Sequence[Option], *, default: Any = None, meta: Mapping[str, Any] | None = None) -> NodeConfig:
    """A single choice among ``options``; the option list is published in meta.

    Without an explicit default the first option is used.
    """
    normalized = _normalize_options(options)
    if not normalized:
        raise ValueError("enum_node needs at least one option")
    values = tuple(option["value"] for option in normalized)
    if default is None:
        default = values[0]
    elif default not in values:
        raise ValueError(f"Default {default!r} is not one of the options {list(values)!r}")
    return NodeConfig(
        output=Literal[values],  # type: ignore[valid-type]
        default=default,
        meta={"options": normalized, **(meta or {})},
    )


def slider_node(
    min: float,
    max: float,
    *,
    default: float,
    step: float | None = None,
    presets: Sequence[Mapping[str, Any]] = (),
) -> NodeConfig:
    """A number within ``[min, max]``; the range and presets are published in meta.

    Whole-number bounds, step and default produce an int slider.
    """
    if min > max:
        raise ValueError(f"Slider minimum {min} is above its maximum {max}")
    integral = all(isinstance(number, int) for number in (min, max, default)) and (step is None or isinstance(step, int))
    number_type = int if integral else float
    meta: dict[str, Any] = {"min": min, "max": max}
    if step is not None:
        meta["step"] = step
    if presets:
        meta["presets"] = tuple(dict(preset) for preset in presets)
    return NodeConfig(
        output=Annotated[number_type, Field(ge=min, le=max)],
        default=default,
        meta=meta,
    )


def toggle_node(*, default: bool = False) -> NodeConfig:
    return NodeConfig(output=bool, default=default)


def text_node(*, default: str = "", max_length: int | None = None, strip: bool = True) -> NodeConfig:
    """Free text; surrounding whitespace is stripped from writes unless ``strip=False``."""
    output: Any = str if max_length is None else Annotated[str, Field(max_length=max_length)]
    meta = {} if max_length is None else {"max_length": max_length}
    return NodeConfig(
        output=output,
        default=default,
        meta=meta,
        transform=(lambda value, ctx: value.strip() if isinstance(value, str) else value) if strip else None,
    )


def seed_node() -> NodeConfig:
    """Optional generation seed; None means "pick one at random"."""
    return NodeConfig(output=Annotated[int, Field(ge=0, le=MAX_SEED)] | None, default=None, meta={"max": MAX_SEED})
