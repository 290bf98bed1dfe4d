# tests/unit/core/dag/test_presets.py
"""Tests for the NodeConfig presets."""

import pytest

from formgraph.contracts import ValidationError
from formgraph.core.dag import enum_node, seed_node, slider_node, text_node, toggle_node
from formgraph.core.dag.presets import MAX_SEED


class TestEnumNode:
    def test_plain_values(self) -> None:
        config = enum_node(["euler", "dpm"])

        assert config.default == "euler"
        assert config.meta["options"] == ({"label": "euler", "value": "euler"}, {"label": "dpm", "value": "dpm"})
        assert config.accepts("dpm")
        assert not config.accepts("ddim")

    def test_labelled_options(self) -> None:
        config = enum_node([{"label": "5 seconds", "value": "5"}, {"label": "10 seconds", "value": "10"}], default="10")

        assert config.default == "10"
        assert config.meta["options"][0]["label"] == "5 seconds"

    def test_default_must_be_an_option(self) -> None:
        with pytest.raises(ValueError):
            enum_node(["a"], default="b")

    def test_needs_options(self) -> None:
        with pytest.raises(ValueError):
            enum_node([])

    def test_extra_meta_is_merged(self) -> None:
        config = enum_node(["a"], meta={"grid": True})

        assert config.meta["grid"] is True


class TestSliderNode:
    def test_integer_slider(self) -> None:
        config = slider_node(1, 50, default=20)

        assert config.validate_output("steps", 50) == 50
        with pytest.raises(ValidationError):
            config.validate_output("steps", 51)
        with pytest.raises(ValidationError):
            config.validate_output("steps", 2.5)

    def test_float_slider_with_presets(self) -> None:
        config = slider_node(0.1, 1, default=0.5, step=0.1, presets=[{"label": "Low", "value": 0.3}])

        assert config.validate_output("cfg", 0.75) == 0.75
        assert config.meta == {"min": 0.1, "max": 1, "step": 0.1, "presets": ({"label": "Low", "value": 0.3},)}

    def test_inverted_range_rejected(self) -> None:
        with pytest.raises(ValueError):
            slider_node(10, 1, default=5)


class TestSimplePresets:
    def test_toggle(self) -> None:
        config = toggle_node(default=True)

        assert config.default is True
        assert config.accepts(False)

    def test_text_strips_writes(self) -> None:
        config = text_node()

        assert config.coerce_write("prompt", "  a cat  ", {}, None) == "a cat"

    def test_text_max_length(self) -> None:
        config = text_node(max_length=3)

        with pytest.raises(ValidationError):
            config.coerce_write("prompt", "abcd", {}, None)

    def test_seed(self) -> None:
        config = seed_node()

        assert config.default is None
        assert config.accepts(None)
        assert config.accepts(MAX_SEED)
        assert not config.accepts(-1)
