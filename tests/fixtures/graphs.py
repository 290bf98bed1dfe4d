# tests/fixtures/graphs.py
"""Graphs shared by engine, storage and CLI tests.

The generation graph models a small image/video form:

    ecosystem ─► workflow ─► output (computed) ─► discriminator
                    │                               ├─ image: steps, sampler (+ effect)
                    └─► images (hidden for txt*)     └─ video: duration, fps
    prompt, seed (merged in)
"""

from __future__ import annotations

from typing import Any

from formgraph.contracts.types import NodeContext, Setter
from formgraph.core.dag import DataGraph, NodeConfig, enum_node, seed_node, slider_node, text_node

WORKFLOWS: dict[str, tuple[str, ...]] = {
    "A": ("txt2img", "img2img"),
    "B": ("txt2vid", "img2vid"),
}


def workflow_config(ctx: NodeContext, ext: Any) -> NodeConfig:
    return enum_node(WORKFLOWS[ctx["ecosystem"]])


def images_config(ctx: NodeContext, ext: Any) -> NodeConfig:
    return NodeConfig(output=list[str], default=[], when=ctx["workflow"].startswith("img"))


def output_type(ctx: NodeContext, ext: Any) -> str:
    return "video" if ctx["workflow"].endswith("vid") else "image"


def raise_steps_for_dpm(ctx: NodeContext, ext: Any, set_value: Setter) -> None:
    if ctx["sampler"] == "dpm" and ctx["steps"] < 30:
        set_value("steps", 30)


def build_seed_graph() -> DataGraph:
    return DataGraph().node("seed", seed_node())


def build_image_controls() -> DataGraph:
    return (
        DataGraph()
        .node("steps", slider_node(1, 50, default=20))
        .node("sampler", enum_node(["euler", "dpm"]))
        .effect(raise_steps_for_dpm, ["sampler"], name="raise_steps_for_dpm")
    )


def build_video_controls() -> DataGraph:
    return (
        DataGraph()
        .node("duration", enum_node([{"label": "5 seconds", "value": "5"}, {"label": "10 seconds", "value": "10"}]))
        .node("fps", slider_node(8, 30, default=24))
    )


def build_generation_graph() -> DataGraph:
    return (
        DataGraph()
        .node("ecosystem", enum_node(["A", "B"]))
        .node("workflow", workflow_config, ["ecosystem"])
        .node("images", images_config, ["workflow"])
        .computed("output", output_type, ["workflow"])
        .discriminator("output", {"image": build_image_controls(), "video": build_video_controls()})
        .node("prompt", text_node())
        .merge(build_seed_graph())
    )


generation_graph = build_generation_graph()
