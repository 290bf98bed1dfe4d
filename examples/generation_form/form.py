# examples/generation_form/form.py
"""A checkpoint-based image form with persisted, per-model settings.

Run it directly to watch remounts, unmount events and storage keys:

    python examples/generation_form/form.py

Or inspect the graph through the CLI:

    PYTHONPATH=. formgraph describe examples.generation_form.form:graph
    PYTHONPATH=. formgraph evaluate examples.generation_form.form:graph --seed-file examples/generation_form/seed.yaml --settings examples/generation_form/settings.yaml
"""

from __future__ import annotations

from dataclasses import replace
from pathlib import Path
from typing import Any

from formgraph.contracts import NodeContext, Setter, UnmountEvent
from formgraph.core.dag import DataGraph, NodeConfig, enum_node, seed_node, slider_node, text_node, toggle_node
from formgraph.core.logging import configure_logging, get_logger
from formgraph.core.resources import ResourceRegistry, ResourceTracker
from formgraph.core.storage import FilesystemRepository, ScopedStorageAdapter, StorageGroup

logger = get_logger(__name__)

MODELS = {
    "SD1": ["dreamshaper", "realistic-vision"],
    "SDXL": ["juggernaut-xl", "pony"],
    "Flux": ["flux-dev", "flux-schnell"],
}


def checkpoint_config(ctx: NodeContext, ext: Any) -> NodeConfig:
    return enum_node(MODELS[ctx["ecosystem"]])


def vae_config(ctx: NodeContext, ext: Any) -> NodeConfig:
    # The selected checkpoint has to be fetched before generation
    return replace(enum_node(["auto", "baked"]), requires=frozenset({f"model:{ctx['checkpoint']}"}))


def resolution_config(ctx: NodeContext, ext: Any) -> NodeConfig:
    sizes = [512, 768] if ctx["ecosystem"] == "SD1" else [1024, 1216]
    return enum_node([{"label": f"{size}px", "value": size} for size in sizes])


def cfg_config(ctx: NodeContext, ext: Any) -> NodeConfig:
    limit = 10 if (ext or {}).get("tier") == "pro" else 7
    return slider_node(1, limit, default=5, step=0.5)


def clamp_distilled_steps(ctx: NodeContext, ext: Any, set_value: Setter) -> None:
    if ctx["checkpoint"] == "flux-schnell" and ctx["steps"] > 4:
        set_value("steps", 4)


def diffusion_controls() -> DataGraph:
    return (
        DataGraph()
        .node("cfg_scale", cfg_config)
        .node("negative_prompt", text_node())
    )


def flux_controls() -> DataGraph:
    return DataGraph().node("guidance", slider_node(1.0, 5.0, default=3.5))


graph = (
    DataGraph()
    .node("ecosystem", enum_node(list(MODELS), default="SDXL"))
    .node("checkpoint", checkpoint_config, ["ecosystem"])
    .node("vae", vae_config, ["checkpoint"])
    .node("resolution", resolution_config, ["ecosystem"])
    .node("steps", slider_node(1, 60, default=25))
    .grouped_discriminator("ecosystem", [(["SD1", "SDXL"], diffusion_controls()), (["Flux"], flux_controls())])
    .node("prompt", text_node(max_length=1000))
    .node("hires_fix", toggle_node())
    .node("seed", seed_node())
    .effect(clamp_distilled_steps, ["checkpoint"], name="clamp_distilled_steps")
)


def log_unmount(event: UnmountEvent) -> None:
    logger.info("field_unmounted", key=event.key, reason=event.reason.value)


def main(storage_dir: Path) -> None:
    configure_logging(level="INFO")
    registry = ResourceRegistry()
    registry.on_release(lambda resource_id: logger.info("model_unloaded", resource=resource_id))

    storage = ScopedStorageAdapter(
        "generation",
        [
            StorageGroup(keys=("ecosystem", "prompt", "seed")),
            StorageGroup(name="model", scope="ecosystem"),
        ],
        FilesystemRepository(storage_dir),
    )

    instance = graph.build().create_instance({"tier": "pro"})
    instance.on_unmount(log_unmount)
    instance.init(storage.load())
    storage.attach(instance)
    ResourceTracker(registry).attach(instance)

    instance.set({"prompt": "a lighthouse at dusk", "cfg_scale": 8.5})
    instance.set({"ecosystem": "Flux"})
    instance.set({"checkpoint": "flux-schnell"})
    logger.info("settled", values=instance.get_snapshot().to_dict(), mounted=instance.mounted_variants())
    logger.info("stored", keys=sorted(FilesystemRepository(storage_dir).keys()), resources=sorted(registry.active_ids))


if __name__ == "__main__":
    main(Path(__file__).parent / ".storage")
