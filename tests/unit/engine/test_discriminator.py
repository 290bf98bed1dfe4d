# tests/unit/engine/test_discriminator.py
"""Tests for variant mounting, unmounting and branch value policies."""

import pytest

from formgraph.contracts import CycleError, RemovalReason, Snapshot, UnmountEvent, ValidationError
from formgraph.core.config import EngineSettings
from formgraph.core.dag import DataGraph, NodeConfig, enum_node, slider_node, toggle_node
from formgraph.engine.instance import GraphInstance

IMAGE_KEYS = {"steps", "sampler"}
VIDEO_KEYS = {"duration", "fps"}


def _nested_graph() -> DataGraph:
    fast = DataGraph().node("fast_steps", slider_node(1, 8, default=4))
    full = DataGraph().node("full_steps", slider_node(10, 50, default=30))
    sd = DataGraph().node("variant", enum_node(["fast", "full"])).discriminator("variant", {"fast": fast, "full": full})
    flux = DataGraph().node("guidance", slider_node(1, 10, default=3))
    return DataGraph().node("family", enum_node(["sd", "flux"])).discriminator("family", {"sd": sd, "flux": flux})


def _grouped_graph() -> DataGraph:
    sd_controls = DataGraph().node("clip_skip", slider_node(1, 3, default=2))
    xl_controls = DataGraph().node("refiner", toggle_node())
    return (
        DataGraph()
        .node("base", enum_node(["sd1", "sd15", "sdxl"]))
        .grouped_discriminator("base", [(["sd1", "sd15"], sd_controls), (["sdxl"], xl_controls)])
    )


class TestBranchSwitch:
    def test_switch_is_atomic(self, instance: GraphInstance) -> None:
        seen: list[Snapshot] = []
        events: list[UnmountEvent] = []
        instance.subscribe("*", seen.append)
        instance.on_unmount(events.append)

        instance.set({"ecosystem": "B"})
        instance.set({"ecosystem": "A"})

        assert len(seen) == 2
        for snapshot in seen:
            keys = set(snapshot)
            assert not (keys & IMAGE_KEYS and keys & VIDEO_KEYS)
        assert VIDEO_KEYS <= set(seen[0]) and not IMAGE_KEYS & set(seen[0])
        assert IMAGE_KEYS <= set(seen[1]) and not VIDEO_KEYS & set(seen[1])
        assert [(event.key, event.reason) for event in events] == [
            ("steps", RemovalReason.UNMOUNTED),
            ("sampler", RemovalReason.UNMOUNTED),
            ("duration", RemovalReason.UNMOUNTED),
            ("fps", RemovalReason.UNMOUNTED),
        ]

    def test_unmount_events_carry_last_value(self, instance: GraphInstance) -> None:
        events: list[UnmountEvent] = []
        instance.on_unmount(events.append)
        instance.set({"steps": 33})

        instance.set({"ecosystem": "B"})

        assert UnmountEvent("steps", 33, RemovalReason.UNMOUNTED) in events

    def test_hidden_node_reports_hidden_reason(self, instance: GraphInstance) -> None:
        instance.set({"workflow": "img2img", "images": ["a.png"]})
        events: list[UnmountEvent] = []
        instance.on_unmount(events.append)

        instance.set({"workflow": "txt2img"})

        assert events == [UnmountEvent("images", ["a.png"], RemovalReason.HIDDEN)]

    def test_unmount_listeners_run_before_subscribers(self, instance: GraphInstance) -> None:
        order: list[str] = []
        instance.subscribe("*", lambda snapshot: order.append("subscriber"))
        instance.on_unmount(lambda event: order.append(f"unmount:{event.key}"))

        instance.set({"ecosystem": "B"})

        assert order == ["unmount:steps", "unmount:sampler", "subscriber"]

    def test_unsubscribed_unmount_listener(self, instance: GraphInstance) -> None:
        events: list[UnmountEvent] = []
        unsubscribe = instance.on_unmount(events.append)
        unsubscribe()
        unsubscribe()

        instance.set({"ecosystem": "B"})

        assert events == []

    def test_remount_logged(self, instance: GraphInstance, captured_logs) -> None:
        instance.set({"ecosystem": "B"})

        (entry,) = [entry for entry in captured_logs if entry["event"] == "branch_remounted"]
        assert entry["branch"] == "/output"
        assert entry["previous"] == "image"
        assert entry["mounted"] == "video"
        assert entry["log_level"] == "info"

    def test_mounted_variants(self, instance: GraphInstance) -> None:
        instance.set({"ecosystem": "B"})

        assert instance.mounted_variants() == {"/output": "video"}


class TestPlainDiscriminator:
    def test_shared_graph_still_remounts_per_value(self) -> None:
        shared = DataGraph().node("strength", slider_node(0, 10, default=5))
        graph = DataGraph().node("mode", enum_node(["a", "b"])).discriminator("mode", {"a": shared, "b": shared}).build()
        instance = graph.create_instance()
        instance.init()
        instance.set({"strength": 9})
        events: list[UnmountEvent] = []
        instance.on_unmount(events.append)

        snapshot = instance.set({"mode": "b"})

        assert snapshot["strength"] == 5
        assert events == [UnmountEvent("strength", 9, RemovalReason.UNMOUNTED)]

    def test_key_redeclared_by_new_variant_reports_unmount(self) -> None:
        graph = (
            DataGraph()
            .node("kind", enum_node(["a", "b"]))
            .discriminator("kind", {"a": DataGraph().node("shared", NodeConfig(default=1)), "b": DataGraph().node("shared", NodeConfig(default=2))})
            .build()
        )
        instance = graph.create_instance()
        instance.init()
        events: list[UnmountEvent] = []
        instance.on_unmount(events.append)

        snapshot = instance.set({"kind": "b"})

        assert snapshot["shared"] == 2
        assert events == [UnmountEvent("shared", 1, RemovalReason.UNMOUNTED)]

    def test_unmapped_value_raises(self) -> None:
        graph = (
            DataGraph()
            .node("mode", NodeConfig(output=str, default="x"))
            .discriminator("mode", {"x": DataGraph().node("xv", NodeConfig(default=1))})
            .build()
        )
        instance = graph.create_instance()
        instance.init()
        before = instance.get_snapshot()

        with pytest.raises(ValidationError, match="no variant") as exc_info:
            instance.set({"mode": "zzz"})

        assert exc_info.value.key == "mode"
        assert instance.get_snapshot() is before

    def test_absent_discriminant_mounts_nothing(self) -> None:
        graph = (
            DataGraph()
            .node("enabled", toggle_node())
            .node("mode", lambda ctx, ext: NodeConfig(output=str, default="x", when=ctx["enabled"]), ["enabled"])
            .discriminator("mode", {"x": DataGraph().node("xv", NodeConfig(default=1))})
            .build()
        )
        instance = graph.create_instance()

        assert instance.init().to_dict() == {"enabled": False}
        assert instance.set({"enabled": True}).to_dict() == {"enabled": True, "mode": "x", "xv": 1}
        assert instance.set({"enabled": False}).to_dict() == {"enabled": False}
        assert instance.mounted_variants() == {}


class TestGroupedDiscriminator:
    def test_switch_within_group_keeps_variant(self) -> None:
        instance = _grouped_graph().build().create_instance()
        instance.init()
        instance.set({"clip_skip": 3})
        events: list[UnmountEvent] = []
        instance.on_unmount(events.append)

        snapshot = instance.set({"base": "sd15"})

        assert snapshot["clip_skip"] == 3
        assert events == []
        assert instance.mounted_variants() == {"/base": "sd1|sd15"}

    def test_switch_across_groups_remounts(self) -> None:
        instance = _grouped_graph().build().create_instance()
        instance.init()

        snapshot = instance.set({"base": "sdxl"})

        assert snapshot.to_dict() == {"base": "sdxl", "refiner": False}


class TestNestedDiscriminators:
    def test_outer_switch_unmounts_inner_subtree(self) -> None:
        instance = _nested_graph().build().create_instance()
        instance.init()
        events: list[UnmountEvent] = []
        instance.on_unmount(events.append)

        snapshot = instance.set({"family": "flux"})

        assert snapshot.to_dict() == {"family": "flux", "guidance": 3}
        assert {event.key for event in events} == {"variant", "fast_steps"}
        assert instance.mounted_variants() == {"/family": "flux"}

    def test_inner_switch(self) -> None:
        instance = _nested_graph().build().create_instance()
        instance.init()

        snapshot = instance.set({"variant": "full"})

        assert snapshot.to_dict() == {"family": "sd", "variant": "full", "full_steps": 30}
        assert instance.mounted_variants() == {"/family": "sd", "/family[0]/variant": "full"}

    def test_seed_selects_nested_variant(self) -> None:
        instance = _nested_graph().build().create_instance()

        snapshot = instance.init({"variant": "full", "full_steps": 45})

        assert snapshot["full_steps"] == 45

    def test_oscillating_discriminator_hits_remount_cap(self) -> None:
        # The mounted variant flips its own discriminant every time it mounts
        graph = (
            DataGraph()
            .computed("a", lambda ctx, ext: "y" if ctx.get("b") == "flip" else "x", ["b"])
            .discriminator("a", {"x": DataGraph().node("b", NodeConfig(default="flip")), "y": DataGraph()})
            .build()
        )
        instance = graph.create_instance()

        with pytest.raises(CycleError, match="'/a' remounted more than 16 times"):
            instance.init()
        assert instance.initialized is False

    def test_first_mounts_do_not_count_towards_cap(self) -> None:
        graph = DataGraph()
        for i in range(17):
            graph = graph.node(f"d{i}", enum_node(["a", "b"])).discriminator(f"d{i}", {"a": DataGraph().node(f"x{i}", NodeConfig(default=i)), "b": DataGraph()})
        instance = graph.build().create_instance(settings=EngineSettings(max_remounts=1))

        snapshot = instance.init()

        assert snapshot["x16"] == 16
        assert len(instance.mounted_variants()) == 17


class TestBranchValuePolicy:
    def test_reset_policy_starts_from_defaults(self, instance: GraphInstance) -> None:
        instance.set({"steps": 35, "sampler": "dpm"})
        instance.set({"ecosystem": "B"})

        snapshot = instance.set({"ecosystem": "A"})

        assert snapshot["steps"] == 20
        assert snapshot["sampler"] == "euler"

    def test_restore_policy_brings_values_back(self, generation_graph, restore_settings) -> None:
        instance = generation_graph.create_instance(settings=restore_settings)
        instance.init()
        instance.set({"steps": 35})
        instance.set({"ecosystem": "B", "fps": 12})

        back = instance.set({"ecosystem": "A"})
        assert back["steps"] == 35

        again = instance.set({"ecosystem": "B"})
        assert again["fps"] == 12

    def test_restore_policy_revalidates(self, restore_settings) -> None:
        def steps_config(ctx, ext) -> NodeConfig:
            return slider_node(1, 50 if ctx["tier"] == "pro" else 20, default=10)

        controls = DataGraph().node("steps", steps_config, ["tier"])
        graph = (
            DataGraph()
            .node("tier", enum_node(["pro", "free"]))
            .node("mode", enum_node(["draw", "none"]))
            .discriminator("mode", {"draw": controls, "none": DataGraph()})
            .build()
        )
        instance = graph.create_instance(settings=restore_settings)
        instance.init()
        instance.set({"steps": 40})
        instance.set({"mode": "none"})

        snapshot = instance.set({"mode": "draw", "tier": "free"})

        assert snapshot["steps"] == 10

    def test_restore_policy_for_hidden_nodes(self, generation_graph, restore_settings) -> None:
        instance = generation_graph.create_instance(settings=restore_settings)
        instance.init()
        instance.set({"workflow": "img2img", "images": ["a.png"]})
        instance.set({"workflow": "txt2img"})

        assert instance.set({"workflow": "img2img"})["images"] == ["a.png"]

    def test_reset_policy_for_hidden_nodes(self, instance: GraphInstance) -> None:
        instance.set({"workflow": "img2img", "images": ["a.png"]})
        instance.set({"workflow": "txt2img"})

        assert instance.set({"workflow": "img2img"})["images"] == []

    def test_nested_restore(self, restore_settings) -> None:
        instance = _nested_graph().build().create_instance(settings=restore_settings)
        instance.init()
        instance.set({"variant": "full"})
        instance.set({"full_steps": 40})
        instance.set({"family": "flux"})

        snapshot = instance.set({"family": "sd"})

        assert snapshot["variant"] == "full"
        assert snapshot["full_steps"] == 40

    def test_caller_seed_beats_restored_value(self, generation_graph, restore_settings) -> None:
        instance = generation_graph.create_instance(settings=restore_settings)
        instance.init()
        instance.set({"steps": 35})
        instance.set({"ecosystem": "B"})

        assert instance.set({"ecosystem": "A", "steps": 12})["steps"] == 12
