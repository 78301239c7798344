import logging

import numpy as np
import pytest

from conftest import (
    PULSE_SCALE,
    WAVE_ROTATION,
    add_track,
    animation_names,
    find_animation,
)
from gltf_anim_split.exceptions import ConfigurationError, InvariantViolationError
from gltf_anim_split.extension.animation_target_patcher import AnimationTargetPatcher
from gltf_anim_split.service.animation_separator_service import AnimationSeparatorService


def test_categorize_allows_overlapping_groups(source_graph, animation_map):
    categorized = AnimationSeparatorService().categorize_animations(source_graph, animation_map)

    assert [animation.name for animation in categorized.base] == ["TheWave"]
    assert list(categorized.chunks.keys()) == ["Fun", "Wave"]
    assert [animation.name for animation in categorized.chunks["Fun"]] == ["TheWave", "Pulse"]
    assert [animation.name for animation in categorized.chunks["Wave"]] == ["TheWave"]
    assert [animation.name for animation in categorized.unmatched] == ["Spin"]
    assert categorized.base[0] is categorized.chunks["Fun"][0] is categorized.chunks["Wave"][0]


def test_categorize_warns_about_unmatched_tracks(source_graph, animation_map, caplog):
    add_track(source_graph, None, [(0, "rotation", 5, 6)])

    with caplog.at_level(logging.WARNING):
        categorized = AnimationSeparatorService().categorize_animations(source_graph, animation_map)

    assert len(categorized.unmatched) == 2
    assert "Spin" in caplog.text
    assert "<unnamed #3>" in caplog.text


def test_nameless_track_is_unmatched_even_for_catch_all(source_graph):
    nameless = add_track(source_graph, None, [(0, "rotation", 5, 6)])

    categorized = AnimationSeparatorService().categorize_animations(
        source_graph, {"Base": ".*", "All": ".*"}
    )

    assert [animation.name for animation in categorized.unmatched] == [None]
    assert categorized.unmatched[0] is nameless
    assert all(animation is not nameless for animation in categorized.chunks["All"])


def test_cache_target_indices_records_and_clears(source_graph):
    wave = find_animation(source_graph, "TheWave")
    pulse = find_animation(source_graph, "Pulse")

    target_map = AnimationSeparatorService().cache_target_indices(source_graph, [wave, pulse])

    assert target_map == {"TheWave": {0: 1, 1: 2}, "Pulse": {0: 2}}
    assert all(channel.target.node is None for channel in wave.channels + pulse.channels)
    # untouched animations keep their targets
    assert find_animation(source_graph, "Spin").channels[0].target.node == 0


def test_cache_target_indices_skips_missing_nodes(source_graph):
    orphan = add_track(source_graph, "Orphan", [(99, "rotation", 5, 6), (2, "scale", 1, 4)])
    lost = add_track(source_graph, "Lost", [(42, "rotation", 5, 6)])

    target_map = AnimationSeparatorService().cache_target_indices(source_graph, [orphan, lost])

    assert target_map == {"Orphan": {1: 2}}
    assert orphan.channels[0].target.node is None
    assert lost.channels[0].target.node is None


def test_separate_end_to_end(source_graph, animation_map, caplog):
    source_accessors = list(source_graph.list_accessors())

    with caplog.at_level(logging.WARNING):
        result = AnimationSeparatorService().separate(source_graph, animation_map)

    assert "Spin" in caplog.text
    assert result.base is source_graph
    assert animation_names(result.base) == ["TheWave"]
    assert list(result.chunks.keys()) == ["Fun", "Wave"]
    assert animation_names(result.chunks["Fun"]) == ["TheWave", "Pulse"]
    assert animation_names(result.chunks["Wave"]) == ["TheWave"]
    assert result.target_map == {"TheWave": {0: 1, 1: 2}, "Pulse": {0: 2}}

    # base keeps the scene, chunks only carry animation data
    assert len(result.base.list_nodes()) == 4
    assert len(result.base.gltf.meshes) == 1
    assert len(result.base.list_accessors()) == 4
    for chunk in result.chunks.values():
        assert chunk.list_nodes() == []
        assert chunk.gltf.meshes == []
        assert chunk.gltf.scenes == []
        assert chunk.requires_target_patch

    fun = result.chunks["Fun"]
    assert len(fun.list_accessors()) == 4
    assert len(result.chunks["Wave"].list_accessors()) == 3

    fun_wave = find_animation(fun, "TheWave")
    fun_pulse = find_animation(fun, "Pulse")
    assert fun_wave.samplers[0].input == fun_pulse.samplers[0].input
    np.testing.assert_array_equal(fun.read_accessor(fun_wave.samplers[0].output), WAVE_ROTATION)
    np.testing.assert_array_equal(fun.read_accessor(fun_pulse.samplers[0].output), PULSE_SCALE)

    # TheWave lives in three graphs, each with its own accessors
    wave_graphs = [result.base, fun, result.chunks["Wave"]]
    wave_copies = [find_animation(graph, "TheWave") for graph in wave_graphs]
    assert wave_copies[0] is not wave_copies[1] and wave_copies[1] is not wave_copies[2]
    for graph in wave_graphs[1:]:
        assert all(
            accessor is not original
            for accessor in graph.list_accessors()
            for original in source_accessors
        )


def test_separate_registers_a_patcher_on_every_output(source_graph, animation_map):
    result = AnimationSeparatorService().separate(source_graph, animation_map)

    outputs = [result.base, *result.chunks.values()]
    patchers = [graph.target_patcher for graph in outputs]
    assert all(isinstance(patcher, AnimationTargetPatcher) for patcher in patchers)
    assert len({id(patcher) for patcher in patchers}) == len(outputs)
    assert all(patcher.animation_target_map is result.target_map for patcher in patchers)
    assert all(
        AnimationTargetPatcher.EXTENSION_NAME in graph.gltf.extensionsUsed for graph in outputs
    )
    assert result.base.requires_target_patch


def test_base_without_detached_tracks_needs_no_patch(source_graph):
    result = AnimationSeparatorService().separate(
        source_graph, {"Base": ["Spin"], "Fun": ["Pulse"]}
    )

    assert animation_names(result.base) == ["Spin"]
    assert find_animation(result.base, "Spin").channels[0].target.node == 0
    assert not result.base.requires_target_patch
    assert result.chunks["Fun"].requires_target_patch


def test_separate_with_orphan_channel(source_graph):
    add_track(source_graph, "Orphan", [(99, "rotation", 5, 6), (2, "scale", 1, 4)])

    result = AnimationSeparatorService().separate(
        source_graph, {"Base": [], "Extra": ["Orphan"]}
    )

    assert animation_names(result.base) == []
    assert animation_names(result.chunks["Extra"]) == ["Orphan"]
    assert result.target_map == {"Orphan": {1: 2}}
    # only the mesh positions are left in the base
    assert len(result.base.list_accessors()) == 1


def test_separate_requires_base_key(source_graph):
    with pytest.raises(ConfigurationError, match="Base"):
        AnimationSeparatorService().separate(source_graph, {"Fun": ["Pulse"]})

    assert animation_names(source_graph) == ["TheWave", "Pulse", "Spin"]


def test_separate_rejects_bad_regex_before_mutation(source_graph):
    with pytest.raises(ConfigurationError):
        AnimationSeparatorService().separate(source_graph, {"Base": ["TheWave"], "Bad": "(("})

    assert animation_names(source_graph) == ["TheWave", "Pulse", "Spin"]
    assert find_animation(source_graph, "TheWave").channels[0].target.node == 1


def test_separate_detects_node_count_change(source_graph, animation_map, monkeypatch):
    service = AnimationSeparatorService()
    original = service._graph_split_service.create_chunk_documents

    def create_and_add_node(graph, chunks):
        graph.gltf.nodes.append(graph.gltf.nodes[0])
        return original(graph, chunks)

    monkeypatch.setattr(service._graph_split_service, "create_chunk_documents", create_and_add_node)

    with pytest.raises(InvariantViolationError, match="Node count"):
        service.separate(source_graph, animation_map)
