import math

import numpy as np
import pytest
from pygltflib import (
    Animation,
    AnimationChannel,
    AnimationChannelTarget,
    AnimationSampler,
    Attributes,
    Mesh,
    Node,
    Primitive,
    Scene,
    SCALAR,
    VEC3,
    VEC4,
)

from gltf_anim_split.model.asset_graph_model import AssetGraph

WAVE_ROTATION = np.array(
    [[0, 0, 0, 1], [0, 0.7071068, 0, 0.7071068], [0, 0, 0, 1]], dtype=np.float32
)
WAVE_TRANSLATION = np.array([[0, 0, 0], [0, 2, 0], [0, 0, 0]], dtype=np.float32)
PULSE_SCALE = np.array([[1, 1, 1], [2, 2, 2], [1, 1, 1]], dtype=np.float32)
SPIN_ROTATION = np.array([[0, 0, 0, 1], [0, 1, 0, 0]], dtype=np.float32)


def y_rotation(degrees: float) -> list[float]:
    half = math.radians(degrees) / 2
    return [0.0, math.sin(half), 0.0, math.cos(half)]


def add_track(graph: AssetGraph, name: str, channels: list[tuple]) -> Animation:
    """Append an animation; `channels` holds (node, path, input accessor, output accessor)."""
    animation = Animation(name=name, channels=[], samplers=[])
    for node, path, input_index, output_index in channels:
        animation.samplers.append(
            AnimationSampler(input=input_index, output=output_index, interpolation="LINEAR")
        )
        animation.channels.append(
            AnimationChannel(
                sampler=len(animation.samplers) - 1,
                target=AnimationChannelTarget(node=node, path=path),
            )
        )
    graph.gltf.animations.append(animation)
    return animation


def build_source_graph() -> AssetGraph:
    """Skeleton Root > Arm > Hand plus a mesh node, animated by TheWave, Pulse and Spin.

    Accessors: 0 mesh positions, 1 key times shared by TheWave and Pulse,
    2 TheWave rotation, 3 TheWave translation, 4 Pulse scale, 5 Spin times,
    6 Spin rotation.
    """
    graph = AssetGraph(name="Robot")
    gltf = graph.gltf
    gltf.nodes = [
        Node(name="Root", children=[1]),
        Node(name="Arm", children=[2]),
        Node(name="Hand"),
        Node(name="Body", mesh=0),
    ]
    gltf.scenes = [Scene(nodes=[0, 3])]
    gltf.scene = 0

    position = graph.create_accessor(
        np.array([[0, 0, 0], [1, 0, 0], [0, 1, 0]], dtype=np.float32), VEC3, target=34962
    )
    gltf.meshes = [Mesh(name="Body", primitives=[Primitive(attributes=Attributes(POSITION=position))])]

    times = graph.create_accessor(np.array([0, 1, 2], dtype=np.float32), SCALAR)
    wave_rotation = graph.create_accessor(WAVE_ROTATION, VEC4)
    wave_translation = graph.create_accessor(WAVE_TRANSLATION, VEC3)
    pulse_scale = graph.create_accessor(PULSE_SCALE, VEC3)
    spin_times = graph.create_accessor(np.array([0, 1], dtype=np.float32), SCALAR)
    spin_rotation = graph.create_accessor(SPIN_ROTATION, VEC4)

    add_track(
        graph,
        "TheWave",
        [(1, "rotation", times, wave_rotation), (2, "translation", times, wave_translation)],
    )
    add_track(graph, "Pulse", [(2, "scale", times, pulse_scale)])
    add_track(graph, "Spin", [(0, "rotation", spin_times, spin_rotation)])
    return graph


@pytest.fixture
def source_graph() -> AssetGraph:
    return build_source_graph()


@pytest.fixture
def animation_map() -> dict:
    return {
        "Base": ["TheWave"],
        "Fun": ["TheWave", "Pulse"],
        "Wave": "^TheWave",
    }


def animation_names(graph: AssetGraph) -> list[str]:
    return [animation.name for animation in graph.list_animations()]


def find_animation(graph: AssetGraph, name: str) -> Animation:
    for animation in graph.list_animations():
        if animation.name == name:
            return animation
    raise KeyError(name)
