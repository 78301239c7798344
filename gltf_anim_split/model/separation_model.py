from typing import NamedTuple

from pygltflib import Animation

from gltf_anim_split.model.asset_graph_model import AssetGraph

# track name -> channel index -> node index in the source node list
AnimationTargetMap = dict[str, dict[int, int]]


class CategorizedAnimations(NamedTuple):
    base: list[Animation]
    chunks: dict[str, list[Animation]]
    unmatched: list[Animation]


class SeparationResult(NamedTuple):
    base: AssetGraph
    chunks: dict[str, AssetGraph]
    target_map: AnimationTargetMap
