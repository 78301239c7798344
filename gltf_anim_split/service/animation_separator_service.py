import logging

from pygltflib import Animation

from gltf_anim_split.exceptions import ConfigurationError, InvariantViolationError
from gltf_anim_split.extension.animation_target_patcher import AnimationTargetPatcher
from gltf_anim_split.model.animation_pattern_model import (
    AnimationPattern,
    BASE_ANIMATIONS_KEY,
    PatternSpec,
)
from gltf_anim_split.model.asset_graph_model import AssetGraph
from gltf_anim_split.model.separation_model import (
    AnimationTargetMap,
    CategorizedAnimations,
    SeparationResult,
)
from gltf_anim_split.service.accessor_reclaim_service import AccessorReclaimService
from gltf_anim_split.service.graph_split_service import GraphSplitService
from gltf_anim_split.utils.utils import animation_label

logger = logging.getLogger(__name__)


class AnimationSeparatorService(object):
    _instance = None
    _accessor_reclaim_service: AccessorReclaimService
    _graph_split_service: GraphSplitService

    def __new__(cls, *args, **kwargs):
        if not isinstance(cls._instance, cls):
            cls._instance = object.__new__(cls, *args, **kwargs)

        return cls._instance

    def __init__(self):
        self._accessor_reclaim_service = AccessorReclaimService()
        self._graph_split_service = GraphSplitService()

    def separate(
        self,
        graph: AssetGraph,
        animation_map: dict[str, PatternSpec | AnimationPattern],
    ) -> SeparationResult:
        """Split `graph` into itself (the base) and one new graph per chunk.

        `graph` is mutated in place and must be discarded if this raises.
        """
        patterns = self.parse_animation_map(animation_map)
        node_count = len(graph.list_nodes())

        categorized = self.categorize_animations(graph, patterns)
        self._accessor_reclaim_service.dispose_animations(graph, categorized.unmatched)

        chunk_animations = self.__unique_animations(categorized.chunks.values())
        target_map = self.cache_target_indices(graph, chunk_animations, node_count)

        chunk_graphs = self._graph_split_service.create_chunk_documents(graph, categorized.chunks)

        base_ids = {id(animation) for animation in categorized.base}
        self._accessor_reclaim_service.dispose_animations(
            graph,
            [animation for animation in graph.list_animations() if id(animation) not in base_ids],
        )

        detached_ids = {id(animation) for animation in chunk_animations}
        graph.requires_target_patch = any(
            id(animation) in detached_ids for animation in graph.list_animations()
        )
        for output in [graph, *chunk_graphs.values()]:
            output.register_target_patcher(AnimationTargetPatcher(target_map))

        if len(graph.list_nodes()) != node_count:
            raise InvariantViolationError(
                f"Node count changed during separation ({node_count} -> {len(graph.list_nodes())})"
            )

        logger.info(
            "Separated %d base animations and %d chunks (%s)",
            len(graph.list_animations()),
            len(chunk_graphs),
            ", ".join(chunk_graphs.keys()) or "none",
        )
        return SeparationResult(base=graph, chunks=chunk_graphs, target_map=target_map)

    def parse_animation_map(
        self,
        animation_map: dict[str, PatternSpec | AnimationPattern],
    ) -> dict[str, AnimationPattern]:
        if BASE_ANIMATIONS_KEY not in animation_map:
            raise ConfigurationError(
                f"animationMap must contain the {BASE_ANIMATIONS_KEY!r} key"
            )
        return {
            name: spec if isinstance(spec, AnimationPattern) else AnimationPattern.parse(spec)
            for name, spec in animation_map.items()
        }

    def categorize_animations(
        self,
        graph: AssetGraph,
        animation_map: dict[str, PatternSpec | AnimationPattern],
    ) -> CategorizedAnimations:
        patterns = {
            name: spec if isinstance(spec, AnimationPattern) else AnimationPattern.parse(spec)
            for name, spec in animation_map.items()
        }
        base_animations = []
        chunk_map = {}
        unmatched_animations = []

        for animation in graph.list_animations():
            matched = False

            # one animation can belong to several chunks, so no early exit
            if animation.name:
                for chunk_name, pattern in patterns.items():
                    if not pattern.matches(animation.name):
                        continue
                    matched = True
                    if chunk_name == BASE_ANIMATIONS_KEY:
                        base_animations.append(animation)
                    else:
                        chunk_map.setdefault(chunk_name, []).append(animation)

            if not matched:
                unmatched_animations.append(animation)

        if len(unmatched_animations) > 0:
            labels = [
                animation_label(animation.name, graph.index_of_animation(animation))
                for animation in unmatched_animations
            ]
            logger.warning("Removing animations with no pattern matches: %s", ", ".join(labels))

        return CategorizedAnimations(
            base=base_animations,
            chunks=chunk_map,
            unmatched=unmatched_animations,
        )

    def cache_target_indices(
        self,
        graph: AssetGraph,
        animations: list[Animation],
        node_count: int = None,
    ) -> AnimationTargetMap:
        """Record each channel's target node index, then clear the target.

        Indices refer to the node list as it was when separation started
        (`node_count` nodes). Channels whose target lies outside it get no
        entry; animations without entries are left out of the map.
        """
        if node_count is None:
            node_count = len(graph.list_nodes())

        target_map = {}
        for animation in animations:
            channel_map = {}
            for channel_index, channel in enumerate(animation.channels):
                if channel.target is None:
                    continue

                target_node_index = channel.target.node
                if target_node_index is not None and 0 <= target_node_index < node_count:
                    channel_map[channel_index] = target_node_index
                elif target_node_index is not None:
                    logger.debug(
                        "Animation %r channel %d targets missing node %d",
                        animation.name,
                        channel_index,
                        target_node_index,
                    )

                channel.target.node = None

            if animation.name and len(channel_map) > 0:
                target_map[animation.name] = channel_map

        return target_map

    def __unique_animations(self, animation_lists) -> list[Animation]:
        seen = set()
        unique = []
        for animations in animation_lists:
            for animation in animations:
                if id(animation) not in seen:
                    seen.add(id(animation))
                    unique.append(animation)
        return unique
