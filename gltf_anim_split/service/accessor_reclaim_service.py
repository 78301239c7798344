import logging

from pygltflib import Animation

from gltf_anim_split.model.asset_graph_model import AssetGraph, PropertyRef, ROOT, sampler_ref

logger = logging.getLogger(__name__)


class AccessorReclaimService(object):
    _instance = None

    def __new__(cls, *args, **kwargs):
        if not isinstance(cls._instance, cls):
            cls._instance = object.__new__(cls, *args, **kwargs)

        return cls._instance

    def dispose_animations(self, graph: AssetGraph, animations: list[Animation]) -> int:
        """Delete `animations` and every accessor only they kept alive.

        Exclusivity is judged on the parent links as they are before anything
        is deleted: an accessor goes only when all of its parents are the root
        or samplers of the animations being deleted. Accessors are deleted
        before the animations, whose samplers would otherwise vanish from the
        parent links first. Returns the number of accessors deleted.
        """
        animations = [
            animation for animation in animations if graph.index_of_animation(animation) != -1
        ]
        if len(animations) == 0:
            return 0

        referenced_samplers, referenced_accessors = self.__collect_sampler_references(
            graph, animations
        )

        parent_map = graph.build_accessor_parent_map()
        accessors_to_cull = sorted(
            accessor_index
            for accessor_index in referenced_accessors
            if self.__is_exclusive(parent_map.get(accessor_index, [ROOT]), referenced_samplers)
        )

        removed_accessors = graph.remove_accessors(accessors_to_cull)
        removed_animations = graph.remove_animations(animations)

        logger.debug(
            "Disposed %d animations and %d of %d accessors they referenced",
            removed_animations,
            removed_accessors,
            len(referenced_accessors),
        )
        return removed_accessors

    def __collect_sampler_references(
        self,
        graph: AssetGraph,
        animations: list[Animation],
    ) -> tuple[set[PropertyRef], set[int]]:
        referenced_samplers = set()
        referenced_accessors = set()

        for animation in animations:
            animation_index = graph.index_of_animation(animation)
            for sampler_index, sampler in enumerate(animation.samplers):
                referenced_samplers.add(sampler_ref(animation_index, sampler_index))
                if sampler.input is not None:
                    referenced_accessors.add(sampler.input)
                if sampler.output is not None:
                    referenced_accessors.add(sampler.output)

        return referenced_samplers, referenced_accessors

    def __is_exclusive(self, parents: list[PropertyRef], referenced_samplers: set[PropertyRef]) -> bool:
        return all(parent == ROOT or parent in referenced_samplers for parent in parents)
