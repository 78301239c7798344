import copy
import logging

from pygltflib import Accessor, Animation, AnimationSampler, Asset

from gltf_anim_split.exceptions import InvariantViolationError
from gltf_anim_split.model.asset_graph_model import AssetGraph, GENERATOR
from gltf_anim_split.model.collected_info_model import CollectedAnimationInfo
from gltf_anim_split.utils.utils import get_field, set_field

logger = logging.getLogger(__name__)


class GraphSplitService(object):
    _instance = None

    def __new__(cls, *args, **kwargs):
        if not isinstance(cls._instance, cls):
            cls._instance = object.__new__(cls, *args, **kwargs)

        return cls._instance

    def __init_collected_info(self) -> CollectedAnimationInfo:
        return CollectedAnimationInfo(
            animation_indices=[],
            accessor_indices=dict(),
            bufferView_indices=dict(),
            extension_names=set(),
        )

    def create_chunk_documents(
        self,
        source: AssetGraph,
        chunks: dict[str, list[Animation]],
    ) -> dict[str, AssetGraph]:
        documents = {}
        for name, animations in chunks.items():
            documents[name] = self.copy_animations(source, animations, name=name)
        return documents

    def copy_animations(
        self,
        source: AssetGraph,
        animations: list[Animation],
        name: str = None,
    ) -> AssetGraph:
        """Copy `animations` and the binary data they need into a new graph.

        Channel targets must already be cleared; no node, mesh, skin or scene
        is copied.
        """
        target = AssetGraph(name=name)
        target.gltf.asset = Asset(
            version=source.gltf.asset.version if source.gltf.asset is not None else "2.0",
            generator=GENERATOR,
        )

        collected_info = self.__init_collected_info()
        for animation in animations:
            self.__add_animation_and_its_dependencies(
                animation=animation,
                source=source,
                target=target,
                collected_info=collected_info,
            )

        self.__copy_extensions(source=source, target=target, collected_info=collected_info)
        target.requires_target_patch = True

        logger.debug(
            "Chunk %r: %d animations, %d accessors, %d buffer views, %d bytes",
            name,
            len(target.gltf.animations),
            len(target.gltf.accessors),
            len(target.gltf.bufferViews),
            len(target.blob),
        )
        return target

    def __add_animation_and_its_dependencies(
        self,
        animation: Animation,
        source: AssetGraph,
        target: AssetGraph,
        collected_info: CollectedAnimationInfo,
    ) -> None:
        source_index = source.index_of_animation(animation)
        if source_index == -1:
            raise InvariantViolationError(
                f"Animation {animation.name!r} is not part of the source graph"
            )
        if source_index in collected_info.animation_indices:
            return

        for channel_index, channel in enumerate(animation.channels):
            if channel.target is not None and channel.target.node is not None:
                raise InvariantViolationError(
                    f"Animation {animation.name!r} channel {channel_index} still targets "
                    f"node {channel.target.node}; targets must be cached and cleared before copying"
                )

        animation_copy: Animation = copy.deepcopy(animation)
        for sampler in animation_copy.samplers:
            self.__process_sampler_for_animation(
                sampler=sampler,
                source=source,
                target=target,
                collected_info=collected_info,
            )

        collected_info.extension_names.update(self.__used_extension_names(animation_copy))
        collected_info.animation_indices.append(source_index)
        target.gltf.animations.append(animation_copy)

    def __process_sampler_for_animation(
        self,
        sampler: AnimationSampler,
        source: AssetGraph,
        target: AssetGraph,
        collected_info: CollectedAnimationInfo,
    ) -> None:
        if sampler.input is not None:
            sampler.input = self.__add_accessor_and_its_dependencies(
                sampler.input, source, target, collected_info
            )
        if sampler.output is not None:
            sampler.output = self.__add_accessor_and_its_dependencies(
                sampler.output, source, target, collected_info
            )

    def __add_accessor_and_its_dependencies(
        self,
        accessor_index: int,
        source: AssetGraph,
        target: AssetGraph,
        collected_info: CollectedAnimationInfo,
    ) -> int:
        if collected_info.accessor_indices.get(accessor_index) is not None:
            return collected_info.accessor_indices[accessor_index]

        accessor_copy: Accessor = copy.deepcopy(source.gltf.accessors[accessor_index])

        if accessor_copy.bufferView is not None:
            accessor_copy.bufferView = self.__add_buffer_view(
                accessor_copy.bufferView, source, target, collected_info
            )

        if accessor_copy.sparse is not None:
            for part in ("indices", "values"):
                sparse_part = get_field(accessor_copy.sparse, part)
                if sparse_part is not None and get_field(sparse_part, "bufferView") is not None:
                    set_field(
                        sparse_part,
                        "bufferView",
                        self.__add_buffer_view(
                            get_field(sparse_part, "bufferView"), source, target, collected_info
                        ),
                    )

        new_accessor_index = len(target.gltf.accessors)
        target.gltf.accessors.append(accessor_copy)
        collected_info.accessor_indices[accessor_index] = new_accessor_index
        return new_accessor_index

    def __add_buffer_view(
        self,
        bufferView_index: int,
        source: AssetGraph,
        target: AssetGraph,
        collected_info: CollectedAnimationInfo,
    ) -> int:
        if collected_info.bufferView_indices.get(bufferView_index) is not None:
            return collected_info.bufferView_indices[bufferView_index]

        bufferView = source.gltf.bufferViews[bufferView_index]
        new_bufferView_index = target.append_buffer_view(
            source.read_buffer_view(bufferView_index),
            byte_stride=bufferView.byteStride,
            target=bufferView.target,
        )
        collected_info.bufferView_indices[bufferView_index] = new_bufferView_index
        return new_bufferView_index

    def __used_extension_names(self, animation: Animation) -> set[str]:
        names = set((animation.extensions or {}).keys())
        for channel in animation.channels:
            names.update((channel.extensions or {}).keys())
            if channel.target is not None:
                names.update((channel.target.extensions or {}).keys())
        for sampler in animation.samplers:
            names.update((sampler.extensions or {}).keys())
        return names

    def __copy_extensions(
        self,
        source: AssetGraph,
        target: AssetGraph,
        collected_info: CollectedAnimationInfo,
    ) -> None:
        names = collected_info.extension_names
        target.gltf.extensionsUsed = [
            name for name in source.gltf.extensionsUsed or [] if name in names
        ]
        target.gltf.extensionsRequired = [
            name for name in source.gltf.extensionsRequired or [] if name in names
        ]
