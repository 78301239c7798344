from typing import NamedTuple

import numpy as np
from pygltflib import (
    GLTF2,
    Asset,
    Accessor,
    Animation,
    Buffer,
    BufferView,
    BYTE,
    UNSIGNED_BYTE,
    SHORT,
    UNSIGNED_SHORT,
    UNSIGNED_INT,
    FLOAT,
    SCALAR,
    VEC2,
    VEC3,
    VEC4,
    MAT2,
    MAT3,
    MAT4,
)

from gltf_anim_split.utils.utils import (
    extract_non_null_attributes,
    get_field,
    pad_to_alignment,
    set_field,
)

GENERATOR = "gltf-anim-split"

COMPONENT_DTYPES = {
    BYTE: np.dtype(np.int8),
    UNSIGNED_BYTE: np.dtype(np.uint8),
    SHORT: np.dtype(np.int16),
    UNSIGNED_SHORT: np.dtype(np.uint16),
    UNSIGNED_INT: np.dtype(np.uint32),
    FLOAT: np.dtype(np.float32),
}
DTYPE_COMPONENTS = {dtype: component for component, dtype in COMPONENT_DTYPES.items()}

TYPE_SIZES = {
    SCALAR: 1,
    VEC2: 2,
    VEC3: 3,
    VEC4: 4,
    MAT2: 4,
    MAT3: 9,
    MAT4: 16,
}

INSTANCING_EXTENSION = "EXT_mesh_gpu_instancing"
DRACO_EXTENSION = "KHR_draco_mesh_compression"


class PropertyRef(NamedTuple):
    """A parent link of a shared resource, addressed by kind and index path."""

    kind: str
    path: tuple = ()


ROOT = PropertyRef("root")


def sampler_ref(animation_index: int, sampler_index: int) -> PropertyRef:
    return PropertyRef("animation_sampler", (animation_index, sampler_index))


class AssetGraph:
    """One output file: the glTF JSON plus the single blob its buffer views live in.

    Every buffer view points into buffer 0. Bytes no buffer view covers any
    more stay in the blob until `pack` rebuilds it.
    """

    def __init__(self, gltf: GLTF2 = None, blob: bytes = b"", name: str = None):
        if gltf is None:
            gltf = GLTF2(asset=Asset(version="2.0", generator=GENERATOR))
        self.gltf = gltf
        self.blob = bytearray(blob)
        self.name = name
        self.target_patcher = None
        self.requires_target_patch = False
        self.sync_buffer()

    def __repr__(self):
        return (
            f"AssetGraph(name={self.name!r}, nodes={len(self.gltf.nodes)}, "
            f"animations={len(self.gltf.animations)}, accessors={len(self.gltf.accessors)})"
        )

    def list_nodes(self) -> list:
        return self.gltf.nodes

    def list_animations(self) -> list[Animation]:
        return self.gltf.animations

    def list_accessors(self) -> list[Accessor]:
        return self.gltf.accessors

    def index_of_animation(self, animation: Animation) -> int:
        for index, candidate in enumerate(self.gltf.animations):
            if candidate is animation:
                return index
        return -1

    def register_target_patcher(self, patcher) -> None:
        self.target_patcher = patcher
        if self.gltf.extensionsUsed is None:
            self.gltf.extensionsUsed = []
        if patcher.EXTENSION_NAME not in self.gltf.extensionsUsed:
            self.gltf.extensionsUsed.append(patcher.EXTENSION_NAME)

    def sync_buffer(self) -> None:
        if len(self.blob) > 0:
            self.gltf.buffers = [Buffer(byteLength=len(self.blob))]
        else:
            self.gltf.buffers = []

    # binary data

    def read_buffer_view(self, index: int) -> bytes:
        buffer_view = self.gltf.bufferViews[index]
        start = buffer_view.byteOffset or 0
        return bytes(self.blob[start:start + buffer_view.byteLength])

    def append_buffer_view(self, data: bytes, byte_stride: int = None, target: int = None) -> int:
        pad_to_alignment(self.blob)
        offset = len(self.blob)
        self.blob.extend(data)
        self.gltf.bufferViews.append(
            BufferView(
                buffer=0,
                byteOffset=offset,
                byteLength=len(data),
                byteStride=byte_stride,
                target=target,
            )
        )
        self.sync_buffer()
        return len(self.gltf.bufferViews) - 1

    def read_accessor(self, index: int) -> np.ndarray:
        accessor = self.gltf.accessors[index]
        if accessor.sparse is not None:
            raise ValueError(f"Accessor {index} is sparse")

        dtype = COMPONENT_DTYPES[accessor.componentType]
        width = TYPE_SIZES[accessor.type]
        if accessor.bufferView is None:
            return np.zeros((accessor.count, width), dtype=dtype)

        buffer_view = self.gltf.bufferViews[accessor.bufferView]
        start = (buffer_view.byteOffset or 0) + (accessor.byteOffset or 0)
        element_size = dtype.itemsize * width
        stride = buffer_view.byteStride or element_size

        if stride == element_size:
            data = np.frombuffer(self.blob, dtype=dtype, count=accessor.count * width, offset=start)
            return data.reshape(accessor.count, width).copy()

        rows = [
            np.frombuffer(self.blob, dtype=dtype, count=width, offset=start + i * stride)
            for i in range(accessor.count)
        ]
        return np.array(rows, dtype=dtype).reshape(accessor.count, width)

    def create_accessor(
        self,
        array: np.ndarray,
        accessor_type: str,
        normalized: bool = False,
        target: int = None,
    ) -> int:
        width = TYPE_SIZES[accessor_type]
        array = np.ascontiguousarray(array).reshape(-1, width)
        component_type = DTYPE_COMPONENTS[array.dtype]

        buffer_view_index = self.append_buffer_view(array.tobytes(), target=target)
        accessor = Accessor(
            bufferView=buffer_view_index,
            byteOffset=0,
            componentType=component_type,
            normalized=normalized,
            count=len(array),
            type=accessor_type,
        )
        if len(array) > 0:
            accessor.min = array.min(axis=0).tolist()
            accessor.max = array.max(axis=0).tolist()

        self.gltf.accessors.append(accessor)
        return len(self.gltf.accessors) - 1

    def pack(self) -> None:
        packed = bytearray()
        for buffer_view in self.gltf.bufferViews:
            pad_to_alignment(packed)
            start = buffer_view.byteOffset or 0
            segment = self.blob[start:start + buffer_view.byteLength]

            buffer_view.buffer = 0
            buffer_view.byteOffset = len(packed)
            packed.extend(segment)

        pad_to_alignment(packed)
        self.blob = packed
        self.sync_buffer()

    # parent links

    def build_accessor_parent_map(self) -> dict[int, list[PropertyRef]]:
        parents = {index: [ROOT] for index in range(len(self.gltf.accessors))}

        def link(accessor_index, ref: PropertyRef):
            if accessor_index in parents:
                parents[accessor_index].append(ref)

        for mesh_index, mesh in enumerate(self.gltf.meshes):
            for primitive_index, primitive in enumerate(mesh.primitives):
                path = (mesh_index, primitive_index)
                for accessor_index in extract_non_null_attributes(primitive.attributes).values():
                    link(accessor_index, PropertyRef("primitive_attribute", path))
                link(primitive.indices, PropertyRef("primitive_indices", path))
                for target_index, target in enumerate(primitive.targets or []):
                    for accessor_index in extract_non_null_attributes(target).values():
                        link(accessor_index, PropertyRef("morph_target", path + (target_index,)))

        for skin_index, skin in enumerate(self.gltf.skins):
            link(skin.inverseBindMatrices, PropertyRef("skin", (skin_index,)))

        for animation_index, animation in enumerate(self.gltf.animations):
            for sampler_index, sampler in enumerate(animation.samplers):
                ref = sampler_ref(animation_index, sampler_index)
                link(sampler.input, ref)
                link(sampler.output, ref)

        for node_index, node in enumerate(self.gltf.nodes):
            for accessor_index in self.__instancing_attributes(node).values():
                link(accessor_index, PropertyRef("node_instancing", (node_index,)))

        return parents

    def build_buffer_view_parent_map(self) -> dict[int, list[PropertyRef]]:
        parents = {index: [] for index in range(len(self.gltf.bufferViews))}

        def link(buffer_view_index, ref: PropertyRef):
            if buffer_view_index in parents:
                parents[buffer_view_index].append(ref)

        for accessor_index, accessor in enumerate(self.gltf.accessors):
            ref = PropertyRef("accessor", (accessor_index,))
            link(accessor.bufferView, ref)
            if accessor.sparse is not None:
                link(get_field(get_field(accessor.sparse, "indices"), "bufferView"), ref)
                link(get_field(get_field(accessor.sparse, "values"), "bufferView"), ref)

        for image_index, image in enumerate(self.gltf.images):
            link(image.bufferView, PropertyRef("image", (image_index,)))

        for mesh_index, mesh in enumerate(self.gltf.meshes):
            for primitive_index, primitive in enumerate(mesh.primitives):
                draco = (primitive.extensions or {}).get(DRACO_EXTENSION)
                if draco is not None:
                    link(draco.get("bufferView"), PropertyRef("draco", (mesh_index, primitive_index)))

        return parents

    # removal

    def remove_accessors(self, indices) -> int:
        doomed = {index for index in indices if 0 <= index < len(self.gltf.accessors)}
        if len(doomed) == 0:
            return 0

        released_views = set()
        index_map = {}
        kept = []
        for old_index, accessor in enumerate(self.gltf.accessors):
            if old_index in doomed:
                released_views.update(self.__accessor_buffer_views(accessor))
                continue
            index_map[old_index] = len(kept)
            kept.append(accessor)

        self.gltf.accessors = kept
        self.__remap_accessor_references(index_map)

        buffer_view_parents = self.build_buffer_view_parent_map()
        self.remove_buffer_views(
            [index for index in released_views if len(buffer_view_parents.get(index, [])) == 0]
        )
        return len(doomed)

    def redirect_accessors(self, replacements: dict[int, int]) -> None:
        """Point every reference to a key of `replacements` at its value instead."""
        self.__remap_accessor_references(
            {index: replacements.get(index, index) for index in range(len(self.gltf.accessors))}
        )

    def remove_buffer_views(self, indices) -> int:
        doomed = {index for index in indices if 0 <= index < len(self.gltf.bufferViews)}
        if len(doomed) == 0:
            return 0

        index_map = {}
        kept = []
        for old_index, buffer_view in enumerate(self.gltf.bufferViews):
            if old_index in doomed:
                continue
            index_map[old_index] = len(kept)
            kept.append(buffer_view)

        self.gltf.bufferViews = kept
        self.__remap_buffer_view_references(index_map)
        return len(doomed)

    def remove_animations(self, animations) -> int:
        doomed = {id(animation) for animation in animations}
        before = len(self.gltf.animations)
        self.gltf.animations = [
            animation for animation in self.gltf.animations if id(animation) not in doomed
        ]
        return before - len(self.gltf.animations)

    def remove_animation_samplers(self, animation: Animation, sampler_indices) -> int:
        doomed = set(sampler_indices)
        index_map = {}
        kept = []
        for old_index, sampler in enumerate(animation.samplers):
            if old_index in doomed:
                continue
            index_map[old_index] = len(kept)
            kept.append(sampler)

        removed = len(animation.samplers) - len(kept)
        animation.samplers = kept
        for channel in animation.channels:
            channel.sampler = index_map.get(channel.sampler)
        return removed

    def __instancing_attributes(self, node) -> dict:
        extension = (node.extensions or {}).get(INSTANCING_EXTENSION)
        if extension is None:
            return {}
        return {k: v for k, v in extension.get("attributes", {}).items() if v is not None}

    def __accessor_buffer_views(self, accessor: Accessor) -> list[int]:
        views = [accessor.bufferView]
        if accessor.sparse is not None:
            views.append(get_field(get_field(accessor.sparse, "indices"), "bufferView"))
            views.append(get_field(get_field(accessor.sparse, "values"), "bufferView"))
        return [view for view in views if view is not None]

    def __remap_accessor_references(self, index_map: dict[int, int]) -> None:
        def remap(index):
            return None if index is None else index_map.get(index)

        for mesh in self.gltf.meshes:
            for primitive in mesh.primitives:
                for key, value in extract_non_null_attributes(primitive.attributes).items():
                    set_field(primitive.attributes, key, remap(value))
                primitive.indices = remap(primitive.indices)
                for target in primitive.targets or []:
                    for key, value in extract_non_null_attributes(target).items():
                        set_field(target, key, remap(value))

        for skin in self.gltf.skins:
            skin.inverseBindMatrices = remap(skin.inverseBindMatrices)

        for animation in self.gltf.animations:
            for sampler in animation.samplers:
                sampler.input = remap(sampler.input)
                sampler.output = remap(sampler.output)

        for node in self.gltf.nodes:
            attributes = self.__instancing_attributes(node)
            if len(attributes) > 0:
                node.extensions[INSTANCING_EXTENSION]["attributes"] = {
                    k: remap(v) for k, v in attributes.items()
                }

    def __remap_buffer_view_references(self, index_map: dict[int, int]) -> None:
        def remap(index):
            return None if index is None else index_map.get(index)

        for accessor in self.gltf.accessors:
            accessor.bufferView = remap(accessor.bufferView)
            if accessor.sparse is not None:
                for part in ("indices", "values"):
                    sparse_part = get_field(accessor.sparse, part)
                    if sparse_part is not None:
                        set_field(sparse_part, "bufferView", remap(get_field(sparse_part, "bufferView")))

        for image in self.gltf.images:
            image.bufferView = remap(image.bufferView)

        for mesh in self.gltf.meshes:
            for primitive in mesh.primitives:
                draco = (primitive.extensions or {}).get(DRACO_EXTENSION)
                if draco is not None and draco.get("bufferView") is not None:
                    draco["bufferView"] = remap(draco["bufferView"])
