from pygltflib import GLTF2, AnimationChannelTarget

from gltf_anim_split.exceptions import InvariantViolationError
from gltf_anim_split.model.separation_model import AnimationTargetMap


class AnimationTargetPatcher(object):
    """Writes cached node indices into animation channel targets at write time.

    Chunk files hold animations whose target nodes only exist in the base
    file. Their targets are cleared before the animations are copied, so the
    node hierarchy stays behind, and this patcher puts the raw node indices
    back into the about-to-be-serialized copy of each output. The index may
    point past the end of that file's own node list. Each patcher is
    registered on exactly one graph and can be written once.
    """

    EXTENSION_NAME = "AnimationTargetPatcher"

    def __init__(self, animation_target_map: AnimationTargetMap = None):
        self.animation_target_map = animation_target_map
        self._written = False

    def set_animation_target_map(self, animation_target_map: AnimationTargetMap) -> "AnimationTargetPatcher":
        self.animation_target_map = animation_target_map
        return self

    def write(self, gltf: GLTF2, requires_patch: bool = False) -> GLTF2:
        if self.animation_target_map is None:
            raise InvariantViolationError("No AnimationTargetMap found.")
        if self._written:
            raise InvariantViolationError("AnimationTargetPatcher has already been written.")
        if requires_patch:
            names = {animation.name for animation in gltf.animations}
            if len(names & self.animation_target_map.keys()) == 0:
                raise InvariantViolationError(
                    "AnimationTargetMap is empty for this graph's animations "
                    f"({', '.join(sorted(str(name) for name in names)) or 'none'}) "
                    "but the graph contains detached animation targets."
                )

        for animation in gltf.animations:
            channel_target_map = self.animation_target_map.get(animation.name)
            if channel_target_map is None:
                continue

            for channel_index, target_node_index in channel_target_map.items():
                if not 0 <= channel_index < len(animation.channels):
                    raise InvariantViolationError(
                        f"Animation {animation.name!r} has no channel {channel_index} "
                        f"({len(animation.channels)} channels)."
                    )
                channel = animation.channels[channel_index]
                if channel.target is None:
                    channel.target = AnimationChannelTarget()
                channel.target.node = target_node_index

        # the patch is baked into the channels, nothing left for a loader to support
        gltf.extensionsUsed = [
            name for name in gltf.extensionsUsed or [] if name != self.EXTENSION_NAME
        ]
        gltf.extensionsRequired = [
            name for name in gltf.extensionsRequired or [] if name != self.EXTENSION_NAME
        ]

        self._written = True
        return gltf
