import logging

import numpy as np
from pygltflib import FLOAT

from gltf_anim_split.model.asset_graph_model import AssetGraph, ROOT, TYPE_SIZES
from gltf_anim_split.model.separator_config_model import OptimizationOptions

logger = logging.getLogger(__name__)

LINEAR = "LINEAR"
STEP = "STEP"


class OptimizationService(object):
    """Clean-up steps run on every output graph before it is written.

    None of the steps adds or removes animations, channels or nodes.
    """

    _instance = None

    def __new__(cls, *args, **kwargs):
        if not isinstance(cls._instance, cls):
            cls._instance = object.__new__(cls, *args, **kwargs)

        return cls._instance

    def optimize(self, graph: AssetGraph, options: OptimizationOptions = None) -> AssetGraph:
        if options is None:
            options = OptimizationOptions()

        if options.resample:
            self.resample(graph, tolerance=options.tolerance)
        if options.prune:
            self.prune(graph)
        if options.dedup:
            self.dedup(graph)
        return graph

    def resample(self, graph: AssetGraph, tolerance: float = 1e-4) -> int:
        """Drop keyframes their neighbours already reproduce. Returns the number dropped.

        Only LINEAR and STEP samplers over dense float data are touched. The
        reduced keys go into new accessors; the old ones are left to `prune`.
        """
        dropped = 0
        for animation in graph.list_animations():
            rotation_samplers = {
                channel.sampler
                for channel in animation.channels
                if channel.target is not None and channel.target.path == "rotation"
            }

            for sampler_index, sampler in enumerate(animation.samplers):
                interpolation = sampler.interpolation or LINEAR
                if interpolation not in (LINEAR, STEP):
                    continue
                if not self.__is_resampleable(graph, sampler.input) or not self.__is_resampleable(
                    graph, sampler.output
                ):
                    continue

                times = graph.read_accessor(sampler.input)[:, 0]
                values = graph.read_accessor(sampler.output)
                if len(times) < 3 or len(values) % len(times) != 0:
                    continue
                values = values.reshape(len(times), -1)

                keep = self.__keyframes_to_keep(
                    times,
                    values,
                    interpolation,
                    sampler_index in rotation_samplers,
                    tolerance,
                )
                if keep.all():
                    continue

                input_type = graph.gltf.accessors[sampler.input].type
                output_type = graph.gltf.accessors[sampler.output].type
                sampler.input = graph.create_accessor(times[keep].reshape(-1, 1), input_type)
                sampler.output = graph.create_accessor(
                    values[keep].reshape(-1, TYPE_SIZES[output_type]), output_type
                )
                dropped += int(np.count_nonzero(~keep))

        logger.debug("Resampled %r: dropped %d keyframes", graph.name, dropped)
        return dropped

    def prune(self, graph: AssetGraph) -> int:
        """Remove unused animation samplers, accessors and buffer views."""
        removed = 0
        for animation in graph.list_animations():
            used = {channel.sampler for channel in animation.channels}
            unused = [index for index in range(len(animation.samplers)) if index not in used]
            if len(unused) > 0:
                removed += graph.remove_animation_samplers(animation, unused)

        parent_map = graph.build_accessor_parent_map()
        removed += graph.remove_accessors(
            [index for index, parents in parent_map.items() if all(p == ROOT for p in parents)]
        )

        bufferView_parent_map = graph.build_buffer_view_parent_map()
        removed += graph.remove_buffer_views(
            [index for index, parents in bufferView_parent_map.items() if len(parents) == 0]
        )

        logger.debug("Pruned %r: removed %d properties", graph.name, removed)
        return removed

    def dedup(self, graph: AssetGraph) -> int:
        """Collapse accessors holding identical data into the first of them."""
        seen = {}
        replacements = {}
        for index, accessor in enumerate(graph.list_accessors()):
            if accessor.sparse is not None or accessor.bufferView is None:
                continue

            bufferView_target = graph.gltf.bufferViews[accessor.bufferView].target
            key = (
                accessor.type,
                accessor.componentType,
                bool(accessor.normalized),
                accessor.count,
                bufferView_target,
                graph.read_accessor(index).tobytes(),
            )
            if key in seen:
                replacements[index] = seen[key]
            else:
                seen[key] = index

        if len(replacements) == 0:
            return 0

        graph.redirect_accessors(replacements)
        removed = graph.remove_accessors(replacements.keys())
        logger.debug("Deduplicated %r: merged %d accessors", graph.name, removed)
        return removed

    def __is_resampleable(self, graph: AssetGraph, accessor_index: int) -> bool:
        if accessor_index is None:
            return False
        accessor = graph.gltf.accessors[accessor_index]
        return (
            accessor.sparse is None
            and accessor.bufferView is not None
            and accessor.componentType == FLOAT
            and not accessor.normalized
        )

    def __keyframes_to_keep(
        self,
        times: np.ndarray,
        values: np.ndarray,
        interpolation: str,
        is_rotation: bool,
        tolerance: float,
    ) -> np.ndarray:
        keep = np.zeros(len(times), dtype=bool)
        keep[0] = True
        keep[-1] = True

        last = 0
        for i in range(1, len(times) - 1):
            if interpolation == STEP:
                redundant = self.__close(values[i], values[last], tolerance, is_rotation)
            else:
                span = times[i + 1] - times[last]
                if span <= 0:
                    redundant = False
                else:
                    t = (times[i] - times[last]) / span
                    if is_rotation:
                        expected = self.__slerp(values[last], values[i + 1], t)
                    else:
                        expected = values[last] + (values[i + 1] - values[last]) * t
                    redundant = self.__close(values[i], expected, tolerance, is_rotation)

            if not redundant:
                keep[i] = True
                last = i

        return keep

    def __close(self, a: np.ndarray, b: np.ndarray, tolerance: float, is_rotation: bool) -> bool:
        if np.allclose(a, b, rtol=0, atol=tolerance):
            return True
        # q and -q are the same rotation
        return is_rotation and np.allclose(a, -b, rtol=0, atol=tolerance)

    def __slerp(self, a: np.ndarray, b: np.ndarray, t: float) -> np.ndarray:
        a = a.astype(np.float64)
        b = b.astype(np.float64)
        a_norm = np.linalg.norm(a)
        b_norm = np.linalg.norm(b)
        if a_norm == 0 or b_norm == 0:
            return a + (b - a) * t
        a = a / a_norm
        b = b / b_norm

        dot = float(np.dot(a, b))
        if dot < 0:
            b = -b
            dot = -dot

        if dot > 0.9995:
            result = a + (b - a) * t
            return result / np.linalg.norm(result)

        theta = np.arccos(dot)
        return (np.sin((1 - t) * theta) * a + np.sin(t * theta) * b) / np.sin(theta)
