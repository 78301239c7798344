import copy
import logging
from pathlib import Path
from urllib.parse import unquote

from pygltflib import GLTF2, Buffer

from gltf_anim_split.exceptions import ConfigurationError, InvariantViolationError
from gltf_anim_split.model.asset_graph_model import AssetGraph
from gltf_anim_split.utils.utils import decode_data_uri, is_data_uri, pad_to_alignment

logger = logging.getLogger(__name__)


class AssetIoService(object):
    _instance = None

    def __new__(cls, *args, **kwargs):
        if not isinstance(cls._instance, cls):
            cls._instance = object.__new__(cls, *args, **kwargs)

        return cls._instance

    def read(self, path) -> AssetGraph:
        path = Path(path)
        if not path.is_file():
            raise ConfigurationError(f"Input file not found: {path}")

        gltf = GLTF2().load(str(path))
        if gltf is None:
            raise ConfigurationError(f"Unsupported input file: {path}")

        blob = self.__consolidate_buffers(gltf, path.parent)
        graph = AssetGraph(gltf, blob, name=path.stem)
        logger.info(
            "Loaded %s: %d nodes, %d animations, %d accessors",
            path,
            len(gltf.nodes),
            len(gltf.animations),
            len(gltf.accessors),
        )
        return graph

    def write(self, path, graph: AssetGraph) -> Path:
        """Serialize `graph` as GLB or as glTF with a sibling .bin, by suffix.

        The graph's own glTF is left unpatched; the target patcher runs on the
        copy that gets serialized.
        """
        path = Path(path)
        if graph.requires_target_patch and graph.target_patcher is None:
            raise InvariantViolationError(
                f"Graph {graph.name!r} has detached animation targets but no AnimationTargetPatcher"
            )

        graph.pack()
        gltf: GLTF2 = copy.deepcopy(graph.gltf)
        if graph.target_patcher is not None:
            graph.target_patcher.write(gltf, requires_patch=graph.requires_target_patch)

        path.parent.mkdir(parents=True, exist_ok=True)
        if path.suffix.lower() == ".glb":
            gltf.set_binary_blob(bytes(graph.blob))
            gltf.save_binary(str(path))
        else:
            if len(graph.blob) > 0:
                bin_path = path.with_suffix(".bin")
                bin_path.write_bytes(graph.blob)
                gltf.buffers = [Buffer(uri=bin_path.name, byteLength=len(graph.blob))]
            else:
                gltf.buffers = []
            gltf.save_json(str(path))

        return path

    def write_output(
        self,
        graph: AssetGraph,
        output_dir,
        file_name: str,
        output_glb: bool = True,
        separate_folders: bool = True,
    ) -> Path:
        directory = Path(output_dir)
        if separate_folders:
            directory = directory / file_name

        path = directory / f"{file_name}.{'glb' if output_glb else 'gltf'}"
        self.write(path, graph)
        logger.info("Saved: %s", path)
        return path

    def __consolidate_buffers(self, gltf: GLTF2, base_dir: Path) -> bytearray:
        blob = bytearray()
        buffer_offsets = []

        for buffer_index, buffer in enumerate(gltf.buffers):
            data = self.__load_buffer_data(gltf, buffer, buffer_index, base_dir)
            if buffer.byteLength is not None:
                data = data[:buffer.byteLength]

            pad_to_alignment(blob)
            buffer_offsets.append(len(blob))
            blob.extend(data)

        for bufferView in gltf.bufferViews:
            bufferView.byteOffset = (bufferView.byteOffset or 0) + buffer_offsets[bufferView.buffer]
            bufferView.buffer = 0

        return blob

    def __load_buffer_data(self, gltf: GLTF2, buffer: Buffer, buffer_index: int, base_dir: Path) -> bytes:
        if buffer.uri is None:
            data = gltf.binary_blob()
            if data is None:
                raise ConfigurationError(f"Buffer {buffer_index} has no uri and no GLB binary chunk")
            return bytes(data)

        if is_data_uri(buffer.uri):
            return decode_data_uri(buffer.uri)

        buffer_path = base_dir / unquote(buffer.uri)
        if not buffer_path.is_file():
            raise ConfigurationError(f"Buffer file not found: {buffer_path}")
        return buffer_path.read_bytes()
