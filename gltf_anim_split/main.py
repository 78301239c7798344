import argparse
import logging
import sys
from pathlib import Path

from tqdm.auto import tqdm

from gltf_anim_split.exceptions import ConfigurationError
from gltf_anim_split.model.separator_config_model import SeparatorConfig
from gltf_anim_split.service.animation_separator_service import AnimationSeparatorService
from gltf_anim_split.service.asset_io_service import AssetIoService
from gltf_anim_split.service.optimization_service import OptimizationService

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Split glTF animations into a base model file and animation chunk files."
    )
    parser.add_argument('-c', '--config', type=str, help='config file path', required=True)
    parser.add_argument('-i', '--input_path', type=str, help='input file path, overrides inputFile', required=False)
    parser.add_argument('-o', '--output_path', type=str, help='output directory, overrides outputPath', required=False)
    parser.add_argument('--gltf', action='store_true', help='write .gltf + .bin instead of .glb')
    parser.add_argument('--no_separate_folders', action='store_true', help='write every file directly into the output directory')
    parser.add_argument('--no_optimize', action='store_true', help='skip resampling, pruning and deduplication')
    parser.add_argument('-v', '--verbose', action='store_true', help='debug logging')
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> SeparatorConfig:
    config = SeparatorConfig.load(args.config)

    overrides = {}
    if args.input_path is not None:
        overrides["inputFile"] = args.input_path
    if args.output_path is not None:
        overrides["outputPath"] = args.output_path
    if args.gltf:
        overrides["outputGlb"] = False
    if args.no_separate_folders:
        overrides["outputSeparateFolders"] = False

    return config.model_copy(update=overrides)


def transform_gltf(config: SeparatorConfig, optimize: bool = True) -> list[Path]:
    input_path = config.validate_input()
    patterns = config.patterns()

    io_service = AssetIoService()
    source = io_service.read(input_path)
    result = AnimationSeparatorService().separate(source, patterns)

    # base model first, then one file per chunk
    outputs = [(input_path.stem, result.base), *result.chunks.items()]
    written = []
    for file_name, graph in tqdm(outputs, desc="Writing", unit="file"):
        if optimize:
            OptimizationService().optimize(graph, config.optimization)
        written.append(
            io_service.write_output(
                graph,
                output_dir=config.outputPath,
                file_name=file_name,
                output_glb=config.outputGlb,
                separate_folders=config.outputSeparateFolders,
            )
        )
    return written


def main(argv: list[str] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        print("Transforming GLTF...\n")
        config = build_config(args)
        transform_gltf(config, optimize=not args.no_optimize)
        print("\nGLTF transformation complete.")
    except ConfigurationError as e:
        logger.error("Configuration error: %s", e)
        return 1
    except Exception as e:
        logger.error("An error occurred during the transformation process: %s", e, exc_info=args.verbose)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
