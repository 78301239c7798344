from pathlib import Path
from typing import Union

from pydantic import BaseModel, Field, ValidationError, field_validator

from gltf_anim_split.exceptions import ConfigurationError
from gltf_anim_split.model.animation_pattern_model import AnimationPattern, BASE_ANIMATIONS_KEY


class OptimizationOptions(BaseModel):
    resample: bool = True
    prune: bool = True
    dedup: bool = True
    tolerance: float = Field(default=1e-4, ge=0)


class SeparatorConfig(BaseModel):
    """Separation settings, read from a JSON file with the keys below.

    `animationMap` maps an output name to a list of exact animation names or
    to one regular expression. The `Base` entry selects the animations kept in
    the base file; every other entry becomes its own chunk file.
    """

    inputFile: str
    outputPath: str = "output"
    outputGlb: bool = True
    outputSeparateFolders: bool = True
    animationMap: dict[str, Union[str, list[str]]]
    optimization: OptimizationOptions = Field(default_factory=OptimizationOptions)

    @field_validator("animationMap")
    @classmethod
    def check_animation_map(cls, value: dict[str, Union[str, list[str]]]):
        if BASE_ANIMATIONS_KEY not in value:
            raise ValueError(f"animationMap must contain the {BASE_ANIMATIONS_KEY!r} key")
        for spec in value.values():
            try:
                AnimationPattern.parse(spec)
            except ConfigurationError as e:
                raise ValueError(str(e)) from e
        return value

    @classmethod
    def load(cls, path) -> "SeparatorConfig":
        path = Path(path)
        if not path.is_file():
            raise ConfigurationError(f"Config file not found: {path}")
        try:
            return cls.model_validate_json(path.read_text(encoding="utf-8"))
        except ValidationError as e:
            raise ConfigurationError(f"Invalid config {path}: {e}") from e

    def patterns(self) -> dict[str, AnimationPattern]:
        return {name: AnimationPattern.parse(spec) for name, spec in self.animationMap.items()}

    def validate_input(self) -> Path:
        input_path = Path(self.inputFile)
        if not input_path.is_file():
            raise ConfigurationError(f"Input file not found: {input_path}")
        return input_path
