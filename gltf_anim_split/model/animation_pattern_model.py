import re
from typing import Union

from gltf_anim_split.exceptions import ConfigurationError

PatternSpec = Union[str, list[str]]

# animationMap key of the tracks kept in the base file
BASE_ANIMATIONS_KEY = "Base"


class AnimationPattern:
    """Selects the tracks of one output: a set of exact track names or one regular expression.

    Exact names are compared case-sensitively with no normalization. A regular
    expression is searched anywhere in the name unless the pattern anchors
    itself.
    """

    def __init__(self, names: list[str] = None, regex: re.Pattern = None):
        self.names = frozenset(names) if names is not None else None
        self.regex = regex

    @classmethod
    def parse(cls, spec: PatternSpec) -> "AnimationPattern":
        if isinstance(spec, str):
            try:
                return cls(regex=re.compile(spec))
            except re.error as e:
                raise ConfigurationError(f"Invalid animation pattern {spec!r}: {e}") from e

        if isinstance(spec, (list, tuple)) and all(isinstance(name, str) for name in spec):
            return cls(names=list(spec))

        raise ConfigurationError(
            f"Animation pattern must be a regex string or a list of names, got {spec!r}"
        )

    def matches(self, name: str) -> bool:
        if not name:
            return False
        if self.regex is not None:
            return self.regex.search(name) is not None
        return name in self.names

    def __repr__(self):
        if self.regex is not None:
            return f"AnimationPattern(regex={self.regex.pattern!r})"
        return f"AnimationPattern(names={sorted(self.names)!r})"
