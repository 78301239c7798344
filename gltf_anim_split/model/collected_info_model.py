from pydantic import BaseModel


class CollectedAnimationInfo(BaseModel):
    """Per-chunk resolver state: source index -> index of the copy in the chunk."""

    animation_indices: list[int]
    accessor_indices: dict[int, int]
    bufferView_indices: dict[int, int]
    extension_names: set[str]
