import base64
from urllib.parse import unquote_to_bytes
from pygltflib import Attributes


def extract_non_null_attributes(attributes: Attributes) -> dict:
    attributes_dict = (
        vars(attributes) if not isinstance(attributes, dict) else attributes
    )
    return {k: v for k, v in attributes_dict.items() if v is not None}


def set_field(obj, name: str, value) -> None:
    if isinstance(obj, dict):
        obj[name] = value
    else:
        setattr(obj, name, value)


def align(length: int, alignment: int = 4) -> int:
    return (length + alignment - 1) // alignment * alignment


def pad_to_alignment(data: bytearray, alignment: int = 4) -> None:
    data.extend(b"\x00" * (align(len(data), alignment) - len(data)))


def is_data_uri(uri: str) -> bool:
    return uri.startswith("data:")


def decode_data_uri(uri: str) -> bytes:
    header, payload = uri.split(",", 1)
    if header.endswith(";base64"):
        return base64.b64decode(payload)
    return unquote_to_bytes(payload)


def animation_label(name: str, index: int) -> str:
    return name if name else f"<unnamed #{index}>"


def get_field(obj, name: str):
    if obj is None:
        return None
    if isinstance(obj, dict):
        return obj.get(name)
    return getattr(obj, name, None)
