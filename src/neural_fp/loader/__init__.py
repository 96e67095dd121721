"""Model blob loader module."""

from .model import (
    LayerRecord,
    ModelBlob,
    ModelHeader,
    encode_model,
    load_model,
    load_model_file,
    parse_model,
    read_header,
    save_model,
    save_model_file,
)

__all__ = [
    "LayerRecord",
    "ModelBlob",
    "ModelHeader",
    "encode_model",
    "load_model",
    "load_model_file",
    "parse_model",
    "read_header",
    "save_model",
    "save_model_file",
]
