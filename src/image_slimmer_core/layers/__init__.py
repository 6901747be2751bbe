"""Layer metadata extraction and filesystem materialization."""

from .extractor import extract_layers, measure_uncompressed_size
from .filesystem import (
    extract_layer_archive,
    materialize_layer,
    materialize_layers,
    resolve_entry_path,
)

__all__ = [
    "extract_layer_archive",
    "extract_layers",
    "materialize_layer",
    "materialize_layers",
    "measure_uncompressed_size",
    "resolve_entry_path",
]
