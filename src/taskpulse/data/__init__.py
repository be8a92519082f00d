"""
Data file submodule: atomic reads/writes and workspace document validation.
"""

from .io import atomic_write, load_json_file, load_yaml_file, DATA_JSON, DATA_YAML
from .validate import check_schema_version, document_schema, validate_document

__all__ = [
    'atomic_write',
    'load_json_file',
    'load_yaml_file',
    'DATA_JSON',
    'DATA_YAML',
    'check_schema_version',
    'document_schema',
    'validate_document',
]
