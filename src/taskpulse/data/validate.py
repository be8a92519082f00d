from typing import Any, Dict, List
from jsonschema import validate, ValidationError, SchemaError
from packaging.version import Version, InvalidVersion
from pydantic import ValidationError as ModelValidationError

from taskpulse.logs import get_logger
from taskpulse.models import WorkspaceDocument, COLLECTION_KEYS, EntityType, model_for
from taskpulse.recovery import CorruptionError, FatalError, MigrationNeededError
from taskpulse.version import APP_SCHEMA_VERSION

log = get_logger("data.validate")

_SCHEMA_CACHE: Dict[str, Any] = {}

def document_schema() -> Dict[str, Any]:
    """
    JSON schema of a workspace data file, generated from the pydantic model.

    Every record must at least be an object carrying an ``id``; field-level
    checks are left to the entity models.
    """
    if "document" not in _SCHEMA_CACHE:
        schema = WorkspaceDocument.model_json_schema(by_alias=True)
        schema["$schema"] = "https://json-schema.org/draft/2020-12/schema"
        for key in COLLECTION_KEYS.values():
            schema["properties"][key]["items"] = {
                "type": "object",
                "required": ["id"],
                "properties": {"id": {"type": ["string", "integer"]}},
            }
        _SCHEMA_CACHE["document"] = schema
    return _SCHEMA_CACHE["document"]

def check_schema_version(file_version: str) -> bool:
    """
    Compare the data file's schema version with the application's.

    Raises:
        MigrationNeededError: the file was written by an older schema.
        FatalError: the file is newer than this application understands.
    """
    try:
        found = Version(str(file_version))
    except InvalidVersion as e:
        raise CorruptionError(f"Invalid schema version in data file: {file_version!r}") from e

    current = Version(APP_SCHEMA_VERSION)
    log.info(f"DATA: {found}; APP: {current};")
    if found < current:
        raise MigrationNeededError(f"Data file uses schema {found}, application expects {current}")
    if found > current:
        raise FatalError(f"Data file uses schema {found}, newer than application schema {current}")
    return True

def validate_document(data: Dict[str, Any]) -> Dict[EntityType, List[Dict[str, Any]]]:
    """
    Validate a loaded workspace document and split it into per-type records.

    Returns:
        Mapping of entity type to the raw records, each already accepted by
        its entity model.
    """
    try:
        validate(instance=data, schema=document_schema())
    except ValidationError as e:
        log.error(f"Data file FAILED validation: {e.message}")
        raise CorruptionError(f"Data file failed schema validation: {e.message}") from e
    except SchemaError as e:
        raise FatalError(f"The data file schema itself is invalid: {e.message}") from e

    check_schema_version(data["schemaVersion"])

    records: Dict[EntityType, List[Dict[str, Any]]] = {}
    for entity_type, key in COLLECTION_KEYS.items():
        model = model_for(entity_type)
        accepted = []
        for raw in data.get(key, []):
            try:
                model.model_validate(raw)
            except ModelValidationError as e:
                raise CorruptionError(f"Invalid {entity_type.value} record {raw.get('id')!r}: {e}") from e
            accepted.append(raw)
        records[entity_type] = accepted
    return records
