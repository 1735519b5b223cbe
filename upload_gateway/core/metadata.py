"""
metadata.py — Terminal Chunk Metadata Parsing
===============================================
The terminal chunk may carry an ``x-data`` header with a JSON object
of extra parameters. Strings holding ISO-8601 timestamps are revived
into ``datetime`` objects.
"""

import json
import logging
import re
from datetime import datetime
from typing import Any, Dict, Optional

from upload_gateway.core.errors import MetadataParseError

logger = logging.getLogger(__name__)

_ISO_DATETIME = re.compile(
    r"^\d{4}-\d{2}-\d{2}[T ]\d{2}:\d{2}(:\d{2}(\.\d{1,6})?)?(Z|[+-]\d{2}:?\d{2})?$"
)


def _revive(value: Any) -> Any:
    if isinstance(value, str) and _ISO_DATETIME.match(value):
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return value
    if isinstance(value, list):
        return [_revive(item) for item in value]
    return value


def _revive_object(pairs: Dict[str, Any]) -> Dict[str, Any]:
    return {key: _revive(value) for key, value in pairs.items()}


def parse_metadata(raw: Optional[str]) -> Dict[str, Any]:
    """
    Decode the metadata header of a terminal chunk.

    Args:
        raw: JSON text, or None/empty when the header was absent.

    Returns:
        Mapping of the decoded parameters (empty when ``raw`` is empty).

    Raises:
        MetadataParseError: If ``raw`` is not valid JSON or does not
                            decode to an object.
    """
    if not raw:
        return {}
    try:
        value = json.loads(raw, object_hook=_revive_object)
    except json.JSONDecodeError as e:
        raise MetadataParseError(f"Invalid metadata JSON: {e}") from e
    if not isinstance(value, dict):
        raise MetadataParseError(
            f"Metadata must be a JSON object, got {type(value).__name__}"
        )
    return value


def parse_metadata_or_empty(raw: Optional[str]) -> Dict[str, Any]:
    """Like :func:`parse_metadata`, but log and fall back to ``{}``."""
    try:
        return parse_metadata(raw)
    except MetadataParseError as e:
        logger.warning("Ignoring unparsable chunk metadata: %s", e)
        return {}
