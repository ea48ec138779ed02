"""
Candidate source-field extraction for field detection.

- CSV: header row
- JSON: dotted property paths (arrays inspected via their first element)
- CCDA: well-known C-CDA field names
"""
import csv
import io
import json
import logging
from pathlib import Path
from typing import Any, List, Union

from src.canonical import InputFormat
from src.errors import ParseError
from src.parsers import parse_ccda_document

logger = logging.getLogger(__name__)

CCDA_FALLBACK_FIELDS = [
    "patient_id",
    "first_name",
    "last_name",
    "birth_date",
    "gender",
    "test_name",
    "test_result",
    "unit",
    "test_date",
]

CCDA_FIELDS = [
    "patient_id",
    "first_name",
    "last_name",
    "birth_date",
    "gender",
    "phone",
    "email",
    "address",
    "test_name",
    "test_result",
    "unit",
    "test_date",
]


def extract_source_fields(file_path: Union[str, Path], input_format: InputFormat) -> List[str]:
    """
    Candidate column / property names for a staged file.

    Unreadable or malformed files yield an empty list (CSV, JSON) or the
    fallback field list (CCDA); detection never fails a request.
    """
    path = Path(file_path)
    if input_format == InputFormat.CSV:
        return _csv_headers(path)
    if input_format == InputFormat.JSON:
        return _json_fields(path)
    if input_format == InputFormat.CCDA:
        return _ccda_fields(path)
    raise ValueError(f"Unsupported input format: {input_format}")


def _csv_headers(path: Path) -> List[str]:
    try:
        content = path.read_text(encoding="utf-8-sig")
        first_row = next(csv.reader(io.StringIO(content)), [])
    except (OSError, UnicodeDecodeError, csv.Error) as e:
        logger.error("Error reading CSV header for field detection: %s", e)
        return []
    return [header.strip() for header in first_row if header.strip()]


def _json_fields(path: Path) -> List[str]:
    try:
        document = json.loads(path.read_text(encoding="utf-8-sig"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        logger.error("Error parsing JSON file for field detection: %s", e)
        return []
    fields: List[str] = []
    _flatten(document, "", fields)
    return fields


def _flatten(value: Any, prefix: str, fields: List[str]) -> None:
    if not isinstance(value, dict):
        return
    for key, child in value.items():
        name = f"{prefix}.{key}" if prefix else str(key)
        if isinstance(child, dict):
            _flatten(child, name, fields)
        elif isinstance(child, list):
            if not child:
                continue
            if isinstance(child[0], dict):
                _flatten(child[0], name, fields)
            else:
                fields.append(name)
        else:
            fields.append(name)


def _ccda_fields(path: Path) -> List[str]:
    try:
        parse_ccda_document(path.read_text(encoding="utf-8-sig"))
    except (OSError, UnicodeDecodeError, ParseError) as e:
        logger.error("Error parsing CCDA file for field detection: %s", e)
        return list(CCDA_FALLBACK_FIELDS)
    return list(CCDA_FIELDS)
