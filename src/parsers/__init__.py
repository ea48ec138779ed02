"""
Format parsers: staged source file → canonical patient + observations.

Dispatch is a table keyed by InputFormat; every format must have a parser.
"""
from pathlib import Path
from typing import Dict, Optional, Union

from src.canonical import InputFormat
from .base import FormatParser, ParsedFile, build_mapping_index, lookup_value
from .csv_parser import CsvParser
from .json_parser import JsonParser
from .ccda_parser import CcdaParser, inject_xsi_namespace, parse_ccda_document

PARSERS: Dict[InputFormat, FormatParser] = {
    InputFormat.CSV: CsvParser(),
    InputFormat.JSON: JsonParser(),
    InputFormat.CCDA: CcdaParser(),
}

_missing = [fmt.value for fmt in InputFormat if fmt not in PARSERS]
if _missing:
    raise RuntimeError(f"No parser registered for input format(s): {', '.join(_missing)}")

EXTENSION_FORMATS: Dict[str, InputFormat] = {
    ".csv": InputFormat.CSV,
    ".json": InputFormat.JSON,
    ".xml": InputFormat.CCDA,
}


def get_parser(input_format: InputFormat) -> FormatParser:
    return PARSERS[input_format]


def input_format_for(file_name: Union[str, Path]) -> Optional[InputFormat]:
    """Input format implied by a file's extension, or None if unsupported."""
    return EXTENSION_FORMATS.get(Path(str(file_name)).suffix.lower())


__all__ = [
    "FormatParser",
    "ParsedFile",
    "CsvParser",
    "JsonParser",
    "CcdaParser",
    "PARSERS",
    "EXTENSION_FORMATS",
    "get_parser",
    "input_format_for",
    "inject_xsi_namespace",
    "parse_ccda_document",
    "build_mapping_index",
    "lookup_value",
]
