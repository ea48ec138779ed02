"""
Abstract base class for format parsers.

All parsers follow a standardized contract:
1. input_format: The InputFormat the parser handles
2. parse(): Reads one file and returns one patient plus its observations
3. Raises ParseError only when the file defeats the parser entirely
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

from src.canonical import (
    CanonicalObservation,
    CanonicalPatient,
    FieldMapping,
    InputFormat,
)
from src.errors import ParseError


@dataclass
class ParsedFile:
    """Result of parsing one source file."""
    patient: CanonicalPatient
    observations: List[CanonicalObservation] = field(default_factory=list)

    def __iter__(self):
        # Allows `patient, observations = parser.parse(...)`
        yield self.patient
        yield self.observations


class FormatParser(ABC):
    """
    Abstract base class for all source-format parsers.

    Parsers are stateless and safe to share between worker threads.
    """

    @property
    @abstractmethod
    def input_format(self) -> InputFormat:
        """Format handled by this parser."""
        pass

    @abstractmethod
    def parse(
        self,
        file_path: Union[str, Path],
        field_mappings: Sequence[FieldMapping],
        job_id: str,
    ) -> ParsedFile:
        """
        Parse a file into the canonical model.

        Args:
            file_path: Path to the staged source file
            field_mappings: Column → canonical path rules (first match wins)
            job_id: Owning conversion job; used for fallback patient ids

        Returns:
            ParsedFile with one patient and zero or more observations

        Raises:
            ParseError: File unreadable or syntactically unparsable
        """
        pass

    def _read_text(self, file_path: Union[str, Path]) -> str:
        """Read the whole file as text (UTF-8, BOM tolerated)."""
        try:
            return Path(file_path).read_text(encoding="utf-8-sig")
        except (OSError, UnicodeDecodeError) as e:
            raise ParseError(f"{self.input_format.value} parsing failed: cannot read file: {e}") from e

    def __repr__(self) -> str:
        return f"<FormatParser: {self.input_format.value}>"


def build_mapping_index(field_mappings: Sequence[FieldMapping]) -> Dict[str, str]:
    """
    Map canonical path → source column, keeping the first mapping per path.
    """
    index: Dict[str, str] = {}
    for mapping in field_mappings:
        index.setdefault(mapping.canonical_path, mapping.source_column)
    return index


def lookup_value(
    record: Dict[str, str],
    mapping_index: Dict[str, str],
    canonical_path: str,
) -> Optional[str]:
    """Return the non-blank value mapped to `canonical_path`, or None."""
    column = mapping_index.get(canonical_path)
    if column is None or column not in record:
        return None
    value = record[column]
    if value is None or not str(value).strip():
        return None
    return str(value).strip()
