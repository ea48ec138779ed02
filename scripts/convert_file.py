#!/usr/bin/env python3
"""
Convert a local healthcare file to a FHIR Bundle without the server.

Field mappings are detected from the file's own columns, exactly as the
service does when no mappings were supplied.

Usage:
    python scripts/convert_file.py data/labs.csv
    python scripts/convert_file.py data/patient.json -o bundle.json
"""
import argparse
import json
import sys
import uuid
from pathlib import Path

# Add parent directory to path to import src modules
sys.path.append(str(Path(__file__).parent.parent))

from src.canonical import FieldMapping
from src.config import settings
from src.detection import FieldDetector, extract_source_fields
from src.errors import ConversionServiceError
from src.fhir import FHIRConverter
from src.logging_config import setup_logging
from src.parsers import get_parser, input_format_for
from src.terminology import TerminologyResolver


def convert(source: Path) -> dict:
    """Convert one file and return the bundle as a dictionary"""
    input_format = input_format_for(source.name)
    if input_format is None:
        raise ValueError(f"Unsupported file type: {source.suffix or source.name}")

    detector = FieldDetector()
    columns = extract_source_fields(source, input_format)
    mappings = [
        FieldMapping(source_column=field.column_name, canonical_path=field.suggested_canonical_path)
        for field in detector.detect(columns)
    ]
    print(f"🔎 Detected {len(mappings)} field mappings from {len(columns)} columns", file=sys.stderr)
    for mapping in mappings:
        print(f"   {mapping.source_column} → {mapping.canonical_path}", file=sys.stderr)

    job_id = str(uuid.uuid4())
    patient, observations = get_parser(input_format).parse(source, mappings, job_id)

    resolver = TerminologyResolver.from_settings(settings)
    try:
        converter = FHIRConverter(resolver, settings.default_identifier_system)
        result = converter.convert(patient, observations, job_id)
    finally:
        resolver.close()

    print(f"✅ Bundle {result.bundle.id}: {result.patient_count} patient, {result.observation_count} observations", file=sys.stderr)
    return result.bundle_dict


def main():
    parser = argparse.ArgumentParser(description="Convert a CSV, JSON or C-CDA file to a FHIR Bundle")
    parser.add_argument("source", type=Path, help="File to convert (.csv, .json, .xml)")
    parser.add_argument("-o", "--output", type=Path, help="Write bundle JSON here instead of stdout")
    args = parser.parse_args()

    # stdout carries the bundle; keep library logging quiet
    setup_logging("WARNING", json_format=settings.log_json)

    if not args.source.exists():
        print(f"❌ File not found: {args.source}")
        sys.exit(1)

    try:
        bundle = convert(args.source)
    except (ConversionServiceError, ValueError) as e:
        print(f"❌ Conversion failed: {e}")
        sys.exit(1)

    bundle_json = json.dumps(bundle, indent=2)
    if args.output:
        args.output.write_text(bundle_json, encoding="utf-8")
        print(f"💾 Saved bundle to {args.output}")
    else:
        print(bundle_json)


if __name__ == "__main__":
    main()
