"""
Curated LOINC and UCUM dictionaries.

Keys are matched case-insensitively after trimming; values are (code, display).
Read-only at runtime.
"""
from typing import Dict, Optional, Tuple

LOINC_SYSTEM = "http://loinc.org"
UCUM_SYSTEM = "http://unitsofmeasure.org"
OBSERVATION_CATEGORY_SYSTEM = "http://terminology.hl7.org/CodeSystem/observation-category"
DATA_ABSENT_REASON_SYSTEM = "http://terminology.hl7.org/CodeSystem/data-absent-reason"

_HEMOGLOBIN = ("718-7", "Hemoglobin [Mass/volume] in Blood")
_HEMATOCRIT = ("4544-3", "Hematocrit [Volume Fraction] of Blood by Automated count")
_WBC = ("6690-2", "Leukocytes [#/volume] in Blood by Automated count")
_RBC = ("789-8", "Erythrocytes [#/volume] in Blood by Automated count")
_PLATELETS = ("777-3", "Platelets [#/volume] in Blood by Automated count")
_GLUCOSE = ("2345-7", "Glucose [Mass/volume] in Serum or Plasma")
_BUN = ("3094-0", "Urea nitrogen [Mass/volume] in Serum or Plasma")
_CHOLESTEROL = ("2093-3", "Cholesterol [Mass/volume] in Serum or Plasma")
_BILIRUBIN = ("1975-2", "Bilirubin.total [Mass/volume] in Serum or Plasma")
_SYSTOLIC = ("8480-6", "Systolic blood pressure")
_DIASTOLIC = ("8462-4", "Diastolic blood pressure")
_HEART_RATE = ("8867-4", "Heart rate")
_TEMPERATURE = ("8310-5", "Body temperature")

LOINC_MAPPINGS: Dict[str, Tuple[str, str]] = {
    # Hematology
    "Hemoglobin": _HEMOGLOBIN,
    "HB": _HEMOGLOBIN,
    "Hgb": _HEMOGLOBIN,
    "Hematocrit": _HEMATOCRIT,
    "HCT": _HEMATOCRIT,
    "White Blood Cell Count": _WBC,
    "WBC": _WBC,
    "Red Blood Cell Count": _RBC,
    "RBC": _RBC,
    "Platelet Count": _PLATELETS,
    "PLT": _PLATELETS,

    # Chemistry
    "Glucose": _GLUCOSE,
    "Blood Glucose": _GLUCOSE,
    "Creatinine": ("2160-0", "Creatinine [Mass/volume] in Serum or Plasma"),
    "Blood Urea Nitrogen": _BUN,
    "BUN": _BUN,
    "Sodium": ("2951-2", "Sodium [Moles/volume] in Serum or Plasma"),
    "Potassium": ("2823-3", "Potassium [Moles/volume] in Serum or Plasma"),
    "Chloride": ("2075-0", "Chloride [Moles/volume] in Serum or Plasma"),
    "Total Cholesterol": _CHOLESTEROL,
    "Cholesterol": _CHOLESTEROL,
    "HDL Cholesterol": ("2085-9", "Cholesterol in HDL [Mass/volume] in Serum or Plasma"),
    "LDL Cholesterol": ("2089-1", "Cholesterol in LDL [Mass/volume] in Serum or Plasma"),
    "Triglycerides": ("2571-8", "Triglyceride [Mass/volume] in Serum or Plasma"),

    # Liver function
    "ALT": ("1742-6", "Alanine aminotransferase [Enzymatic activity/volume] in Serum or Plasma"),
    "AST": ("1920-8", "Aspartate aminotransferase [Enzymatic activity/volume] in Serum or Plasma"),
    "Bilirubin Total": _BILIRUBIN,
    "Total Bilirubin": _BILIRUBIN,

    # Vitals
    "Blood Pressure Systolic": _SYSTOLIC,
    "Systolic BP": _SYSTOLIC,
    "Blood Pressure Diastolic": _DIASTOLIC,
    "Diastolic BP": _DIASTOLIC,
    "Heart Rate": _HEART_RATE,
    "Pulse": _HEART_RATE,
    "Body Temperature": _TEMPERATURE,
    "Temperature": _TEMPERATURE,
    "Respiratory Rate": ("9279-1", "Respiratory rate"),
    "Weight": ("29463-7", "Body weight"),
    "Height": ("8302-2", "Body height"),
    "BMI": ("39156-5", "Body mass index (BMI) [Ratio]"),
    "Oxygen Saturation": ("2708-6", "Oxygen saturation in Arterial blood"),
}

_PER_MINUTE = ("/min", "per minute")
_CELSIUS = ("Cel", "degree Celsius")
_FAHRENHEIT = ("[degF]", "degree Fahrenheit")
_MMHG = ("mm[Hg]", "millimeter of mercury")

UCUM_MAPPINGS: Dict[str, Tuple[str, str]] = {
    # Mass/volume
    "g/dL": ("g/dL", "gram per deciliter"),
    "mg/dL": ("mg/dL", "milligram per deciliter"),
    "mg/L": ("mg/L", "milligram per liter"),
    "g/L": ("g/L", "gram per liter"),
    "ng/mL": ("ng/mL", "nanogram per milliliter"),
    "pg/mL": ("pg/mL", "picogram per milliliter"),
    "ug/dL": ("ug/dL", "microgram per deciliter"),
    "ug/L": ("ug/L", "microgram per liter"),

    # Moles/volume
    "mmol/L": ("mmol/L", "millimole per liter"),
    "umol/L": ("umol/L", "micromole per liter"),
    "mEq/L": ("meq/L", "milliequivalent per liter"),

    # Count/volume
    "10*3/uL": ("10*3/uL", "thousand per microliter"),
    "10*6/uL": ("10*6/uL", "million per microliter"),
    "/uL": ("/uL", "per microliter"),
    "cells/uL": ("/uL", "per microliter"),

    # Enzymatic activity
    "U/L": ("U/L", "unit per liter"),
    "IU/L": ("[IU]/L", "international unit per liter"),

    # Pressure
    "mm[Hg]": _MMHG,
    "mmHg": _MMHG,

    # Rate
    "bpm": _PER_MINUTE,
    "/min": _PER_MINUTE,
    "beats/min": _PER_MINUTE,

    # Temperature
    "Cel": _CELSIUS,
    "°C": _CELSIUS,
    "degC": _CELSIUS,
    "[degF]": _FAHRENHEIT,
    "°F": _FAHRENHEIT,

    # Physical measurements
    "kg": ("kg", "kilogram"),
    "lb": ("[lb_av]", "pound"),
    "cm": ("cm", "centimeter"),
    "m": ("m", "meter"),
    "in": ("[in_i]", "inch"),
    "ft": ("[ft_i]", "foot"),

    # Percentage
    "%": ("%", "percent"),
    "percent": ("%", "percent"),

    # Ratio
    "kg/m2": ("kg/m2", "kilogram per square meter"),
    "kg/m^2": ("kg/m2", "kilogram per square meter"),
}

_LOINC_INDEX = {key.casefold(): value for key, value in LOINC_MAPPINGS.items()}
_UCUM_INDEX = {key.casefold(): value for key, value in UCUM_MAPPINGS.items()}


def lookup_loinc(test_name: str) -> Optional[Tuple[str, str]]:
    """(code, display) for a test name, case-insensitive; None if unmapped."""
    return _LOINC_INDEX.get(test_name.strip().casefold())


def lookup_ucum(unit: str) -> Optional[Tuple[str, str]]:
    """(code, display) for a unit, case-insensitive; None if unmapped."""
    return _UCUM_INDEX.get(unit.strip().casefold())
