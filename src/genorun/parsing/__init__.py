"""Parsers that turn analysis tool output files into domain records."""

from genorun.parsing.prophage import (
    ProphageLayout,
    genome_base_name,
    parse_prophage_output,
    read_region_sequence,
)
from genorun.parsing.resistance import parse_resistance_output
from genorun.parsing.scoring import classify_completeness, normalize_confidence

__all__ = [
    "ProphageLayout",
    "classify_completeness",
    "genome_base_name",
    "normalize_confidence",
    "parse_prophage_output",
    "parse_resistance_output",
    "read_region_sequence",
]
