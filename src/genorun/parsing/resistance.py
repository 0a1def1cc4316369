"""Parser for antibiotic resistance gene (ARG) prediction output.

The predictor writes ``arg_predictions.tsv`` into the job directory; older
versions write ``all_predictions.tsv``. Columns::

    id  is_arg  pred_prob  arg_class  class_prob  prob
"""

from __future__ import annotations

from collections import Counter
from pathlib import Path
from typing import Any

from genorun.core.config import ParserConfig
from genorun.core.errors import ParseError
from genorun.core.logging import get_logger
from genorun.core.models import ParseResult, ResistanceHit
from genorun.parsing.scoring import normalize_confidence
from genorun.parsing.tsv import RowError, cell, parse_bool, parse_float, read_tsv, required_cell

_logger = get_logger("parser.resistance")

PREFERRED_TABLES = ("arg_predictions.tsv", "all_predictions.tsv")


def locate_resistance_table(output_dir: Path) -> Path | None:
    for name in PREFERRED_TABLES:
        candidate = output_dir / name
        if candidate.is_file():
            return candidate
    others = sorted(output_dir.glob("*.tsv"))
    return others[0] if others else None


def _hit_row(values: list[str], index: int, config: ParserConfig) -> ResistanceHit:
    pred_prob = parse_float(cell(values, 2), "pred_prob")
    return ResistanceHit(
        index=index,
        sequence_id=required_cell(values, 0, "id"),
        is_arg=parse_bool(cell(values, 1)),
        pred_prob=pred_prob,
        arg_class=cell(values, 3) or "",
        class_prob=parse_float(cell(values, 4), "class_prob"),
        prob=parse_float(cell(values, 5), "prob"),
        confidence=normalize_confidence(pred_prob, config.resistance_score_scale),
    )


def summarize_hits(hits: list[ResistanceHit] | tuple[ResistanceHit, ...]) -> dict[str, Any]:
    arg_hits = [h for h in hits if h.is_arg]
    classes = Counter(h.arg_class for h in arg_hits if h.arg_class)
    return {
        "hit_count": len(hits),
        "arg_count": len(arg_hits),
        "class_counts": dict(classes.most_common()),
    }


def parse_resistance_output(
    output_dir: Path,
    input_name: str | None = None,
    config: ParserConfig | None = None,
) -> ParseResult:
    """Parse a resistance job directory into hits and summary metrics.

    ``input_name`` is accepted for signature parity with the prophage
    parser; the predictor's file names do not depend on it.

    Raises:
        ParseError: The table had data rows but none of them parsed.
    """
    config = config or ParserConfig()
    path = locate_resistance_table(output_dir)
    if path is None:
        _logger.warning("parser.no_resistance_table", output_dir=str(output_dir))
        return ParseResult(summary=summarize_hits([]))

    table = read_tsv(path)
    hits: list[ResistanceHit] = []
    for line_no, values in table.rows:
        try:
            hits.append(_hit_row(values, len(hits) + 1, config))
        except RowError as exc:
            _logger.warning("parser.row_skipped", file=path.name, line=line_no, reason=str(exc))
    if table.rows and not hits:
        raise ParseError(f"No parsable rows in {path.name} ({len(table.rows)} data rows)")

    _logger.info("parser.resistance_parsed", file=path.name, hits=len(hits))
    return ParseResult(summary=summarize_hits(hits), hits=tuple(hits))


__all__ = ["locate_resistance_table", "parse_resistance_output", "summarize_hits"]
