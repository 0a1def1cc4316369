"""Parser for geNomad prophage detection output.

Output layout inside a job directory (``<base>`` is the input filename
without its FASTA extension)::

    <jobDir>/<base>_find_proviruses/<base>_provirus.tsv
    <jobDir>/<base>_find_proviruses/<base>_provirus_genes.tsv
    <jobDir>/<base>_find_proviruses/<base>_provirus.fna
    <jobDir>/<base>_summary/<base>_virus_summary.tsv   (fallback table)

Rows that violate the column contract are logged and skipped. A table
that has data rows none of which parse raises ``ParseError``.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any

from genorun.core.config import ParserConfig
from genorun.core.errors import ParseError
from genorun.core.logging import get_logger
from genorun.core.models import Gene, ParseResult, ResultRegion
from genorun.parsing.scoring import COMPLETE, classify_completeness, normalize_confidence
from genorun.parsing.tsv import (
    RowError,
    TsvTable,
    cell,
    parse_bool,
    parse_float,
    parse_int,
    read_tsv,
    required_cell,
    required_int,
)

_logger = get_logger("parser.prophage")

_FASTA_SUFFIX = re.compile(r"\.(fna|fasta|fa)$", re.IGNORECASE)

FIND_PROVIRUSES_SUFFIX = "_find_proviruses"
SUMMARY_SUFFIX = "_summary"

# Gene table: fixed leading columns, then a taxonomy window
_GENE_TAXONOMY_COLUMNS = range(13, 18)
_GENE_FIXED_COLUMNS = 13


def genome_base_name(input_name: str) -> str:
    """Strip the directory and FASTA extension from an input filename."""
    name = input_name.replace("\\", "/").rsplit("/", 1)[-1]
    return _FASTA_SUFFIX.sub("", name)


@dataclass(frozen=True)
class ProphageLayout:
    """Resolved locations of one job's prophage output files."""

    base_name: str
    provirus_table: Path | None
    genes_table: Path | None
    sequences: Path | None
    virus_summary_table: Path | None

    @classmethod
    def locate(cls, output_dir: Path, input_name: str | None = None) -> ProphageLayout:
        """Find the output files, falling back to any run subdirectory."""
        base = genome_base_name(input_name) if input_name else None
        find_dir = output_dir / f"{base}{FIND_PROVIRUSES_SUFFIX}" if base else None

        if find_dir is None or not find_dir.is_dir():
            candidates = sorted(
                p for p in output_dir.glob(f"*{FIND_PROVIRUSES_SUFFIX}") if p.is_dir()
            )
            if candidates:
                find_dir = candidates[0]
                base = find_dir.name[: -len(FIND_PROVIRUSES_SUFFIX)]
                _logger.debug("layout.fallback_dir", directory=str(find_dir))

        provirus = genes = sequences = None
        if find_dir is not None and find_dir.is_dir():
            provirus = _existing(find_dir / f"{base}_provirus.tsv")
            if provirus is None:
                matches = sorted(find_dir.glob("*_provirus.tsv"))
                provirus = matches[0] if matches else None
            genes = _existing(find_dir / f"{base}_provirus_genes.tsv")
            sequences = _existing(find_dir / f"{base}_provirus.fna")

        summary = None
        if base:
            summary = _existing(output_dir / f"{base}{SUMMARY_SUFFIX}" / f"{base}_virus_summary.tsv")
        if summary is None:
            matches = sorted(output_dir.glob(f"*{SUMMARY_SUFFIX}/*_virus_summary.tsv"))
            summary = matches[0] if matches else None

        return cls(
            base_name=base or "",
            provirus_table=provirus,
            genes_table=genes,
            sequences=sequences,
            virus_summary_table=summary,
        )


def _existing(path: Path) -> Path | None:
    return path if path.is_file() else None


# ─── Row parsers ──────────────────────────────────────────────────────


def _provirus_row(values: list[str], index: int, config: ParserConfig) -> ResultRegion:
    # seq_name, source_seq, start, end, length, n_genes, v_vs_c_score, in_seq_edge, integrases
    seq_name = required_cell(values, 0, "seq_name")
    source_seq = required_cell(values, 1, "source_seq")
    start = required_int(values, 2, "start")
    end = required_int(values, 3, "end")
    length = required_int(values, 4, "length")
    if end < start:
        raise RowError(f"end {end} is before start {start}")
    n_genes = parse_int(cell(values, 5), "n_genes") or 0
    score = parse_float(cell(values, 6), "v_vs_c_score") or 0.0
    in_edge = parse_bool(cell(values, 7))
    return ResultRegion(
        region_index=index,
        seq_name=seq_name,
        source_seq=source_seq,
        start=start,
        end=end,
        length=length,
        score=score,
        confidence=normalize_confidence(score, config.provirus_score_scale),
        completeness=classify_completeness(length, in_edge, config.complete_length_threshold),
        gene_count=n_genes,
        in_seq_edge=in_edge,
        integrases=cell(values, 8) or "",
    )


def _virus_summary_row(values: list[str], index: int, config: ParserConfig) -> ResultRegion:
    # seq_name, start, end, length, topology, n_genes, genetic_code, virus_score
    seq_name = required_cell(values, 0, "seq_name")
    start = required_int(values, 1, "start")
    end = required_int(values, 2, "end")
    length = required_int(values, 3, "length")
    if end < start:
        raise RowError(f"end {end} is before start {start}")
    n_genes = parse_int(cell(values, 5), "n_genes") or 0
    score = parse_float(cell(values, 7), "virus_score") or 0.0
    return ResultRegion(
        region_index=index,
        seq_name=seq_name,
        source_seq=seq_name.split("|provirus_")[0],
        start=start,
        end=end,
        length=length,
        score=score,
        confidence=normalize_confidence(score, config.virus_summary_score_scale),
        completeness=classify_completeness(length, False, config.complete_length_threshold),
        gene_count=n_genes,
    )


def _is_numeric(value: str) -> bool:
    try:
        float(value)
    except ValueError:
        return False
    return True


def _pick_taxname(values: list[str]) -> str:
    """Longest usable token in the taxonomy window, or empty."""
    best = ""
    for i in _GENE_TAXONOMY_COLUMNS:
        value = cell(values, i)
        if value is None or _is_numeric(value):
            continue
        if len(value) > len(best):
            best = value
    return best


def _gene_row(values: list[str], table: TsvTable) -> Gene:
    # gene, start, end, length, strand, gc_content, ...
    gene_id = required_cell(values, 0, "gene")
    start = required_int(values, 1, "start")
    end = required_int(values, 2, "end")
    strand = required_int(values, 4, "strand")

    accessions_idx = table.column_index("annotation_accessions")
    description_idx = table.column_index("annotation_description")
    if description_idx is None and len(values) > _GENE_FIXED_COLUMNS + 1:
        description_idx = len(values) - 1
        accessions_idx = len(values) - 2

    description = cell(values, description_idx) if description_idx is not None else None
    accessions = cell(values, accessions_idx) if accessions_idx is not None else None
    return Gene(
        gene_id=gene_id,
        start=start,
        end=end,
        strand=strand,
        length=parse_int(cell(values, 3), "length"),
        gc_content=parse_float(cell(values, 5), "gc_content"),
        annotation=description or "unannotated",
        annotation_accessions=accessions or "",
        taxname=_pick_taxname(values),
    )


_RowParser = Callable[[list[str], int, ParserConfig], ResultRegion]


def _parse_regions(table: TsvTable, row_parser: _RowParser, config: ParserConfig) -> list[ResultRegion]:
    regions: list[ResultRegion] = []
    for line_no, values in table.rows:
        try:
            regions.append(row_parser(values, len(regions) + 1, config))
        except RowError as exc:
            _logger.warning(
                "parser.row_skipped",
                file=table.path.name,
                line=line_no,
                reason=str(exc),
            )
    if table.rows and not regions:
        raise ParseError(
            f"No parsable rows in {table.path.name} ({len(table.rows)} data rows)"
        )
    return regions


def parse_gene_table(path: Path) -> list[Gene]:
    """Parse the provirus genes table. Bad rows are skipped."""
    table = read_tsv(path)
    genes: list[Gene] = []
    for line_no, values in table.rows:
        try:
            genes.append(_gene_row(values, table))
        except RowError as exc:
            _logger.warning("parser.gene_row_skipped", file=path.name, line=line_no, reason=str(exc))
    return genes


def attach_genes(regions: list[ResultRegion], genes: list[Gene]) -> list[ResultRegion]:
    """Return regions with their genes attached.

    A gene id is ``<region seq_name>_<ordinal>``, so the part before the
    last underscore must equal the region's name-plus-coordinates prefix.
    Genes that match no region are dropped.
    """
    by_prefix: dict[str, list[Gene]] = {}
    for gene in genes:
        by_prefix.setdefault(gene.gene_id.rsplit("_", 1)[0], []).append(gene)

    attached: list[ResultRegion] = []
    matched = 0
    for region in regions:
        region_genes = by_prefix.get(region.gene_prefix, [])
        matched += len(region_genes)
        attached.append(replace(region, genes=tuple(region_genes)))
    if matched < len(genes):
        _logger.debug("parser.genes_unmatched", count=len(genes) - matched)
    return attached


def summarize_regions(regions: list[ResultRegion] | tuple[ResultRegion, ...]) -> dict[str, Any]:
    """Summary metrics of a prophage run."""
    count = len(regions)
    total_length = sum(r.length for r in regions)
    return {
        "total_sequence_length": max((r.end for r in regions), default=0),
        "region_count": count,
        "complete_count": sum(1 for r in regions if r.completeness == COMPLETE),
        "total_region_length": total_length,
        "mean_region_length": round(total_length / count, 1) if count else 0.0,
        "mean_score": round(sum(r.score for r in regions) / count, 4) if count else 0.0,
        "total_genes": sum(r.gene_count for r in regions),
    }


def parse_prophage_output(
    output_dir: Path,
    input_name: str | None = None,
    config: ParserConfig | None = None,
    *,
    include_genes: bool = True,
) -> ParseResult:
    """Parse a prophage job directory into regions and summary metrics.

    Uses the provirus table when present, else the virus summary table.
    With neither the result is empty.

    Raises:
        ParseError: A table had data rows but none of them parsed.
    """
    config = config or ParserConfig()
    layout = ProphageLayout.locate(output_dir, input_name)

    if layout.provirus_table is not None:
        table = read_tsv(layout.provirus_table)
        regions = _parse_regions(table, _provirus_row, config)
        source = "provirus"
    elif layout.virus_summary_table is not None:
        table = read_tsv(layout.virus_summary_table)
        regions = _parse_regions(table, _virus_summary_row, config)
        source = "virus_summary"
    else:
        _logger.warning("parser.no_prophage_table", output_dir=str(output_dir))
        return ParseResult(summary={**summarize_regions([]), "source_table": None})

    if include_genes and layout.genes_table is not None and regions:
        regions = attach_genes(regions, parse_gene_table(layout.genes_table))

    summary = summarize_regions(regions)
    summary["source_table"] = source
    _logger.info(
        "parser.prophage_parsed",
        source=source,
        regions=len(regions),
        skipped=len(table.rows) - len(regions),
    )
    return ParseResult(summary=summary, regions=tuple(regions))


def read_region_sequence(
    output_dir: Path,
    seq_name: str,
    input_name: str | None = None,
) -> str | None:
    """Nucleotide sequence of ``seq_name`` from the provirus FASTA, if present."""
    layout = ProphageLayout.locate(output_dir, input_name)
    if layout.sequences is None:
        return None
    chunks: list[str] = []
    in_target = False
    with open(layout.sequences, encoding="utf-8", errors="replace") as f:
        for line in f:
            if line.startswith(">"):
                if in_target:
                    break
                header = line[1:].split()
                in_target = bool(header) and header[0] == seq_name
            elif in_target:
                chunks.append(line.strip())
    return "".join(chunks) or None


__all__ = [
    "ProphageLayout",
    "attach_genes",
    "genome_base_name",
    "parse_gene_table",
    "parse_prophage_output",
    "read_region_sequence",
    "summarize_regions",
]
