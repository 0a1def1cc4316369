"""Shared test helpers for genorun tests."""

from collections.abc import Callable
from pathlib import Path

from genorun.core.config import OrchestratorConfig
from genorun.core.models import AnalysisKind
from genorun.parsing.prophage import parse_prophage_output
from genorun.parsing.resistance import parse_resistance_output
from genorun.tools.base import AnalysisStrategy

PROVIRUS_HEADER = [
    "seq_name", "source_seq", "start", "end", "length", "n_genes",
    "v_vs_c_score", "in_seq_edge", "integrases",
]

GENE_HEADER = [
    "gene", "start", "end", "length", "strand", "gc_content", "genetic_code",
    "rbs_motif", "marker", "evalue", "bitscore", "uscg", "plasmid_hallmark",
    "virus_hallmark", "taxid", "taxname", "annotation_conjscan",
    "annotation_amr", "annotation_accessions", "annotation_description",
]

RESISTANCE_HEADER = ["id", "is_arg", "pred_prob", "arg_class", "class_prob", "prob"]


def tsv(header: list[str], rows: list[list[str]]) -> str:
    lines = ["\t".join(header)] + ["\t".join(row) for row in rows]
    return "\n".join(lines) + "\n"


def provirus_row(
    start: int,
    end: int,
    *,
    host: str = "contig_1",
    score: str = "85.0",
    edge: str = "False",
    n_genes: str = "12",
) -> list[str]:
    return [
        f"{host}|provirus_{start}_{end}", host, str(start), str(end),
        str(end - start + 1), n_genes, score, edge, "1",
    ]


def gene_row(
    region_name: str,
    ordinal: int,
    start: int,
    end: int,
    *,
    taxname: str = "Caudoviricetes",
    description: str = "terminase large subunit",
) -> list[str]:
    row = [
        f"{region_name}_{ordinal}", str(start), str(end), str(end - start + 1),
        "1", "0.45", "11", "NA", "VV000001", "1e-30", "120.5", "0", "0", "1",
        "10239", taxname, "NA", "NA", "PF03237", description,
    ]
    return row


def write_prophage_output(
    job_dir: Path,
    base: str = "genome",
    provirus_rows: list[list[str]] | None = None,
    gene_rows: list[list[str]] | None = None,
    fasta: str | None = None,
) -> Path:
    """Lay out a geNomad find_proviruses directory under ``job_dir``."""
    find_dir = job_dir / f"{base}_find_proviruses"
    find_dir.mkdir(parents=True, exist_ok=True)
    if provirus_rows is not None:
        (find_dir / f"{base}_provirus.tsv").write_text(tsv(PROVIRUS_HEADER, provirus_rows))
    if gene_rows is not None:
        (find_dir / f"{base}_provirus_genes.tsv").write_text(tsv(GENE_HEADER, gene_rows))
    if fasta is not None:
        (find_dir / f"{base}_provirus.fna").write_text(fasta)
    return find_dir


def write_resistance_output(job_dir: Path, rows: list[list[str]]) -> Path:
    job_dir.mkdir(parents=True, exist_ok=True)
    path = job_dir / "arg_predictions.tsv"
    path.write_text(tsv(RESISTANCE_HEADER, rows))
    return path


def shell_strategy(
    script: str,
    *,
    kind: AnalysisKind = AnalysisKind.PROPHAGE,
    prepare: Callable[[Path], object] | None = None,
) -> AnalysisStrategy:
    """Strategy that runs ``sh -c script`` instead of a container.

    ``prepare`` is called with the job output directory when the command
    is built, standing in for the files the real tool would write.
    """

    def build_command(
        input_path: str,
        output_dir: Path,
        parameters: dict[str, object],
        config: OrchestratorConfig,
    ) -> list[str]:
        if prepare is not None:
            prepare(output_dir)
        return ["sh", "-c", script]

    if kind == AnalysisKind.PROPHAGE:
        return AnalysisStrategy(
            kind=kind,
            display_name="Prophage Detection",
            build_command=build_command,
            parse=parse_prophage_output,
            has_regions=True,
        )
    return AnalysisStrategy(
        kind=kind,
        display_name="ARG Prediction",
        build_command=build_command,
        parse=parse_resistance_output,
    )
