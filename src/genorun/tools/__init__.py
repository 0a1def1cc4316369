"""External analysis tools and the strategy registry."""

from __future__ import annotations

from collections.abc import Mapping

from genorun.core.models import AnalysisKind
from genorun.tools.arg import RESISTANCE_STRATEGY, build_resistance_command
from genorun.tools.base import AnalysisStrategy, normalize_host_path
from genorun.tools.genomad import PROPHAGE_STRATEGY, build_prophage_command


def default_strategies() -> dict[AnalysisKind, AnalysisStrategy]:
    """Fresh registry with one strategy per analysis kind."""
    return {
        AnalysisKind.PROPHAGE: PROPHAGE_STRATEGY,
        AnalysisKind.RESISTANCE: RESISTANCE_STRATEGY,
    }


def get_strategy(
    kind: AnalysisKind | str,
    strategies: Mapping[AnalysisKind, AnalysisStrategy] | None = None,
) -> AnalysisStrategy:
    """Resolve the strategy for ``kind``.

    Raises:
        ValueError: Unknown analysis kind.
    """
    registry = strategies if strategies is not None else default_strategies()
    resolved = AnalysisKind(kind)
    try:
        return registry[resolved]
    except KeyError:
        raise ValueError(f"No strategy registered for analysis kind '{resolved.value}'") from None


__all__ = [
    "AnalysisStrategy",
    "PROPHAGE_STRATEGY",
    "RESISTANCE_STRATEGY",
    "build_prophage_command",
    "build_resistance_command",
    "default_strategies",
    "get_strategy",
    "normalize_host_path",
]
