from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class CompactionPolicy:
    """Policy knobs for keeping the prompt within the model's context window.

    Thresholds are fractions of the effective limit
    (max_tokens - reserved_for_response).
    """

    # Compaction runs only above this share of the effective limit.
    trigger_ratio: float = 0.4
    # Above this share after summarizing, the recent window is shrunk.
    aggressive_ratio: float = 0.95
    # Shrinking stops once the result is at or below this share.
    target_ratio: float = 0.85

    # Recent non-system messages kept verbatim: max(min_recent, recent_fraction * n).
    recent_fraction: float = 0.2
    min_recent: int = 4

    # Successive fractions of the recent window retained while shrinking.
    shrink_fractions: tuple[float, ...] = (0.5, 0.35, 0.2)
    min_shrunk: int = 2

    preview_chars: int = 150
    max_excerpts: int = 8
    max_hierarchical_excerpts: int = 5

    # More than this many summaries triggers a hierarchical collapse.
    hierarchical_trigger: int = 3
    summaries_kept: int = 2
