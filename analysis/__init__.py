"""analysis package

Pure per-file stages that run after parsing: normalization, correlation and
timeline construction, plus the multi-file merge fold.
"""

from __future__ import annotations

from analysis.correlation import correlate
from analysis.merge import merge_all, merge_findings, merge_results
from analysis.normalizer import normalize
from analysis.timeline import build_timeline

__all__ = ["normalize", "correlate", "build_timeline", "merge_findings", "merge_results", "merge_all"]
