# src/issuecorpus/engine/__init__.py
"""Corpus build engine.

- CorpusPipeline: full run lifecycle (load, group, batch, score, finalize)
- pack_batches: group-preserving batch packing
- Scorer backends and the CorpusWriter for the output tables

Example:
    from issuecorpus.core import load_settings
    from issuecorpus.engine import CorpusPipeline

    settings = load_settings(Path("settings.yaml"))
    with CorpusPipeline.from_settings(settings) as pipeline:
        result = pipeline.run(resume=True)
"""

from issuecorpus.core.clock import DEFAULT_CLOCK, Clock, MockClock, SystemClock
from issuecorpus.engine.batching import pack_batches
from issuecorpus.engine.corpus import CorpusWriter
from issuecorpus.engine.orchestrator import CorpusPipeline
from issuecorpus.engine.scoring import LightweightScorer, Scorer, StandardScorer, create_scorer

__all__ = [
    "DEFAULT_CLOCK",
    "Clock",
    "CorpusPipeline",
    "CorpusWriter",
    "LightweightScorer",
    "MockClock",
    "Scorer",
    "StandardScorer",
    "SystemClock",
    "create_scorer",
    "pack_batches",
]
