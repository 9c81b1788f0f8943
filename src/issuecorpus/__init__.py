"""
issuecorpus: Fault-tolerant keyword corpus construction for issue-tracker records.

Related tickets are clustered through the values they share, scored in
size-bounded batches and persisted with checkpoints so a multi-hour build
can degrade or resume instead of starting over.
"""

__version__ = "0.1.0"
