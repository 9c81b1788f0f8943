"""Error recovery: classification, error log, checkpoints and batch retry."""

from issuecorpus.core.recovery.checkpoints import CheckpointManager
from issuecorpus.core.recovery.classification import classify_error, classify_error_type, classify_severity
from issuecorpus.core.recovery.database import RecoveryDB
from issuecorpus.core.recovery.error_log import ErrorLog
from issuecorpus.core.recovery.manager import RecoveryManager
from issuecorpus.core.recovery.report import REPORT_HEADER, render_recovery_report

__all__ = [
    "REPORT_HEADER",
    "CheckpointManager",
    "ErrorLog",
    "RecoveryDB",
    "RecoveryManager",
    "classify_error",
    "classify_error_type",
    "classify_severity",
    "render_recovery_report",
]
