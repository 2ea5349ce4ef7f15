"""Domain models for the OTM results importer.

This package contains the model classes shared by the tabular readers, the
validation/resolution services, the state stores and the database layer.
"""

from .config_models import DatabaseConfig, ImportConfig, LimitsConfig
from .field_value import BLANK, Blank, FieldValue, Invalid, Valid, ValidatedRow
from .import_plan import CommitResult, ImportPlan, PlannedRow, RowStatus
from .outcome import FlashMessage, Outcome
from .reference import ExamDescriptor, ExamKind, ExamSession, MajorAssignment, Pupil
from .result_record import ResultRecord
from .row_data import RawRow

__all__ = [
    # Configuration models
    "DatabaseConfig",
    "ImportConfig",
    "LimitsConfig",
    # Row models
    "RawRow",
    "BLANK",
    "Blank",
    "FieldValue",
    "Invalid",
    "Valid",
    "ValidatedRow",
    # Reference data
    "ExamDescriptor",
    "ExamKind",
    "ExamSession",
    "MajorAssignment",
    "Pupil",
    # Planning / results
    "CommitResult",
    "ImportPlan",
    "PlannedRow",
    "ResultRecord",
    "RowStatus",
    "FlashMessage",
    "Outcome",
]
