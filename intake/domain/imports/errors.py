"""
Exceptions raised by the import engine.

Only run-aborting conditions are raised. Row-level problems (coercion,
entity resolution, insert failures) are collected as ``RowValidationError``
entries on the run result instead.
"""
from typing import List, Optional, Sequence


class ImportEngineError(Exception):
    """Base class for every error the engine raises."""


class HeaderRecognitionError(ImportEngineError):
    """The sheet's header could not be matched well enough to import it."""

    def __init__(
        self,
        mapped_count: int,
        populated_count: int,
        missing_required: Sequence[str],
        header_row_index: Optional[int] = None,
        message: Optional[str] = None,
    ):
        self.mapped_count = mapped_count
        self.populated_count = populated_count
        self.missing_required: List[str] = list(missing_required)
        self.header_row_index = header_row_index
        rate = (mapped_count / populated_count) if populated_count else 0.0
        self.recognition_rate = rate
        self.message = message or (
            f"Header recognition failed: {mapped_count} of {populated_count} populated header "
            f"cells mapped ({rate:.0%}). Missing required fields: "
            f"{', '.join(self.missing_required) or 'none'}"
        )
        super().__init__(self.message)


class MissingRequiredFieldsError(HeaderRecognitionError):
    """The accepted mapping does not cover every required field of the profile."""


class UnknownProfileError(ImportEngineError):
    def __init__(self, profile_name: str, available: Sequence[str]):
        self.profile_name = profile_name
        self.available = list(available)
        super().__init__(
            f"Unknown import profile '{profile_name}'. Available profiles: {', '.join(self.available)}"
        )


class InvalidTransitionError(ImportEngineError):
    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"Import run cannot move from '{current}' to '{target}'")


class SheetReadError(ImportEngineError):
    """The uploaded file could not be read as a spreadsheet."""
