from __future__ import annotations


class ImportPipelineError(Exception):
    """Base class for failures that stop an import before commit."""


class UnreadableWorkbookError(ImportPipelineError, ValueError):
    pass


class LegacyWorkbookError(UnreadableWorkbookError):
    pass


class SettingsSheetNotFoundError(ImportPipelineError, ValueError):
    def __init__(self, available_sheets: list[str]) -> None:
        self.available_sheets = list(available_sheets)
        listed = ", ".join(self.available_sheets) if self.available_sheets else "[none]"
        super().__init__(f"Couldn't find a Settings sheet. Available sheets: {listed}")


class NoSectionsError(ImportPipelineError):
    pass


class InvalidTransitionError(ImportPipelineError):
    pass
