class HifError(Exception):
    """Base class for failures that abort an analysis run."""


class LoadError(HifError):
    """Input spreadsheet is missing, unreadable, or lacks required columns."""


class FitError(HifError):
    """Model is structurally invalid or the smoothing fit did not produce a finite solution."""


class IntegrationError(HifError):
    """Time grid handed to the integrator is degenerate or not strictly increasing."""
