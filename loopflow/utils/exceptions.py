"""
Custom exception hierarchy for LoopFlow.

Only structural failures and bad caller input are raised. Missing records,
duplicates, conflicts and per-record problems are reported as data in the
result models instead.
All exceptions inherit from LoopFlowError for easy catching.
"""


class LoopFlowError(Exception):
    """
    Base exception for all LoopFlow errors.
    All custom exceptions should inherit from this class.
    """

    def __init__(self, message: str, context: dict | None = None):
        """
        Initialize LoopFlow error.
        Args:
            message: Error message
            context: Optional context dictionary with additional error details
        """
        super().__init__(message)
        self.message = message
        self.context = context or {}


class StoreError(LoopFlowError):
    """
    Storage operation errors.
    Raised when the record store cannot complete a read or write.
    """

    pass


class ValidationError(LoopFlowError):
    """
    Validation errors.
    Raised when caller input or a bundle is malformed.
    """

    def __init__(
        self,
        message: str,
        errors: list[dict] | None = None,
        context: dict | None = None,
    ):
        """
        Initialize validation error.
        Args:
            message: Error message
            errors: Field-level errors, each {"field", "message", "record_id"?}
            context: Optional context dictionary
        """
        super().__init__(message, context)
        self.errors = errors or []


class BundleVersionError(ValidationError):
    """
    Unrecognized export bundle version.
    Bundles with unknown versions are rejected, never guessed at.
    """

    pass


class ConfigurationError(LoopFlowError):
    """
    Configuration errors.
    Raised when configuration is invalid or missing required values.
    """

    pass


class UpgradeError(LoopFlowError):
    """
    Structural upgrade errors.
    Raised when a precondition for a whole upgrade step does not hold.
    """

    pass


class BackupError(UpgradeError):
    """
    Backup errors.
    Raised when the pre-upgrade backup cannot be written or restored.
    """

    pass
