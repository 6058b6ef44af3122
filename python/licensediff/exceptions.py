"""Exception types for licensediff."""


class LicenseDiffError(Exception):
    """Base class for all licensediff errors."""


class ConfigurationError(LicenseDiffError):
    """Invalid or missing configuration. Aborts the whole run."""


class MetadataNotFoundError(LicenseDiffError):
    """No local metadata exists for a package."""

    def __init__(self, message: str, path=None):
        super().__init__(message)
        self.path = path


class MalformedMetadataError(LicenseDiffError):
    """Local metadata exists but could not be read or parsed."""


class VcsError(LicenseDiffError):
    """A git clone or checkout failed."""


class CollectorError(LicenseDiffError):
    """A package manager could not list the dependencies of a project."""
