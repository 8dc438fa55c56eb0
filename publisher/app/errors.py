"""
Failure taxonomy of the publish pipeline.

Every failure the Coordinator can report maps onto exactly one of these
types. Only ``ValidationError`` is raised before any side effect; all
others occur after the attempt has entered the uploading state.
"""


class PublishError(RuntimeError):
    """Base class for publish pipeline failures."""


class ValidationError(PublishError):
    """Raised when required publish input is missing."""


class RenderError(PublishError):
    """Raised when staging or rasterization produced no usable PDF."""


class UploadError(PublishError):
    """Raised when the storage sink rejects the PDF binary."""


class AddressResolutionError(PublishError):
    """Raised when no public URL can be obtained for an uploaded object."""


class PersistenceError(PublishError):
    """
    Raised when the record update fails after a successful upload.

    The binary remains in storage; the record is not updated.
    """


class InvalidTransitionError(RuntimeError):
    """Raised when a publish state transition is not permitted."""
