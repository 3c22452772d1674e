"""
Exception hierarchy for the capture pipeline.

Transient errors are the only ones the job runner retries. Everything
else either fails the capture or is rejected before a row exists.
"""


class EmberError(Exception):
    """Base class for all pipeline errors."""


class CaptureValidationError(EmberError):
    """Submitted payload has the wrong shape or size. No capture is created."""


class AdmissionRejectedError(EmberError):
    """The admission counter refused a new capture for this profile."""


class CaptureNotFoundError(EmberError):
    """Capture does not exist or is not visible in the current tenant scope."""


class ExtractionError(EmberError):
    """Base class for extraction adapter failures."""


class TransientExtractionError(ExtractionError):
    """Timeout, rate limit or 5xx from the extraction service. Retryable."""


class PermanentExtractionError(ExtractionError):
    """The service answered with something the pipeline cannot use."""


class TenantScopeError(EmberError):
    """Tenant-scoped data was touched without an established scope."""


class TenantViolationError(EmberError):
    """A write targeted a row owned by a different profile."""
