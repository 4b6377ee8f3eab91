"""Error taxonomy for the audit pipeline."""


class AuditError(Exception):
    """Base class for all audit errors."""


class DiscoveryFailure(AuditError):
    """Network or parse error while enumerating pages."""


class SessionInitFailure(AuditError):
    """No browser automation engine in the fallback chain could be started."""

    def __init__(self, errors: dict[str, str]):
        self.errors = dict(errors)
        detail = "; ".join(f"{name}: {err}" for name, err in self.errors.items())
        super().__init__(f"All browser engines failed to start ({detail or 'no engines configured'})")


class ScanAttemptError(AuditError):
    """A single scan attempt failed. Retried by the scanner."""


class NavigationFailure(ScanAttemptError):
    """Page could not be loaded with any wait strategy."""


class PageBlocked(NavigationFailure):
    """Loaded document is an anti-automation or error page."""


class ScanEngineInjectionFailure(ScanAttemptError):
    """axe-core could not be injected or never became ready."""


class ScanEngineError(ScanEngineInjectionFailure):
    """axe-core was injected but its run raised."""


class ScanTimeout(ScanAttemptError):
    """axe-core run did not finish within the scan timeout."""
