"""Exceptions raised by the header monitor."""


class HeaderMonitorError(Exception):
    """Base class for header monitor errors."""


class FetchFailure(HeaderMonitorError):
    """The telemetry provider could not return a reading.

    Covers transport errors, timeouts and non-2xx responses. The header is
    skipped for the current cycle and its stored state is left untouched.
    """

    def __init__(self, message: str, header_id: str | None = None):
        super().__init__(message)
        self.header_id = header_id


class PersistenceFailure(HeaderMonitorError):
    """A storage write or read failed; the surrounding transaction was rolled back."""


class ConfigurationMissing(HeaderMonitorError):
    """No monitoring row exists for the requested header."""

    def __init__(self, project_id: str, header_id: str):
        super().__init__(f"No monitoring settings for header {header_id} in project {project_id}")
        self.project_id = project_id
        self.header_id = header_id
