"""
Error taxonomy shared by the Keycloak clients, the member store and the
reconciliation engine.

The Keycloak clients never raise these for upstream problems; they return
them inside result objects. The reconciliation engine raises them and the
router maps ``status_code`` to the HTTP response.
"""


class MitgliederError(Exception):
    """Base exception for member administration errors."""

    status_code: int = 500

    def __init__(self, message: str, upstream_status: int | None = None):
        self.message = message
        self.upstream_status = upstream_status
        super().__init__(message)

    def __repr__(self) -> str:
        if self.upstream_status is not None:
            return f"{type(self).__name__}({self.message!r}, upstream_status={self.upstream_status})"
        return f"{type(self).__name__}({self.message!r})"


class ConfigIncomplete(MitgliederError):
    """A required setting (Keycloak credentials, placeholder domain) is missing."""

    status_code = 502


class UpstreamUnavailable(MitgliederError):
    """Token or network failure while talking to Keycloak."""

    status_code = 502


class UpstreamConflict(MitgliederError):
    """Keycloak reports that the resource already exists."""

    status_code = 502


class UpstreamRejected(MitgliederError):
    """Any other non-success Keycloak status."""

    status_code = 502


class LocalConflict(MitgliederError):
    """Uniqueness violation in the local member store."""

    status_code = 409


class LocalFailure(MitgliederError):
    """Any other local store error."""

    status_code = 500


class NotFound(MitgliederError):
    """Requested record does not exist."""

    status_code = 404


class InvalidInput(MitgliederError):
    """Request payload cannot be used."""

    status_code = 400
