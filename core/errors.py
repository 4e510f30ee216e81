"""Error kinds raised by the session broker.

Every fatal error carries the session id (when one was allocated) so the
caller can reconcile repository state after a failure.

Classes:
    BrokerError: Base class for all broker errors.
    ConfigurationError: Malformed or missing configuration.
    SessionConnectionError: Transport-level failure to connect.
    CapabilityUnsupportedError: Feature not available on a protocol variant.
    SessionNotFoundError: Unknown or already-released session id.
    ProfileNotFoundError: Unknown profile id where one was required.
    PersistenceWarning: Non-fatal profile load/save failure.
"""

from typing import Optional


class BrokerError(Exception):
    """Base class for broker errors.

    Attributes:
        session_id: Id of the session involved, or ``None`` if the
            failure happened before an id was allocated.
    """

    def __init__(
        self, message: str = "", session_id: Optional[str] = None,
    ) -> None:
        self.session_id = session_id
        self.message = message
        super().__init__(message)

    def __str__(self) -> str:
        if self.session_id:
            return f"[session {self.session_id}] {self.message}"
        return self.message


class ConfigurationError(BrokerError, ValueError):
    """Malformed or missing configuration.

    Raised before any network I/O: absent credentials, non-positive
    dimensions, duplicate session ids, unknown adapter variants.
    """


class SessionConnectionError(BrokerError, ConnectionError):
    """The adapter could not establish a protocol handle.

    The session is left in ``failed`` state.  The underlying transport
    exception is chained as ``__cause__``.
    """


class CapabilityUnsupportedError(BrokerError):
    """A requested capability is not available for the protocol variant."""

    def __init__(
        self,
        capability: str,
        variant: str,
        session_id: Optional[str] = None,
    ) -> None:
        self.capability = capability
        self.variant = variant
        super().__init__(
            f"{capability} is not supported by the {variant} adapter",
            session_id=session_id,
        )


class SessionNotFoundError(BrokerError, KeyError):
    """No live or failed session exists under the given id."""

    def __init__(self, session_id: str) -> None:
        super().__init__("session not found", session_id=session_id)


class ProfileNotFoundError(BrokerError, KeyError):
    """No profile exists under the given id."""

    def __init__(self, profile_id: str) -> None:
        self.profile_id = profile_id
        super().__init__(f"profile '{profile_id}' not found")


class PersistenceWarning(UserWarning):
    """A profile load or save failed; the surrounding operation went on."""
