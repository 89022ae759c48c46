# cohort_attendance/core/exceptions.py
"""
Exception taxonomy for the attendance reconciliation engine.
"""


class AttendanceError(Exception):
    """Base exception for attendance errors."""


class DurationUnresolvedError(AttendanceError):
    """
    No duration source yielded a positive value.

    Fatal for a reconciliation run: raised before any persistence happens.
    """

    def __init__(self, session_id: str, meeting_id: str):
        self.session_id = session_id
        self.meeting_id = meeting_id
        super().__init__(
            f"Could not determine meeting duration from any source "
            f"(session={session_id}, meeting={meeting_id})"
        )


class ProviderFetchError(AttendanceError):
    """
    Fetching data required for the run failed (provider or directory).

    Fatal for a reconciliation run: raised before any persistence happens.
    """


class IdentityResolutionError(ProviderFetchError):
    """The identity directory failed unexpectedly while resolving an email."""


class PersistenceWriteError(AttendanceError):
    """Writing one identity's attendance record failed."""

    def __init__(self, message: str, identity: str | None = None):
        self.identity = identity
        super().__init__(message)


class AliasConflictError(AttendanceError):
    """The alias email is already linked to a user."""


class AliasNotFoundError(AttendanceError):
    """No alias exists with the given id."""


class UserNotFoundError(AttendanceError):
    """No profile exists with the given id."""


class SessionNotFoundError(AttendanceError):
    """No session exists with the given id."""


class NoParticipantsError(AttendanceError):
    """The provider reported no participants for the meeting."""
