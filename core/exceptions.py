"""Exceptions raised by Concord components."""


class ConcordError(Exception):
    """Base exception for all Concord errors."""

    pass


class ConfigurationError(ConcordError):
    """Raised when a run configuration is invalid. Fatal at startup."""

    pass


class CollectiveError(ConcordError):
    """Base exception for collective communication failures."""

    pass


class LengthMismatchError(CollectiveError):
    """Raised when vectors in one operation have inconsistent lengths."""

    pass


class EmptyInputError(CollectiveError):
    """Raised when an aggregation receives no contributions."""

    pass


class ProtocolMismatchError(CollectiveError):
    """Raised when group members disagree on the operation of a round."""

    pass


class UnknownMemberError(CollectiveError):
    """Raised when a caller is not a member of the group it addresses."""

    pass


class GroupClosedError(CollectiveError):
    """Raised when a group is closed while a call is pending."""

    pass


class MemberTimeoutError(CollectiveError):
    """Raised when a round deadline expires before every member arrived."""

    def __init__(self, message: str, missing_members=None):
        super().__init__(message)
        self.missing_members = sorted(missing_members or [])
