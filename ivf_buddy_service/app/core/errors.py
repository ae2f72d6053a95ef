"""Exceptions raised by the IVF Buddy service."""


class IvfBuddyError(Exception):
    """Base exception for all service errors."""
    pass


# Lookup errors: abort the operation with no state change

class NotFoundError(IvfBuddyError, LookupError):
    """A referenced record does not exist."""
    pass


class ProtocolNotFoundError(NotFoundError):
    pass


class CycleNotFoundError(NotFoundError):
    pass


class TaskNotFoundError(NotFoundError):
    pass


class UserNotFoundError(NotFoundError):
    pass


class IntakeNotFoundError(NotFoundError):
    pass


# Input errors: rejected at the normalization boundary

class ProtocolValidationError(IvfBuddyError, ValueError):
    """Protocol input that would produce a wrong schedule."""
    pass


class IntakeStateError(IvfBuddyError):
    """Intake workflow is not at the step the request expects."""
    pass


# Delivery errors: isolated per task and per channel

class ChannelError(IvfBuddyError, RuntimeError):
    pass


class SmsProviderError(ChannelError):
    pass


class LLMError(IvfBuddyError, RuntimeError):
    """Reply model failed: timeout, HTTP error or unusable JSON."""
    pass
