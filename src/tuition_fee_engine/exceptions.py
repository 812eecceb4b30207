class FeeEngineError(Exception):
    """Base class for everything the fee engine raises on purpose."""


class InvariantViolation(FeeEngineError):
    """
    An amount broke one of the schedule invariants.

    Raised for negative inputs, negative payable amounts and scholarship
    allocations that exceed what was granted. These are programming errors:
    presentation code may clamp, the engine never does.
    """


class UnknownVerificationStatus(FeeEngineError, ValueError):
    """A transaction record carried a verification status we do not model."""


class InvalidPaymentPlan(FeeEngineError, ValueError):
    """A payment plan string is not one of the supported plans."""
