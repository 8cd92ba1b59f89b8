"""
Error classes for coredeploy runs.

These error types decide what happens at each step boundary:
- ConfigError: Fatal before any remote call (missing credential, bad state file)
- TransientRemoteError: Safe to retry (RPC timeout, underpriced tx, nonce race)
- FatalDeployError: Retry budget exhausted, the run stops
- WiringError: Unit-scoped; fatal only for the debt token's wiring
- ResourceConfigWarning: Collateral item skipped, run continues
- VerificationError: Explorer publish failed, marker left unset

Fatal errors unwind the current phase and abort the run. Durable state is
left exactly as of the last successful step, so the next run resumes from it.
"""

from typing import Optional


class CoredeployError(Exception):
    """Base exception for coredeploy."""
    pass


class ConfigError(CoredeployError):
    """Configuration or credential problem detected before the run starts."""
    pass


class StateError(ConfigError):
    """The durable deployment state file is malformed."""
    pass


class TransientRemoteError(CoredeployError):
    """
    Transient remote failure - safe to retry.

    Examples:
    - RPC timeout or connection reset
    - Transaction underpriced / replacement fee too low
    - Nonce already used
    - Confirmation wait timed out

    The provisioner retries construction that raises this error
    within its attempt budget.
    """
    pass


class TransactionReverted(TransientRemoteError):
    """A mined transaction came back with status 0."""

    def __init__(self, tx_hash: str, message: str = "transaction reverted"):
        self.tx_hash = tx_hash
        super().__init__(f"{message} ({tx_hash})")


class FatalDeployError(CoredeployError):
    """Raised when a unit cannot be constructed within the attempt budget."""

    def __init__(self, unit: str, attempts: int, cause: Optional[BaseException] = None):
        self.unit = unit
        self.attempts = attempts
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Unable to deploy {unit} after {attempts} attempts{detail}")


class WiringError(CoredeployError):
    """Raised when a critical wiring call fails."""

    def __init__(self, unit: str, cause: Optional[BaseException] = None):
        self.unit = unit
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Wiring failed for {unit}{detail}")


class ResourceConfigWarning(CoredeployError):
    """
    Non-fatal collateral configuration problem.

    Raised for a malformed item or a missing admin role, caught by the
    configurator, logged as a warning, and the item is skipped.
    """

    def __init__(self, item: str, reason: str):
        self.item = item
        self.reason = reason
        super().__init__(f"[{item}] {reason}")


class VerificationError(CoredeployError):
    """Explorer verification failed. The unit stays unverified for a later run."""

    def __init__(self, unit: str, reason: str):
        self.unit = unit
        self.reason = reason
        super().__init__(f"Verification of {unit} failed: {reason}")
