"""
Errors raised by the collateral manager and its collaborators.

Every rejection derives from ValidationError. A rejected operation has no
effect on the ledger.
"""


class ValidationError(Exception):
    """Raised when an operation is rejected."""
    pass


# ------------------------------------------------------------------ #
# Configuration
# ------------------------------------------------------------------ #
class ConfigurationError(ValidationError):
    """Unknown or unusable collateral configuration"""
    pass

class UnknownCollateral(ConfigurationError):
    """Symbol was never added"""
    pass

class CollateralExists(ConfigurationError):
    """Symbol is already registered and enabled"""
    pass

class CollateralDisabled(ConfigurationError):
    """Collateral type is disabled"""
    pass

class InvalidParameter(ConfigurationError):
    """A configuration value is out of range"""
    pass

class ReserveNotSet(ConfigurationError):
    """No reserve account has been registered"""
    pass


class InvalidAmount(ValidationError):
    """Negative amount, or supplied native funds do not match the deposit"""
    pass


# ------------------------------------------------------------------ #
# Solvency
# ------------------------------------------------------------------ #
class SolvencyError(ValidationError):
    """Operation would break a vault's coverage or overdraw it"""
    pass

class InsufficientCollateral(SolvencyError):
    pass

class BurnExceedsDebt(SolvencyError):
    pass

class WithdrawExceedsCollateral(SolvencyError):
    pass

class WouldBeUndercollateralized(SolvencyError):
    pass

class VaultIsSafe(SolvencyError):
    """Liquidation target still meets its minimum ratio"""
    pass


# ------------------------------------------------------------------ #
# Oracle
# ------------------------------------------------------------------ #
class OracleError(ValidationError):
    """Price feed could not be used"""
    pass

class InvalidPrice(OracleError):
    """Reported price is zero or negative"""
    pass

class StalePrice(InvalidPrice):
    """Reported price is older than the configured maximum age"""
    pass

class UnknownPriceFeed(OracleError):
    pass


# ------------------------------------------------------------------ #
# Transfers
# ------------------------------------------------------------------ #
class TransferError(ValidationError):
    """Underlying asset movement failed"""
    pass

class TransferFailed(TransferError):
    """External asset transfer failed"""
    pass

class NativeTransferFailed(TransferError):
    """Native asset transfer failed"""
    pass

class InsufficientBalance(TransferError):
    """Stable-unit balance too low for a burn or transfer"""
    pass


# ------------------------------------------------------------------ #
# Authorization
# ------------------------------------------------------------------ #
class AuthorizationError(ValidationError):
    pass

class Unauthorized(AuthorizationError):
    """Caller lacks the owner or minter capability"""
    pass


# ------------------------------------------------------------------ #
# State
# ------------------------------------------------------------------ #
class StateError(ValidationError):
    pass

class SystemHalted(StateError):
    """Operations are halted (paused or breaker tripped)"""
    pass

class NotHalted(StateError):
    """Emergency withdrawal attempted while the system is running"""
    pass

class MigrationDisabled(StateError):
    pass

class EmptyVault(StateError):
    pass

class MigrationFailed(StateError):
    """Successor did not accept the vault"""
    pass

class ReentrantCall(StateError):
    """A state-changing entry point was entered while another was running"""
    pass
