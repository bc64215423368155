"""Exception types raised by frag-probe components."""


class FragProbeError(Exception):
    """Base class for frag-probe errors."""


class FundingError(FragProbeError):
    """Raised when an airdrop cannot be requested, sent or confirmed."""


class RegistryError(FragProbeError):
    """Raised when the gateway registry returns an error or malformed result."""


class WalletNotReadyError(FragProbeError):
    """Raised when an operation needs a funded wallet that does not exist yet."""
