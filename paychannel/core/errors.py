"""
Error taxonomy for the payment channel core.

ConfigurationError is fatal and never retried. ExternalServiceError is
normally recovered by a fallback provider and only escapes once every
fallback is exhausted. DataUnavailable is the one error callers should retry.
"""


class PaymentCoreError(Exception):
    retryable = False


class ConfigurationError(PaymentCoreError):
    """Missing or invalid master seed, encryption key, or chain configuration."""


class UnsupportedChainError(ConfigurationError):
    def __init__(self, chain_type):
        super().__init__(f"Unsupported cryptocurrency: {chain_type}")
        self.chain_type = chain_type


class ExternalServiceError(PaymentCoreError):
    """A price feed, fee API or chain RPC failed."""


class AllocationConflict(PaymentCoreError):
    """The store rejected an allocation that would duplicate an index or address."""


class ChannelCreationFailed(PaymentCoreError):
    pass


class DataUnavailable(PaymentCoreError):
    retryable = True


class ChannelNotFound(PaymentCoreError):
    def __init__(self, channel_id: str):
        super().__init__(f"Payment channel not found: {channel_id}")
        self.channel_id = channel_id


class InvalidStatusTransition(PaymentCoreError):
    def __init__(self, channel_id: str, current: str, requested: str):
        super().__init__(f"Channel {channel_id} cannot move from {current} to {requested}")
        self.channel_id = channel_id
        self.current = current
        self.requested = requested


class UsernameInUse(PaymentCoreError):
    def __init__(self, username: str, channel_id: str, status: str):
        super().__init__(f'Account "{username}" is already being processed')
        self.username = username
        self.channel_id = channel_id
        self.status = status
