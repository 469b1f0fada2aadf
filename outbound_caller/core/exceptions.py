"""Error taxonomy shared by the call orchestration services."""


class OutboundCallerError(Exception):
    """Base class for all service errors."""


class ConfigError(OutboundCallerError):
    """Required credentials or configuration are missing."""


class NotFound(OutboundCallerError):
    """A lead, company, task or call session does not exist."""


class InvalidNumber(OutboundCallerError):
    """A destination number cannot be normalized to a dialable form."""


class ProviderError(OutboundCallerError):
    """The telephony provider rejected or failed a request."""


class BackendError(OutboundCallerError):
    """The generative-language backend failed or returned nothing usable."""


class BackendTimeout(BackendError):
    """The generative-language backend did not answer in time."""


class UnknownCallId(OutboundCallerError):
    """A webhook referenced a call that is not tracked locally."""

    def __init__(self, call_id: str):
        super().__init__(f"Unknown call id: {call_id}")
        self.call_id = call_id
