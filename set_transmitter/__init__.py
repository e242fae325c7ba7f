"""
SET Transmitter - deliver Security Event Tokens over HTTP.

A small, robust transmitter for signed Security Event Tokens with:
- Structural validation of the token and receiver URL
- Bearer authorization and overridable protocol headers
- Per-attempt timeouts, retries and exponential backoff with jitter
- Retry-After support for rate-limited receivers

Basic usage:
    from set_transmitter import transmit_set

    result = transmit_set(jwt, "https://receiver.example.com/events", auth_token="secret")
    if result.ok:
        print("delivered", result.status_code)
    else:
        print("rejected", result.error, "retryable:", result.retryable)
"""

__version__ = "0.1.0"

from .transmitConfig import EventTypes, RetryConfig, TransmitConfig, TransmitOptions, options_from_env
from .setUtils import is_valid_set
from .setTransmitter import (
    NetworkError,
    SetTransmitter,
    TransmissionCancelled,
    TransmissionError,
    TransmissionTimeout,
    TransmitResult,
    ValidationError,
    create_transmitter,
    create_transmitter_from_env,
    transmit_set,
)

__all__ = [
    "transmit_set",
    "create_transmitter",
    "create_transmitter_from_env",
    "SetTransmitter",
    "TransmitResult",
    "TransmitOptions",
    "TransmitConfig",
    "RetryConfig",
    "EventTypes",
    "options_from_env",
    "is_valid_set",
    "TransmissionError",
    "TransmissionTimeout",
    "NetworkError",
    "TransmissionCancelled",
    "ValidationError",
    "__version__",
]
