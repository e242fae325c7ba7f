#!/usr/bin/env python3
"""
Manual smoke script for set_transmitter.

Posts an example (unsigned) session-revoked SET to a receiver and reports
what came back.

Before running:
1. Optionally set environment variables:
   export SET_AUTH_TOKEN="your_receiver_token"
   export SET_TIMEOUT_MS="10000"
   export SET_MAX_ATTEMPTS="5"

2. Or pass them directly to the script:
   python send_example_set.py https://receiver.example.com/events --auth-token TOKEN --max-attempts 5
"""

import argparse
import base64
import json
import sys
import time

from loguru import logger

from set_transmitter import (
    EventTypes,
    NetworkError,
    TransmissionTimeout,
    TransmitOptions,
    ValidationError,
    create_transmitter,
    options_from_env,
)


def _b64url(data: dict) -> str:
    raw = json.dumps(data, separators=(",", ":")).encode("utf-8")
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def example_jwt(receiver_url: str) -> str:
    header = {"alg": "RS256", "kid": "key-1", "typ": "secevent+jwt"}
    payload = {
        "iss": "https://issuer.example.com",
        "aud": receiver_url,
        "iat": int(time.time()),
        "jti": f"event-{int(time.time())}",
        "events": {
            EventTypes.SESSION_REVOKED: {
                "subject": {"format": "email", "email": "user@example.com"},
                "initiating_entity": "admin",
                "reason_admin": "Security policy violation",
                "event_timestamp": int(time.time()),
            }
        },
    }
    # placeholder signature; receivers that verify will reject it
    return f"{_b64url(header)}.{_b64url(payload)}.c2lnbmF0dXJl"


def main():
    parser = argparse.ArgumentParser(description='Send an example SET to a receiver')
    parser.add_argument('url', help='Receiver endpoint URL')
    parser.add_argument('--auth-token', help='Receiver credential (or set SET_AUTH_TOKEN env var)')
    parser.add_argument('--timeout-ms', type=int, help='Per-attempt timeout in milliseconds')
    parser.add_argument('--max-attempts', type=int, help='Total attempts including the first')
    parser.add_argument('--debug', action='store_true', help='Log every attempt')
    args = parser.parse_args()

    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if args.debug else "INFO")

    try:
        cli_options = TransmitOptions(
            auth_token=args.auth_token,
            timeout_ms=args.timeout_ms,
            retry={"max_attempts": args.max_attempts} if args.max_attempts else None,
        )
        options = options_from_env().merged(cli_options)

        logger.info("Available CAEP event types:")
        for name, uri in vars(EventTypes).items():
            if not name.startswith("_"):
                logger.info(f"  {name}: {uri}")

        with create_transmitter(options, headers={"X-Request-ID": f"req-{int(time.time() * 1000)}"}) as transmit:
            logger.info(f"📤 Transmitting example SET to {args.url}...")
            result = transmit(example_jwt(args.url), args.url)

        if result.ok:
            logger.info(f"✅ Event transmitted! Status: {result.status_code}")
            logger.info(f"Response: {result.body}")
        else:
            logger.warning(f"❌ Receiver rejected the event: {result.error}")
            logger.warning(f"Response: {result.body}")
            logger.warning(f"Retryable: {result.retryable}")
            sys.exit(2)

    except ValidationError as e:
        logger.error(f"❌ Invalid input: {e}")
        logger.info("Check the receiver URL (absolute http/https)")
        sys.exit(1)

    except TransmissionTimeout as e:
        logger.error(f"❌ {e} - try increasing --timeout-ms")
        sys.exit(1)

    except NetworkError as e:
        logger.error(f"❌ {e} - check the receiver is reachable")
        sys.exit(1)

    except ValueError as e:
        logger.error(f"❌ Configuration error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
