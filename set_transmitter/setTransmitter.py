"""
setTransmitter.py

Delivers one Security Event Token (a signed JWT) to a receiver endpoint with
timeout-bounded attempts, retries and backoff.

Basic usage:
  from set_transmitter import transmit_set
  result = transmit_set(jwt, "https://receiver.example.com/events", auth_token="secret")
  if result.ok:
      print(result.status_code, result.body)

Reusable transmitter:
  with create_transmitter(auth_token="secret", retry={"max_attempts": 5}) as tx:
      tx(jwt, url)
      tx(other_jwt, url, headers={"X-Request-ID": "abc"})

HTTP failures come back as a failed TransmitResult. Malformed input raises
ValidationError; running out of attempts without ever getting a response
raises TransmissionTimeout or NetworkError.
"""

from __future__ import annotations

import random
import threading
import time
import typing as t
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeout
from dataclasses import dataclass, field

import requests
from loguru import logger

from set_transmitter.retryPolicy import calculate_backoff, is_retryable_status, parse_retry_after, should_retry
from set_transmitter.setUtils import (
    build_headers,
    decode_body,
    is_valid_set,
    is_valid_url,
    parse_response_body,
    parse_response_headers,
)
from set_transmitter.transmitConfig import TransmitConfig, TransmitOptions, options_from_env

_CHUNK_SIZE = 8192


@dataclass(frozen=True)
class TransmitResult:
    status: t.Literal["success", "failed"]
    status_code: int
    body: t.Any
    headers: dict[str, str] = field(default_factory=dict)
    error: str | None = None
    retryable: bool | None = None

    @property
    def ok(self) -> bool:
        return self.status == "success"


@dataclass
class _LoopState:
    last_failure: TransmitResult | None = None
    last_error: TransmissionError | None = None


def transmit_set(
    jwt: str,
    url: str,
    options: TransmitOptions | None = None,
    *,
    session: requests.Session | None = None,
    sleep: t.Callable[[float], None] = time.sleep,
    rng: random.Random | None = None,
    cancel_event: threading.Event | None = None,
    **overrides: t.Any,
) -> TransmitResult:
    """
    POST a SET to ``url`` and return the outcome.

    Args:
        jwt: The signed token, header.payload.signature
        url: Absolute http(s) URL of the receiver
        options: TransmitOptions; keyword ``overrides`` (same field names) win over it
        session: requests.Session to send with; a private one is used otherwise
        sleep: Called with the backoff in seconds (ignored when cancel_event is given)
        rng: Randomness for backoff jitter
        cancel_event: When set, aborts the retry sequence at the next check

    Returns:
        TransmitResult with status "success" or "failed"

    Raises:
        ValidationError: Malformed token or URL (nothing is sent)
        TransmissionTimeout: Every attempt timed out or failed at transport level,
            the last one by timeout
        NetworkError: Same, the last one by a connection-level error
        TransmissionCancelled: cancel_event was set
    """
    if not is_valid_set(jwt):
        raise ValidationError("Invalid SET format: JWT must be in format header.payload.signature")
    if not is_valid_url(url):
        raise ValidationError(f"Invalid URL: {url}")

    if overrides:
        options = (options or TransmitOptions()).merged(TransmitOptions(**overrides))
    cfg = TransmitConfig.from_options(options)
    headers = build_headers(cfg.auth_token, cfg.headers)

    if session is not None:
        return _Transmission(jwt, url, cfg, headers, session, sleep, rng, cancel_event).run()
    with requests.Session() as own_session:
        return _Transmission(jwt, url, cfg, headers, own_session, sleep, rng, cancel_event).run()


class SetTransmitter:
    """
    Reusable, callable transmitter.

    - Holds read-only default options; each call merges its own options on
      top (headers and retry settings key by key).
    - Reuses one requests.Session across calls; closed on exit if we created it.
    """

    def __init__(
        self,
        default_options: TransmitOptions | None = None,
        *,
        session: requests.Session | None = None,
        sleep: t.Callable[[float], None] = time.sleep,
        rng: random.Random | None = None,
    ) -> None:
        self._defaults = default_options or TransmitOptions()
        # fail fast on bad defaults instead of on the first send
        TransmitConfig.from_options(self._defaults)
        self._owns_session = session is None
        self._session = session or requests.Session()
        self._sleep = sleep
        self._rng = rng

    @property
    def default_options(self) -> TransmitOptions:
        return self._defaults

    def __call__(
        self,
        jwt: str,
        url: str,
        options: TransmitOptions | None = None,
        *,
        cancel_event: threading.Event | None = None,
        **overrides: t.Any,
    ) -> TransmitResult:
        merged = self._defaults.merged(options)
        if overrides:
            merged = merged.merged(TransmitOptions(**overrides))
        return transmit_set(
            jwt,
            url,
            merged,
            session=self._session,
            sleep=self._sleep,
            rng=self._rng,
            cancel_event=cancel_event,
        )

    # Optional convenience alias
    def transmit(self, *args, **kwargs) -> TransmitResult:
        return self(*args, **kwargs)

    def close(self) -> None:
        if self._owns_session:
            self._session.close()

    def __enter__(self) -> "SetTransmitter":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


# --------------------------- Internal helpers -------------------------

class _Transmission:
    """One logical call: the attempt loop and its state."""

    def __init__(
        self,
        jwt: str,
        url: str,
        cfg: TransmitConfig,
        headers: dict[str, str],
        session: requests.Session,
        sleep: t.Callable[[float], None],
        rng: random.Random | None,
        cancel_event: threading.Event | None,
    ) -> None:
        self._jwt = jwt
        self._url = url
        self._cfg = cfg
        self._headers = headers
        self._session = session
        self._sleep = sleep
        self._rng = rng
        self._cancel_event = cancel_event

    def run(self) -> TransmitResult:
        retry = self._cfg.retry
        state = _LoopState()

        for attempt in range(1, retry.max_attempts + 1):
            self._check_cancelled()
            logger.debug(f"Transmitting SET to {self._url} (attempt {attempt}/{retry.max_attempts})")
            try:
                status_code, reason, resp_headers, text = self._dispatch()
            except _TransportFailure as e:
                state.last_error = e.error
                logger.warning(f"Attempt {attempt} to {self._url} failed: {e.error}")
                if not should_retry(None, attempt, retry):
                    logger.error(f"Max attempts ({retry.max_attempts}) exceeded for {self._url}")
                    raise e.error from e.__cause__
                self._wait(calculate_backoff(attempt, retry, rng=self._rng), attempt)
                continue

            body = parse_response_body(text, resp_headers.get("content-type"), self._cfg.parse_response)

            if self._cfg.validate_status(status_code):
                logger.debug(f"SET accepted by {self._url}: {status_code}")
                return TransmitResult(status="success", status_code=status_code, body=body, headers=resp_headers)

            failure = TransmitResult(
                status="failed",
                status_code=status_code,
                body=body,
                headers=resp_headers,
                error=f"HTTP {status_code}: {reason}",
                retryable=is_retryable_status(status_code, retry.retryable_statuses),
            )
            state.last_failure = failure
            logger.warning(f"Receiver {self._url} rejected SET: {failure.error} (attempt {attempt})")

            if not should_retry(status_code, attempt, retry):
                return failure

            retry_after_ms = parse_retry_after(resp_headers.get("retry-after"))
            self._wait(calculate_backoff(attempt, retry, retry_after_ms, rng=self._rng), attempt)

        # attempts exhausted after a response: report it as retryable
        if state.last_failure is not None:
            return TransmitResult(
                status="failed",
                status_code=state.last_failure.status_code,
                body=state.last_failure.body,
                headers=state.last_failure.headers,
                error=state.last_failure.error,
                retryable=True,
            )
        raise state.last_error or TransmissionError(
            "Failed to transmit SET after all retry attempts", retryable=True
        )

    def _dispatch(self) -> tuple[int, str, dict[str, str], str]:
        """
        Run one POST-and-read exchange against the attempt deadline.

        The exchange runs on a worker thread while this thread waits at most
        ``timeout_ms``. When the deadline wins, the exchange is cancelled: an
        open response is closed, and the worker drops whatever arrives later.
        """
        timeout_s = self._cfg.timeout_seconds
        exchange = _Exchange(self._session, self._url, self._jwt, self._headers, timeout_s)
        pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="set-dispatch")
        try:
            fut = pool.submit(exchange.run)
            try:
                return fut.result(timeout=timeout_s)
            except FuturesTimeout:
                exchange.cancel()
                logger.debug(f"Deadline of {self._cfg.timeout_ms}ms reached for {self._url}, cancelled")
                raise self._timeout() from None
            except _ExchangeTimedOut as e:
                raise self._timeout() from e.__cause__
            except requests.RequestException as e:
                raise _TransportFailure(NetworkError(f"Network error: {e}")) from e
        finally:
            # never wait on a cancelled exchange
            pool.shutdown(wait=False)

    def _timeout(self) -> _TransportFailure:
        return _TransportFailure(TransmissionTimeout("Request timed out", self._cfg.timeout_ms))

    def _wait(self, backoff_ms: int, attempt: int) -> None:
        logger.info(f"Retrying {self._url} in {backoff_ms}ms (attempt {attempt + 1})")
        seconds = backoff_ms / 1000
        if self._cancel_event is None:
            self._sleep(seconds)
        elif self._cancel_event.wait(seconds):
            raise TransmissionCancelled("Transmission cancelled while backing off")

    def _check_cancelled(self) -> None:
        if self._cancel_event is not None and self._cancel_event.is_set():
            raise TransmissionCancelled("Transmission cancelled")


class _Exchange:
    """
    One POST plus the full body read, run on a worker thread.

    It carries its own deadline too (requests' connect/read timeouts and a
    check between body chunks), so a cancelled exchange still ends promptly.
    """

    def __init__(
        self,
        session: requests.Session,
        url: str,
        jwt: str,
        headers: dict[str, str],
        timeout_s: float,
    ) -> None:
        self._session = session
        self._url = url
        self._jwt = jwt
        self._headers = headers
        self._timeout_s = timeout_s
        self._cancelled = threading.Event()
        self._lock = threading.Lock()
        self._resp: requests.Response | None = None

    def run(self) -> tuple[int, str, dict[str, str], str]:
        deadline = time.monotonic() + self._timeout_s
        try:
            resp = self._session.post(
                self._url,
                data=self._jwt.encode("utf-8"),
                headers=self._headers,
                timeout=(self._timeout_s, self._timeout_s),
                stream=True,
            )
        except requests.Timeout as e:
            raise _ExchangeTimedOut() from e
        except requests.RequestException as e:
            if time.monotonic() >= deadline:
                raise _ExchangeTimedOut() from e
            raise

        with self._lock:
            if self._cancelled.is_set():
                resp.close()
                raise _ExchangeTimedOut()
            self._resp = resp

        with resp:
            chunks: list[bytes] = []
            try:
                for chunk in resp.iter_content(chunk_size=_CHUNK_SIZE):
                    if self._cancelled.is_set() or time.monotonic() > deadline:
                        raise _ExchangeTimedOut()
                    chunks.append(chunk)
            except requests.Timeout as e:
                raise _ExchangeTimedOut() from e
            except requests.RequestException as e:
                # requests reports a streamed read timeout as ConnectionError
                if self._cancelled.is_set() or time.monotonic() >= deadline:
                    raise _ExchangeTimedOut() from e
                raise
            text = decode_body(resp, b"".join(chunks))
            return resp.status_code, resp.reason or "", parse_response_headers(resp.headers), text

    def cancel(self) -> None:
        """Stop the exchange; closes the response if headers already arrived."""
        with self._lock:
            self._cancelled.set()
            resp = self._resp
        if resp is not None:
            resp.close()


# ------------------------------ Exceptions -------------------------------

class ValidationError(ValueError):
    """Malformed token or destination; raised before anything is sent."""


class TransmissionError(Exception):
    """Base for failures that leave no usable response."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        retryable: bool = False,
        response_body: t.Any = None,
        response_headers: dict[str, str] | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.retryable = retryable
        self.response_body = response_body
        self.response_headers = response_headers


class TransmissionTimeout(TransmissionError):
    def __init__(self, message: str, timeout_ms: int) -> None:
        super().__init__(f"{message} (timeout: {timeout_ms}ms)", retryable=True)
        self.timeout_ms = timeout_ms


class NetworkError(TransmissionError):
    def __init__(self, message: str) -> None:
        super().__init__(message, retryable=True)


class TransmissionCancelled(TransmissionError):
    """The caller's cancel event fired mid-sequence."""


class _TransportFailure(Exception):
    """Internal marker wrapping the error for an attempt that got no response."""

    def __init__(self, error: TransmissionError) -> None:
        super().__init__(str(error))
        self.error = error


class _ExchangeTimedOut(Exception):
    """Internal marker: the exchange ran past its deadline or was cancelled."""


# ------------------------------ Utility functions -------------------------------

def create_transmitter(
    default_options: TransmitOptions | None = None,
    *,
    session: requests.Session | None = None,
    sleep: t.Callable[[float], None] = time.sleep,
    rng: random.Random | None = None,
    **overrides: t.Any,
) -> SetTransmitter:
    """
    Reusable transmitter closing over ``default_options``. Keyword
    ``overrides`` are TransmitOptions fields layered on top of them.
    """
    defaults = (default_options or TransmitOptions()).merged(TransmitOptions(**overrides))
    return SetTransmitter(defaults, session=session, sleep=sleep, rng=rng)


def create_transmitter_from_env() -> SetTransmitter:
    """Convenience function to create a transmitter from SET_* environment variables."""
    return SetTransmitter(options_from_env())
