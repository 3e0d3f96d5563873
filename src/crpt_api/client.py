"""HTTP client for the CRPT registry document API."""

from __future__ import annotations

import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from time import perf_counter
from typing import Any

import httpx
import structlog

from crpt_api.admission import AdmissionController, CancellationToken, RateLimitConfig, Timer
from crpt_api.documents import Document, document_id, serialize_document
from crpt_api.errors import HttpStatusError, TransportError

logger = structlog.get_logger(__name__)

DEFAULT_BASE_URL = "https://ismp.crpt.ru"
CREATE_DOCUMENT_PATH = "/api/v3/lk/documents/create"
JSON_CONTENT_TYPE = "application/json; charset=utf-8"

_ERROR_BODY_LIMIT = 500


@dataclass(frozen=True)
class SubmissionResult:
    """Outcome and metadata of an accepted submission."""

    status_code: int
    headers: dict[str, str]
    duration_ms: int
    wait_ms: int

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


def create_document_url(base_url: str) -> str:
    return f"{base_url.rstrip('/')}{CREATE_DOCUMENT_PATH}"


def create_document_headers(signature: str) -> dict[str, str]:
    return {
        "Content-Type": JSON_CONTENT_TYPE,
        "Signature": signature,
    }


class CrptApiClient:
    """Rate-limited submitter for registry documents.

    Thread-safe: any number of threads may call ``submit`` concurrently; the
    admission controller decides when each request may start.
    """

    def __init__(
        self,
        config: RateLimitConfig,
        *,
        base_url: str = DEFAULT_BASE_URL,
        timeout_s: float = 10.0,
        transport: httpx.BaseTransport | None = None,
        timer: Timer | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config
        self._base_url = base_url.rstrip("/")
        limits = httpx.Limits(
            max_connections=min(config.max_requests_per_window, 100),
            max_keepalive_connections=min(config.max_requests_per_window, 20),
        )
        self._http = httpx.Client(timeout=timeout_s, limits=limits, transport=transport)
        try:
            self.admission = AdmissionController(config, clock=clock, timer=timer)
        except BaseException:
            self._http.close()
            raise
        self._log = logger.bind(base_url=self._base_url)

    @classmethod
    def create(cls, config: RateLimitConfig, **kwargs: Any) -> CrptApiClient:
        return cls(config, **kwargs)

    @property
    def base_url(self) -> str:
        return self._base_url

    def submit(
        self,
        document: Document | Mapping[str, Any],
        signature: str,
        *,
        timeout: float | None = None,
        cancel: CancellationToken | None = None,
    ) -> SubmissionResult:
        """Create a document in the registry.

        The body is encoded before a permit is requested, so encoding failures
        never consume rate-limit capacity or touch the network.

        Args:
            document: Document model or JSON-ready mapping.
            signature: Value for the ``Signature`` header.
            timeout: Optional bound in seconds on waiting for a permit.
            cancel: Optional token to abandon the permit wait.

        Raises:
            SerializationError: The document cannot be encoded.
            InterruptedWait: The permit wait was cancelled or timed out.
            TransportError: The request failed at the network level.
            HttpStatusError: The registry answered with a non-2xx status.
        """
        body = serialize_document(document)
        request = self._http.build_request(
            "POST",
            create_document_url(self._base_url),
            content=body,
            headers=create_document_headers(signature),
        )
        doc_id = document_id(document)
        self._log.debug("document_serialized", doc_id=doc_id, body=body.decode("utf-8"))

        with self.admission.permit(timeout=timeout, cancel=cancel) as waited:
            started = perf_counter()
            try:
                response = self._http.send(request)
            except httpx.HTTPError as exc:
                self._log.warning("document_submit_transport_error", doc_id=doc_id, error=str(exc))
                raise TransportError(
                    f"{CREATE_DOCUMENT_PATH} failed with transport error: {exc}"
                ) from exc
            try:
                status_code = response.status_code
                if not response.is_success:
                    excerpt = response.text[:_ERROR_BODY_LIMIT]
                    self._log.warning(
                        "document_submit_rejected", doc_id=doc_id, status=status_code
                    )
                    raise HttpStatusError(status_code, excerpt)
                headers = dict(response.headers)
            finally:
                response.close()
            duration_ms = int((perf_counter() - started) * 1000)

        self._log.info(
            "document_submitted",
            doc_id=doc_id,
            status=status_code,
            duration_ms=duration_ms,
        )
        return SubmissionResult(
            status_code=status_code,
            headers=headers,
            duration_ms=duration_ms,
            wait_ms=int(waited * 1000),
        )

    def shutdown(self) -> None:
        """Stop the background refill; in-flight calls are left to finish."""
        self.admission.stop()

    def close(self) -> None:
        self.shutdown()
        self._http.close()

    def __enter__(self) -> CrptApiClient:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
