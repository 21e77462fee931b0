"""Fire-and-forget webhook delivery for crowd alerts."""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor, wait
from threading import Lock
from typing import Iterable, Optional, Set

import httpx

from app.schemas import AlertPayload

logger = logging.getLogger(__name__)


class AlertDispatcher:
    """Posts alert payloads to webhook URLs on a background worker pool.

    ``dispatch`` only schedules work. Failures are logged and never reach the
    caller, so a slow or broken subscriber cannot hold up ingestion.
    """

    def __init__(
        self,
        workers: int = 4,
        timeout: float = 5.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.timeout = timeout
        self.executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="alert-delivery")
        self._transport = transport
        self._futures: Set[Future[None]] = set()
        self._futures_lock = Lock()

    def dispatch(self, urls: Iterable[str], payload: AlertPayload) -> int:
        """Schedule delivery of ``payload`` to every URL; return how many were queued."""
        body = payload.model_dump(mode="json")
        queued = 0
        for url in urls:
            try:
                future = self.executor.submit(self._deliver, url, body)
            except RuntimeError:
                logger.error(
                    "Alert delivery pool is shut down; dropping webhook",
                    extra={"sensor_id": payload.device_id, "webhook_url": url},
                )
                continue
            with self._futures_lock:
                self._futures.add(future)
            future.add_done_callback(self._clear_future)
            queued += 1
        return queued

    def drain(self, timeout: Optional[float] = None) -> None:
        """Block until every scheduled delivery has finished."""
        with self._futures_lock:
            pending = set(self._futures)
        wait(pending, timeout=timeout)

    def shutdown(self) -> None:
        self.executor.shutdown(wait=False, cancel_futures=True)

    def _clear_future(self, future: Future[None]) -> None:
        with self._futures_lock:
            self._futures.discard(future)

    def _deliver(self, url: str, body: dict) -> None:
        sensor_id = body.get("device_id")
        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                response = client.post(url, json=body)
                response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.warning(
                "Webhook rejected alert",
                extra={
                    "sensor_id": sensor_id,
                    "webhook_url": url,
                    "status_code": exc.response.status_code,
                },
            )
            return
        except httpx.HTTPError as exc:
            logger.warning(
                "Webhook delivery failed",
                extra={"sensor_id": sensor_id, "webhook_url": url, "reason": str(exc)},
            )
            return
        logger.info(
            "Webhook delivered",
            extra={
                "sensor_id": sensor_id,
                "webhook_url": url,
                "status_code": response.status_code,
            },
        )
