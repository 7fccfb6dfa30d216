"""Outbound mail — transports and the post-commit dispatcher.

Learn: Sending mail is a best-effort side effect that happens *after*
the database transaction committed. The request handler only enqueues;
MailDispatcher runs each send as a background asyncio task with its own
retry policy:

  attempt → ok                         → done
          → MailTransportError(transient) → sleep(backoff * 2^n) → retry
          → MailTransportError(permanent) → give up, log
          → attempts exhausted          → give up, log

Nothing here can roll back or block the signup that triggered it. A
user whose mail never arrived asks for a resend.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx
import structlog

logger = structlog.get_logger()

TEMPLATE_VERIFY_EMAIL = "verify_email"


class MailTransportError(Exception):
    """Raised by a transport; `transient` decides whether to retry."""

    def __init__(self, message: str, transient: bool):
        super().__init__(message)
        self.transient = transient


class MailTransport:
    """Interface: send(address, template_id, payload) or raise MailTransportError."""

    async def send(self, address: str, template_id: str, payload: dict[str, Any]) -> None:
        raise NotImplementedError

    async def aclose(self) -> None:
        pass


class LogMailTransport(MailTransport):
    """Development transport — logs the message instead of sending it."""

    async def send(self, address: str, template_id: str, payload: dict[str, Any]) -> None:
        logger.info(
            "mail.logged",
            to=address,
            template=template_id,
            fields=sorted(payload),
        )


class HttpMailTransport(MailTransport):
    """POSTs messages to an HTTP mail API (JSON body, bearer auth).

    5xx responses, timeouts and connection errors are TRANSIENT;
    any other non-2xx response is PERMANENT.
    """

    def __init__(
        self,
        api_url: str,
        api_key: str = "",
        sender: str = "",
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_url = api_url
        self.sender = sender
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._client = client or httpx.AsyncClient(timeout=timeout, headers=headers)

    async def send(self, address: str, template_id: str, payload: dict[str, Any]) -> None:
        body = {
            "from": self.sender,
            "to": address,
            "template": template_id,
            "data": payload,
        }
        try:
            resp = await self._client.post(self.api_url, json=body)
        except (httpx.TimeoutException, httpx.TransportError) as e:
            raise MailTransportError(f"mail API unreachable: {type(e).__name__}", transient=True)

        if resp.status_code >= 500 or resp.status_code == 429:
            raise MailTransportError(f"mail API returned {resp.status_code}", transient=True)
        if resp.status_code >= 400:
            raise MailTransportError(f"mail API rejected message: {resp.status_code}", transient=False)

    async def aclose(self) -> None:
        await self._client.aclose()


@dataclass
class MailJob:
    address: str
    template_id: str
    payload: dict[str, Any] = field(default_factory=dict)
    attempts: int = 0
    delivered: bool = False


class MailDispatcher:
    """Fire-and-forget delivery with retry and exponential backoff.

    Usage:
        dispatcher = MailDispatcher(LogMailTransport())
        dispatcher.enqueue("a@x.com", TEMPLATE_VERIFY_EMAIL, {...})
        ...
        await dispatcher.join()   # shutdown / tests
    """

    def __init__(
        self,
        transport: MailTransport,
        *,
        max_attempts: int = 4,
        backoff_seconds: float = 2.0,
    ):
        self.transport = transport
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self._tasks: set[asyncio.Task] = set()

    def enqueue(self, address: str, template_id: str, payload: dict[str, Any]) -> MailJob:
        """Schedule a send. Never raises for delivery problems."""
        job = MailJob(address=address, template_id=template_id, payload=payload)
        task = asyncio.create_task(self._deliver(job))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return job

    async def _deliver(self, job: MailJob) -> None:
        log = logger.bind(template=job.template_id)
        while job.attempts < self.max_attempts:
            job.attempts += 1
            try:
                await self.transport.send(job.address, job.template_id, job.payload)
            except MailTransportError as e:
                if not e.transient:
                    log.error("mail.send_failed", attempts=job.attempts, error=str(e), permanent=True)
                    return
                if job.attempts >= self.max_attempts:
                    break
                delay = self.backoff_seconds * (2 ** (job.attempts - 1))
                log.warning("mail.send_retry", attempt=job.attempts, delay=delay, error=str(e))
                await asyncio.sleep(delay)
                continue
            except Exception:
                log.exception("mail.send_error", attempts=job.attempts)
                return
            job.delivered = True
            log.info("mail.sent", attempts=job.attempts)
            return

        log.error("mail.send_failed", attempts=job.attempts, permanent=False)

    async def join(self) -> None:
        """Wait for all in-flight deliveries."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def aclose(self) -> None:
        await self.join()
        await self.transport.aclose()


def build_transport(settings) -> MailTransport:
    """Pick the configured transport."""
    if settings.mail_backend == "http":
        return HttpMailTransport(
            api_url=settings.mail_api_url,
            api_key=settings.mail_api_key,
            sender=settings.mail_sender,
            timeout=settings.mail_timeout_seconds,
        )
    return LogMailTransport()
