from __future__ import annotations

import asyncio
import os
import ssl
import time
from pathlib import Path
from typing import Callable

from cryptography import x509

from hyperplane.distributed.errors import CertificateFailureError
from hyperplane.distributed.reliability import (
    JitterStrategy,
    RetryConfig,
    RetryExecutor,
)
from hyperplane.logging import Logger
from hyperplane.logging.hyperplane_logging_models import (
    CertificateError,
    CertificateInfo,
)

from .authority import CertificateAuthority
from .certificate_record import (
    CertificateRecord,
    CertificateState,
    IssuedCertificate,
)


class CertificateManager:
    """
    Keeps one certificate per domain current and serves it through
    per-domain SSL contexts.

    Renewal builds a brand new ``SSLContext`` and swaps it into the
    domain map. Handshakes already in progress keep the context they
    started with, new handshakes pick the new one through the SNI
    callback of ``server_context``.

    If renewal keeps failing the old certificate is served until it
    expires. After that the domain is UNAVAILABLE and no context is
    handed out for it.
    """

    def __init__(
        self,
        authority: CertificateAuthority,
        cert_dir: str | Path,
        renew_before: float = 30 * 24 * 3600.0,
        check_interval: float = 3600.0,
        retry: RetryConfig | None = None,
        node_id: str = "drone",
        logger: Logger | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._authority = authority
        self._cert_dir = Path(cert_dir)
        self._renew_before = renew_before
        self._check_interval = check_interval
        self._node_id = node_id
        self._logger = logger or Logger()
        self._clock = clock
        self._executor = RetryExecutor(
            retry or RetryConfig(
                max_attempts=5,
                base_delay=1.0,
                max_delay=60.0,
                jitter=JitterStrategy.FULL,
                retryable_exceptions=(
                    CertificateFailureError,
                    ConnectionError,
                    TimeoutError,
                ),
            ),
            on_retry=self._log_retry,
        )

        self._records: dict[str, CertificateRecord] = {}
        self._contexts: dict[str, ssl.SSLContext] = {}

    def record(self, domain: str) -> CertificateRecord | None:
        return self._records.get(domain.lower())

    def domains(self) -> list[str]:
        return sorted(self._records)

    def available(self, domain: str) -> bool:
        return domain.lower() in self._contexts

    def context_for(self, domain: str) -> ssl.SSLContext | None:
        return self._contexts.get(domain.lower())

    def server_context(self, default_domain: str | None = None) -> ssl.SSLContext:
        """
        Listening context that picks the per-domain context by SNI.
        Connections without SNI use ``default_domain``.
        """
        context = self._new_context()

        if default_domain is not None:
            record = self.record(default_domain)
            if record is not None and record.path is not None and record.servable:
                context.load_cert_chain(record.path)

        def select_context(
            ssl_object: ssl.SSLObject,
            server_name: str | None,
            _context: ssl.SSLContext,
        ) -> int | None:
            name = (server_name or default_domain or "").lower()
            selected = self._contexts.get(name) or self._contexts.get(
                name.partition(".")[2]
            )

            if selected is None:
                return ssl.ALERT_DESCRIPTION_UNRECOGNIZED_NAME

            ssl_object.context = selected
            return None

        context.sni_callback = select_context
        return context

    async def ensure(self, domain: str) -> CertificateRecord:
        """
        Load the domain's certificate from disk, or obtain one from the
        authority when missing, unreadable or due for renewal.
        """
        domain = domain.lower()
        now = self._clock()

        record = self._records.get(domain)
        if record is None:
            record = await self._load(domain)

        if record is not None and not record.renewal_due(now):
            return record

        if record is not None:
            await self._renew(record, now)
            return self._records[domain]

        issued = await self._request(domain)
        return await self._store(domain, issued)

    async def check(self, now: float | None = None) -> list[str]:
        """Renew every certificate that is due. Returns renewed domains."""
        now = now if now is not None else self._clock()
        renewed: list[str] = []

        for domain in self.domains():
            record = self._records[domain]

            if record.expired(now) and record.state == CertificateState.VALID:
                record.state = CertificateState.EXPIRED

            if record.renewal_due(now) and record.state != CertificateState.RENEWING:
                if await self._renew(record, now):
                    renewed.append(domain)

        return renewed

    async def run(self, shutdown: asyncio.Event) -> None:
        while not shutdown.is_set():
            try:
                await self.check()

            except (CertificateFailureError, OSError, ssl.SSLError) as err:
                await self._log_error("*", f"certificate check failed: {err}")

            try:
                await asyncio.wait_for(shutdown.wait(), timeout=self._check_interval)

            except asyncio.TimeoutError:
                continue

    async def _renew(self, record: CertificateRecord, now: float) -> bool:
        previous_state = record.state
        record.state = CertificateState.RENEWING

        try:
            issued = await self._request(record.domain)
            await self._store(record.domain, issued)
            return True

        except CertificateFailureError as err:
            record.failures += 1
            record.last_error = err.cause

            if record.expired(self._clock()):
                record.state = CertificateState.UNAVAILABLE
                self._contexts.pop(record.domain, None)
                await self._log_error(record.domain, f"certificate expired and renewal failed: {err.cause}")

            else:
                record.state = (
                    CertificateState.VALID
                    if previous_state != CertificateState.UNAVAILABLE
                    else previous_state
                )
                await self._log_error(record.domain, f"renewal failed, serving current certificate: {err.cause}")

            return False

        except Exception:
            record.state = previous_state
            raise

    async def _request(self, domain: str) -> IssuedCertificate:
        try:
            return await self._executor.execute(
                lambda: self._authority.request_or_renew(domain),
                operation_name=f"certificate for {domain}",
            )

        except (ConnectionError, TimeoutError) as err:
            raise CertificateFailureError(domain, str(err)) from err

    async def _store(self, domain: str, issued: IssuedCertificate) -> CertificateRecord:
        """
        Validate and persist new material, then swap it in. Nothing is
        replaced, on disk or in memory, unless the certificate parses and
        its key loads into a context.
        """
        path = self._cert_dir / f"{domain}.pem"
        record = self._build_record(domain, issued, str(path))

        loop = asyncio.get_running_loop()
        try:
            context = await loop.run_in_executor(None, self._write_sync, path, issued)

        except (OSError, ssl.SSLError) as err:
            raise CertificateFailureError(domain, f"could not install certificate: {err}") from err

        self._activate(record, context)

        await self._logger.log(
            CertificateInfo(
                message=f"Installed certificate valid until {time.strftime('%Y-%m-%dT%H:%M:%SZ', time.gmtime(record.expires_at))}",
                node_id=self._node_id,
                domain=domain,
            )
        )

        return record

    def _write_sync(self, path: Path, issued: IssuedCertificate) -> ssl.SSLContext:
        self._cert_dir.mkdir(parents=True, exist_ok=True)
        temp_path = path.with_name(f".{path.name}.tmp")

        descriptor = os.open(temp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        try:
            with os.fdopen(descriptor, "wb") as pem_file:
                pem_file.write(issued.cert_pem)
                pem_file.write(issued.key_pem)
                pem_file.flush()
                os.fsync(pem_file.fileno())

            context = self._load_context(temp_path)

        except (OSError, ssl.SSLError):
            temp_path.unlink(missing_ok=True)
            raise

        os.replace(temp_path, path)
        return context

    async def _load(self, domain: str) -> CertificateRecord | None:
        path = self._cert_dir / f"{domain}.pem"
        loop = asyncio.get_running_loop()

        data = await loop.run_in_executor(None, self._read_sync, path)
        if data is None:
            return None

        try:
            certificate = x509.load_pem_x509_certificate(data)

        except ValueError as err:
            await self._log_error(domain, f"stored certificate unreadable, requesting a new one: {err}")
            return None

        record = self._build_record(
            domain,
            IssuedCertificate(cert_pem=data, key_pem=data),
            str(path),
            certificate=certificate,
        )

        if record.expired(self._clock()):
            return None

        try:
            context = await loop.run_in_executor(None, self._load_context, path)

        except ssl.SSLError as err:
            await self._log_error(domain, f"stored key unusable, requesting a new certificate: {err}")
            return None

        self._activate(record, context)
        return record

    def _read_sync(self, path: Path) -> bytes | None:
        if not path.exists():
            return None

        return path.read_bytes()

    def _build_record(
        self,
        domain: str,
        issued: IssuedCertificate,
        path: str,
        certificate: x509.Certificate | None = None,
    ) -> CertificateRecord:
        try:
            certificate = certificate or x509.load_pem_x509_certificate(issued.cert_pem)

        except ValueError as err:
            raise CertificateFailureError(domain, f"authority returned an unreadable certificate: {err}") from err

        expires_at = certificate.not_valid_after_utc.timestamp()
        issued_at = certificate.not_valid_before_utc.timestamp()

        return CertificateRecord(
            domain=domain,
            cert_pem=issued.cert_pem,
            key_pem=issued.key_pem,
            expires_at=expires_at,
            renewal_due_at=max(issued_at, expires_at - self._renew_before),
            path=path,
        )

    def _activate(self, record: CertificateRecord, context: ssl.SSLContext) -> None:
        self._records[record.domain] = record
        self._contexts[record.domain] = context

    def _load_context(self, path: Path | str) -> ssl.SSLContext:
        context = self._new_context()
        context.load_cert_chain(path)
        return context

    def _new_context(self) -> ssl.SSLContext:
        context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        context.minimum_version = ssl.TLSVersion.TLSv1_2
        context.options |= ssl.OP_SINGLE_DH_USE
        context.options |= ssl.OP_SINGLE_ECDH_USE
        context.check_hostname = False
        context.verify_mode = ssl.VerifyMode.CERT_NONE
        return context

    async def _log_retry(
        self,
        operation_name: str,
        attempt: int,
        error: Exception,
        delay: float,
    ) -> None:
        await self._logger.log(
            CertificateInfo(
                message=f"Retry {attempt} of {operation_name} in {delay:.2f}s after: {error}",
                node_id=self._node_id,
                domain=operation_name.rpartition(" ")[2],
            )
        )

    async def _log_error(self, domain: str, cause: str) -> None:
        await self._logger.log(
            CertificateError(
                message="Certificate failure",
                node_id=self._node_id,
                domain=domain,
                cause=cause,
            )
        )
