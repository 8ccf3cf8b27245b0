from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class CertificateState(Enum):
    VALID = "valid"
    RENEWING = "renewing"
    EXPIRED = "expired"
    UNAVAILABLE = "unavailable"


@dataclass(slots=True, frozen=True)
class IssuedCertificate:
    """PEM material returned by a certificate authority."""
    cert_pem: bytes
    key_pem: bytes


@dataclass(slots=True)
class CertificateRecord:
    domain: str
    cert_pem: bytes
    key_pem: bytes
    expires_at: float
    renewal_due_at: float
    state: CertificateState = CertificateState.VALID
    path: str | None = None
    failures: int = 0
    last_error: str | None = None

    @property
    def servable(self) -> bool:
        return self.state in (CertificateState.VALID, CertificateState.RENEWING)

    def renewal_due(self, now: float) -> bool:
        return now >= self.renewal_due_at

    def expired(self, now: float) -> bool:
        return now >= self.expires_at
