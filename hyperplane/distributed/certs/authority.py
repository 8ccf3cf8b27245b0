from abc import ABC, abstractmethod

from .certificate_record import IssuedCertificate


class CertificateAuthority(ABC):
    """
    Client for the authority that issues certificates, including any
    ownership challenge its protocol requires. Failures raise
    ``CertificateFailureError``.
    """

    @abstractmethod
    async def request_or_renew(self, domain: str) -> IssuedCertificate:
        ...
