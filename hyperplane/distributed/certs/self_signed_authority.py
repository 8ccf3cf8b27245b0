from __future__ import annotations

import asyncio
import datetime

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from .authority import CertificateAuthority
from .certificate_record import IssuedCertificate


class SelfSignedAuthority(CertificateAuthority):
    """
    Issues self-signed ECDSA certificates. For development clusters
    and tests, where clients do not verify the chain.
    """

    def __init__(
        self,
        validity: datetime.timedelta = datetime.timedelta(days=90),
        organization: str = "hyperplane",
    ) -> None:
        self._validity = validity
        self._organization = organization
        self.issued = 0

    async def request_or_renew(self, domain: str) -> IssuedCertificate:
        loop = asyncio.get_running_loop()
        issued = await loop.run_in_executor(None, self._issue, domain)
        self.issued += 1
        return issued

    def _issue(self, domain: str) -> IssuedCertificate:
        key = ec.generate_private_key(ec.SECP256R1())
        subject = x509.Name([
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, self._organization),
            x509.NameAttribute(NameOID.COMMON_NAME, domain),
        ])

        now = datetime.datetime.now(datetime.timezone.utc)
        certificate = (
            x509.CertificateBuilder()
            .subject_name(subject)
            .issuer_name(subject)
            .public_key(key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now - datetime.timedelta(minutes=1))
            .not_valid_after(now + self._validity)
            .add_extension(
                x509.SubjectAlternativeName([
                    x509.DNSName(domain),
                    x509.DNSName(f"*.{domain}"),
                ]),
                critical=False,
            )
            .sign(key, hashes.SHA256())
        )

        return IssuedCertificate(
            cert_pem=certificate.public_bytes(serialization.Encoding.PEM),
            key_pem=key.private_bytes(
                encoding=serialization.Encoding.PEM,
                format=serialization.PrivateFormat.PKCS8,
                encryption_algorithm=serialization.NoEncryption(),
            ),
        )
