from .authority import CertificateAuthority as CertificateAuthority
from .certificate_manager import CertificateManager as CertificateManager
from .certificate_record import (
    CertificateRecord as CertificateRecord,
    CertificateState as CertificateState,
    IssuedCertificate as IssuedCertificate,
)
from .self_signed_authority import SelfSignedAuthority as SelfSignedAuthority
