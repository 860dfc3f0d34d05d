"""Key generation, CSR construction and PEM encoding."""

from certbind.issuance.csr import (
    IssuedCertificate,
    build_csr,
    decode_certificate_chain,
    decode_private_key,
    encode_certificate_chain,
    encode_private_key,
    generate_rsa_key,
    split_pem_chain,
)

__all__ = [
    "IssuedCertificate",
    "build_csr",
    "decode_certificate_chain",
    "decode_private_key",
    "encode_certificate_chain",
    "encode_private_key",
    "generate_rsa_key",
    "split_pem_chain",
]
