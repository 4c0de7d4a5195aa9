from .codec import (
    build_certificate,
    canonicalize_metadata,
    decode_payload,
    encode_payload,
    hash_metadata,
    split_metadata,
)
from .identity import IdentityEvents, LocalAccountIdentity, RegistrationDirectory
from .registry import InMemoryRegistry, Registry
from .schemas import AuthenticityResult, Certificate, SignedCertificate, TransferCode
from .transfer import claim_with_certificate, claim_with_code, generate_code, validate_transfer_code
from .typed_data import build_signing_message, check_authenticity, sign, sign_and_self_check, verify

__version__ = "0.1.0"
