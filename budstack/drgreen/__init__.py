"""Dr. Green API integration.

This module provides:
- DrGreenClient: Signed, authenticated requests to the Dr. Green API
- DoctorGreenAPI: Endpoint helpers and catalogue normalization
- CredentialCipher / TenantCredentialResolver: Per-tenant credential handling
- sign_payload / verify_payload: Request body signatures
"""

from budstack.drgreen.api import DoctorGreenAPI, DrGreenProduct
from budstack.drgreen.client import DrGreenClient, DrGreenCredentials, serialize_body
from budstack.drgreen.credentials import (
    CredentialCipher,
    StoredCredentials,
    TenantCredentialResolver,
    is_encrypted_value,
)
from budstack.drgreen.regions import currency_for_country, to_alpha3
from budstack.drgreen.signing import load_private_key, sign_payload, verify_payload

__all__ = [
    # Client
    "DrGreenClient",
    "DrGreenCredentials",
    "serialize_body",
    # Endpoints
    "DoctorGreenAPI",
    "DrGreenProduct",
    # Credentials
    "CredentialCipher",
    "StoredCredentials",
    "TenantCredentialResolver",
    "is_encrypted_value",
    # Regions
    "currency_for_country",
    "to_alpha3",
    # Signing
    "load_private_key",
    "sign_payload",
    "verify_payload",
]
