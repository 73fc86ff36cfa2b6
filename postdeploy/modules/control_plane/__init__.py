"""
Control Plane Module - Black Box Interface

Purpose: Send signed operational requests to the hosting control plane
Interface: ControlPlaneClient.post(), post_url(), put(), get(); TokenSigner
Hidden: Target resolution, Host header override, token format, client lifetime

Failures are httpx exceptions and propagate unchanged.
"""

from .client import (
    CLIENT_REQUEST_ID_HEADER,
    REQUEST_ID_HEADER,
    SITE_RESTRICTED_TOKEN_HEADER,
    USER_AGENT,
    ControlPlaneClient,
    OperationRequest,
    ResolvedTarget,
    display_url,
)
from .token import TokenSigner, decrypt_value, encrypt_value, sign_token

__all__ = [
    "CLIENT_REQUEST_ID_HEADER",
    "REQUEST_ID_HEADER",
    "SITE_RESTRICTED_TOKEN_HEADER",
    "USER_AGENT",
    "ControlPlaneClient",
    "OperationRequest",
    "ResolvedTarget",
    "TokenSigner",
    "decrypt_value",
    "display_url",
    "encrypt_value",
    "sign_token",
]
