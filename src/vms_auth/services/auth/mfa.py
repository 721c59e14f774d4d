"""
TOTP multi-factor authentication.

Secrets are base32 strings compatible with common authenticator apps; the
provisioning URI is what a QR code encodes during enrolment.
"""

from typing import Optional

import pyotp


class MFAService:
    def __init__(self, issuer_name: str = "SecureGov VMS", valid_window: int = 2):
        self.issuer_name = issuer_name
        self.valid_window = valid_window

    def generate_secret(self) -> str:
        return pyotp.random_base32()

    def provisioning_uri(self, secret: str, email: str) -> str:
        return pyotp.TOTP(secret).provisioning_uri(
            name=email, issuer_name=self.issuer_name
        )

    def current_code(self, secret: str) -> str:
        return pyotp.TOTP(secret).now()

    def verify(self, secret: Optional[str], code: Optional[str]) -> bool:
        """Check a 6-digit code, tolerating ``valid_window`` steps of drift."""
        if not secret or not code:
            return False
        code = code.strip().replace(" ", "")
        if len(code) != 6 or not code.isdigit():
            return False
        return pyotp.TOTP(secret).verify(code, valid_window=self.valid_window)
