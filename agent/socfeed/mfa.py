"""
Interface to the external TOTP capability used for operator MFA.

Secret generation and code verification live outside this agent; only
the contract and the input checks that do not depend on the algorithm are
defined here.
"""
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass

CODE_PATTERN = re.compile(r"^\d{6}$")


@dataclass(frozen=True)
class TOTPEnrollment:
    secret: str
    provisioning_uri: str


class TOTPProvider(ABC):
    @abstractmethod
    def generate_secret(self, account_name: str, issuer: str) -> TOTPEnrollment:
        """Create a new secret and its otpauth:// provisioning URI."""

    @abstractmethod
    def verify_code(self, secret: str, code: str) -> bool:
        """Check a six-digit code against the secret."""


def is_valid_code_format(code: str) -> bool:
    return bool(CODE_PATTERN.match(code or ""))


def format_secret_for_display(secret: str) -> str:
    """Split a base32 secret into groups of four for manual entry."""
    return " ".join(secret[i:i + 4] for i in range(0, len(secret), 4))


class MFAVerifier:
    def __init__(self, provider: TOTPProvider, issuer: str = "SocFeed"):
        self.provider = provider
        self.issuer = issuer

    def enroll(self, account_name: str) -> TOTPEnrollment:
        return self.provider.generate_secret(account_name, self.issuer)

    def verify(self, secret: str, code: str) -> bool:
        code = (code or "").strip()
        if not is_valid_code_format(code):
            return False
        return self.provider.verify_code(secret, code)
