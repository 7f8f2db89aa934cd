"""
Ed25519 Signing

Every journal event is signed by the actor who caused it: the oracle that
reported a value, the processor that approved a claim, the admin that
changed thresholds. Signatures are checked against the public key the
journal recorded when the actor was registered.
"""

import base64
from typing import Tuple

from nacl.exceptions import BadSignatureError
from nacl.signing import SigningKey, VerifyKey


# Fixed challenge used to prove a private key matches a registered public key.
KEY_CHALLENGE = "claimgate-key-verification-challenge-v1"


class Signer:
    """Thin wrapper over PyNaCl with base64-encoded keys and signatures."""

    @staticmethod
    def generate_keypair() -> Tuple[str, str]:
        """
        Generate a new Ed25519 keypair.

        Returns:
            Tuple of (private_key_b64, public_key_b64)
        """
        signing_key = SigningKey.generate()
        private_b64 = base64.b64encode(bytes(signing_key)).decode("utf-8")
        public_b64 = base64.b64encode(bytes(signing_key.verify_key)).decode("utf-8")
        return private_b64, public_b64

    @staticmethod
    def public_key_for(private_key_b64: str) -> str:
        """Derive the base64 public key from a base64 private key."""
        signing_key = SigningKey(base64.b64decode(private_key_b64))
        return base64.b64encode(bytes(signing_key.verify_key)).decode("utf-8")

    @staticmethod
    def sign(message: str, private_key_b64: str) -> str:
        """Sign a message, returning the base64 signature only."""
        signing_key = SigningKey(base64.b64decode(private_key_b64))
        signed = signing_key.sign(message.encode("utf-8"))
        return base64.b64encode(signed.signature).decode("utf-8")

    @staticmethod
    def verify(message: str, signature_b64: str, public_key_b64: str) -> bool:
        """True if the signature over message verifies under the public key."""
        try:
            verify_key = VerifyKey(base64.b64decode(public_key_b64))
            verify_key.verify(message.encode("utf-8"), base64.b64decode(signature_b64))
        except (BadSignatureError, ValueError, TypeError):
            return False
        return True

    @staticmethod
    def key_matches(private_key_b64: str, public_key_b64: str) -> bool:
        """
        Challenge-response check that a private key belongs to a public key.

        Malformed keys are treated as a mismatch.
        """
        try:
            signature = Signer.sign(KEY_CHALLENGE, private_key_b64)
        except (ValueError, TypeError):
            return False
        return Signer.verify(KEY_CHALLENGE, signature, public_key_b64)

    @staticmethod
    def sign_event(event_hash: str, private_key_b64: str) -> str:
        return Signer.sign(event_hash, private_key_b64)

    @staticmethod
    def verify_event(event_hash: str, signature_b64: str, public_key_b64: str) -> bool:
        return Signer.verify(event_hash, signature_b64, public_key_b64)
