"""Chat escrow service: operator decryption, moderation and plaintext migration."""

__version__ = "0.1.0"
