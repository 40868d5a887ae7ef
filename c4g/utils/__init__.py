from c4g.utils.crypto import CredentialCipher

__all__ = ["CredentialCipher"]
