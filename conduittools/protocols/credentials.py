from typing import Protocol, Optional

class CredentialManager(Protocol):
    """Protocol for the CredentialManager class"""
    def get_credential(self, credential: str) -> Optional[str]:
        """Get a specific credential"""
        ...

    def list_credentials(self, prefix: Optional[str] = None) -> list[str]:
        """List stored credential keys, optionally restricted to a key prefix"""
        ...
