from typing import Optional
from threading import Lock

from schemas.provision_schema import DomainCredential


class DomainCredentialStore:
    """
    Simple in-memory storage for the domain join credential used by the
    HTTP service.

    - Credential is stored only in process memory (not on disk).
    - Not logged anywhere.
    - If no credential is set, POST /provision is rejected.
    """

    _credential: Optional[DomainCredential] = None
    _lock: Lock = Lock()

    @classmethod
    def set_credential(cls, username: str, password: str) -> None:
        with cls._lock:
            cls._credential = DomainCredential(username=username, password=password)

    @classmethod
    def clear_credential(cls) -> None:
        with cls._lock:
            cls._credential = None

    @classmethod
    def get_credential(cls) -> Optional[DomainCredential]:
        with cls._lock:
            return cls._credential
