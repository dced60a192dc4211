# Exception hierarchy for the intake backend
from typing import Optional


class IntakeError(Exception):
    """Base class for intake backend errors"""


class ConfigurationError(IntakeError):
    """Startup configuration is missing or malformed"""


class IdentityError(IntakeError):
    """Sign-in with the identity provider failed"""


class StoreWriteError(IntakeError):
    """The document store rejected or never received a write"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code
