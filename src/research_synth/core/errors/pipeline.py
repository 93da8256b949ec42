"""Pipeline-level error classes.

Only configuration problems abort a research run; every other failure
inside the pipeline degrades to an empty or default value.
"""

from typing import Optional


class ConfigurationError(Exception):
    """Raised when the pipeline cannot run with the current configuration.

    Attributes:
        setting: Name of the missing or invalid setting, if known
    """

    def __init__(self, message: str, *, setting: Optional[str] = None):
        super().__init__(message)
        self.setting = setting

