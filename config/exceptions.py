# config/exceptions.py

from typing import Dict, List, Mapping, Sequence


class InvalidConfig(Exception):
    """
    Raised when pipeline inputs fail validation.

    Carries EVERY offending key, so a caller can fix
    all problems in one pass.
    """

    def __init__(self, errors: Mapping[str, Sequence[str]]):
        self.errors: Dict[str, List[str]] = {
            key: list(messages) for key, messages in sorted(errors.items())
        }
        details = "; ".join(
            f"{key}: {', '.join(messages)}"
            for key, messages in self.errors.items()
        )
        super().__init__(f"Invalid pipeline configuration: {details}")

    @property
    def keys(self) -> List[str]:
        return list(self.errors)
