"""Admin API key checks.

Keys come from ``ADMIN_API_KEY`` (comma separated) and are compared in
constant time.
"""

import hmac


class APIKeyValidator:
    """Holds the configured admin keys and checks presented keys against them."""

    def __init__(self, api_keys: list[str]) -> None:
        """
        Raises:
            ValueError: If no keys are configured
        """
        if not api_keys:
            raise ValueError("At least one API key must be provided")

        self.api_keys = frozenset(api_keys)

    def validate(self, api_key: str) -> bool:
        """True if ``api_key`` exactly matches a configured key."""
        candidate = api_key.encode()
        # no early exit, so timing does not reveal which key matched
        matched = False
        for key in self.api_keys:
            matched |= hmac.compare_digest(candidate, key.encode())
        return matched
