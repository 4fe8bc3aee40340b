"""OAuth access-token state for the directory API."""

from __future__ import annotations

import time

from pydantic import BaseModel, ConfigDict, Field

from pytailnet._constants import TOKEN_EXPIRY_MARGIN_S


class AccessToken(BaseModel):
    """A bearer token obtained through the client-credentials grant.

    Parameters
    ----------
    access_token : str
        Token sent as ``Authorization: Bearer <token>``.
    expires_in : float
        Lifetime in seconds as reported by the token endpoint.
    created_at : float
        Monotonic timestamp (``time.monotonic()``) when the token was
        obtained. Defaults to *now* if not provided.
    """

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        validate_default=True,
        str_strip_whitespace=True,
    )

    access_token: str = Field(min_length=1)
    expires_in: float = 3600.0
    token_type: str = "Bearer"
    created_at: float = Field(default_factory=time.monotonic)

    @property
    def authorization(self) -> str:
        """Value for the ``Authorization`` header."""
        scheme = self.token_type.capitalize() if self.token_type.lower() == "bearer" else self.token_type
        return f"{scheme} {self.access_token}"

    @property
    def is_expired(self) -> bool:
        """Whether the token is (about to be) rejected by the server."""
        return self.age >= max(self.expires_in - TOKEN_EXPIRY_MARGIN_S, 0.0)

    @property
    def age(self) -> float:
        """Seconds since the token was obtained."""
        return time.monotonic() - self.created_at
