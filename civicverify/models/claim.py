"""Claim data model.

A claim is a citizen-submitted assertion ("this policy change hurt me this
way") that is checked against external government data.  Claims are
immutable once submitted; adapters derive their own queries from them.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from civicverify.models.enums import PolicyArea


class Location(BaseModel):
    """Where the claimant lives, as resolved by the zip-lookup collaborator."""

    model_config = ConfigDict(frozen=True)

    zip: str = Field(min_length=3, max_length=10)
    city: str | None = None
    state: str | None = Field(
        default=None,
        min_length=2,
        max_length=2,
        description="Two-letter USPS state code.",
    )
    county: str | None = None


class Claim(BaseModel):
    """A free-text claim filed under a single policy area.

    ``location`` may be ``None`` when the zip lookup returned "not found";
    adapters that need a location degrade instead of failing the request.
    """

    model_config = ConfigDict(frozen=True)

    headline: str = Field(min_length=1)
    body: str = ""
    domain: PolicyArea
    location: Location | None = None

    @property
    def text(self) -> str:
        """Lower-cased ``headline + " " + body`` used by keyword heuristics."""
        return f"{self.headline} {self.body}".lower()

    @property
    def state(self) -> str | None:
        if self.location is None or self.location.state is None:
            return None
        return self.location.state.upper()

    @property
    def zip_code(self) -> str | None:
        return self.location.zip if self.location is not None else None
