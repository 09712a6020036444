"""Business profile provider backed by settings."""

from __future__ import annotations

from amptrack_config.schema import BusinessProfileSettings
from amptrack_kernel.domain.dtos import BusinessProfile

DEFAULT_FOOTER = ("Thank you for your business!",)


class StaticBusinessProfileProvider:
    """Returns the same profile for every render."""

    def __init__(self, profile: BusinessProfile):
        self._profile = profile

    @classmethod
    def from_settings(cls, settings: BusinessProfileSettings) -> "StaticBusinessProfileProvider":
        return cls(
            BusinessProfile(
                name=settings.name,
                address=settings.address,
                phone=settings.phone,
                email=settings.email,
                website=settings.website,
                logo_url=settings.logo_url,
                footer_lines=settings.footer_lines or DEFAULT_FOOTER,
            )
        )

    def get_profile(self) -> BusinessProfile:
        return self._profile
