"""
Rights table — usage rights granted per license type.
"""

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class RightsTerms:
    stream_limit: str
    radio_broadcasting: bool
    music_videos: bool
    commercial_use: bool
    exclusive: bool
    keep_after_exclusive: bool
    description: str

    def granted(self) -> list[str]:
        """Human-readable bullet list for the document."""
        bullets = [f"Distribution up to {self.stream_limit} streams/sales"]
        bullets.append(
            "Radio broadcasting rights" if self.radio_broadcasting
            else "No radio broadcasting rights"
        )
        bullets.append(
            "Music video production rights" if self.music_videos
            else "No music video rights"
        )
        bullets.append(
            "Commercial use permitted" if self.commercial_use
            else "Non-commercial use only"
        )
        if self.exclusive:
            bullets.append("Exclusive rights: the work is removed from further sale")
        else:
            bullets.append("Non-exclusive: the producer may license the work to others")
        if self.keep_after_exclusive:
            bullets.append("Rights survive a later exclusive sale of the work")
        return bullets


STANDARD_LEASE = RightsTerms(
    stream_limit="5,000",
    radio_broadcasting=False,
    music_videos=False,
    commercial_use=False,
    exclusive=False,
    keep_after_exclusive=False,
    description="Standard Lease License",
)

RIGHTS: dict[str, RightsTerms] = {
    "mp3": RightsTerms(
        stream_limit="5,000",
        radio_broadcasting=False,
        music_videos=False,
        commercial_use=False,
        exclusive=False,
        keep_after_exclusive=False,
        description="MP3 Lease License - Non-exclusive rights for personal and promotional use",
    ),
    "wav": RightsTerms(
        stream_limit="50,000",
        radio_broadcasting=True,
        music_videos=True,
        commercial_use=False,
        exclusive=False,
        keep_after_exclusive=False,
        description="WAV Lease License - Non-exclusive rights with radio and video broadcasting",
    ),
    "stems": RightsTerms(
        stream_limit="500,000",
        radio_broadcasting=True,
        music_videos=True,
        commercial_use=True,
        exclusive=False,
        keep_after_exclusive=True,
        description="Trackout/Stems License - Full commercial rights with individual track files",
    ),
    "exclusive": RightsTerms(
        stream_limit="Unlimited",
        radio_broadcasting=True,
        music_videos=True,
        commercial_use=True,
        exclusive=True,
        keep_after_exclusive=True,
        description="Exclusive License - Full ownership and exclusive rights transfer",
    ),
    "sound_kit": RightsTerms(
        stream_limit="Unlimited",
        radio_broadcasting=True,
        music_videos=True,
        commercial_use=True,
        exclusive=False,
        keep_after_exclusive=True,
        description="Sound Kit License - Royalty-free use of the included samples in new productions",
    ),
}


def rights_for(license_type: str | None) -> RightsTerms:
    if license_type is None:
        return STANDARD_LEASE
    return RIGHTS.get(license_type.lower(), STANDARD_LEASE)


__all__ = ("RightsTerms", "STANDARD_LEASE", "RIGHTS", "rights_for")
