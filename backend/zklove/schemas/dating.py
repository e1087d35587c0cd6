"""
Pydantic schemas for dating profiles and derived view models.

Field names serialize in camelCase (``auraBalance``, ``compatibilityScore``)
so JSON produced here keeps the names of the public data model. Business
rules on attribute values (hobby catalog, age bounds) are enforced by the
commitment generator, which raises InvalidAttributeError rather than a
pydantic ValidationError.
"""

from enum import Enum
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class Hobby(str, Enum):
    """Fixed hobby catalog. Order defines the commitment slot index."""
    MUSIC = "music"
    FITNESS = "fitness"
    ART = "art"
    CODING = "coding"
    GAMING = "gaming"
    TRAVEL = "travel"
    FOOD = "food"
    READING = "reading"
    MOVIES = "movies"
    SPORTS = "sports"
    PHOTOGRAPHY = "photography"
    COOKING = "cooking"
    DANCING = "dancing"
    HIKING = "hiking"
    YOGA = "yoga"


HOBBY_CATALOG: Tuple[str, ...] = tuple(h.value for h in Hobby)


class UnlockTier(str, Enum):
    """Progressive disclosure levels, cheapest first."""
    BASIC = "basic"
    BIO = "bio"
    AVATAR = "avatar"
    CONTACT = "contact"


class AuraReason(str, Enum):
    PROFILE_CREATED = "profile_created"
    MUTUAL_MATCH = "mutual_match"
    UNLOCK_BASIC = "unlock_basic"
    UNLOCK_BIO = "unlock_bio"
    UNLOCK_AVATAR = "unlock_avatar"
    UNLOCK_CHAT = "unlock_chat"
    # Compensating entries
    MATCH_REVERSAL = "match_reversal"
    UNLOCK_REFUND = "unlock_refund"


TIER_REASONS: Dict[UnlockTier, AuraReason] = {
    UnlockTier.BASIC: AuraReason.UNLOCK_BASIC,
    UnlockTier.BIO: AuraReason.UNLOCK_BIO,
    UnlockTier.AVATAR: AuraReason.UNLOCK_AVATAR,
    UnlockTier.CONTACT: AuraReason.UNLOCK_CHAT,
}


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Coordinates(CamelModel):
    lat: float
    lng: float


class ProfileAttributes(CamelModel):
    """
    Private profile attributes. Held only by the profile owner.

    Never persisted by the core and never sent anywhere in cleartext;
    only commitments derived from them leave the owner's device.
    """
    name: str = Field(..., min_length=1, max_length=64)
    bio: str = Field(default="", max_length=500)
    avatar_ref: Optional[str] = Field(default=None, description="Opaque avatar storage reference")
    city: str = Field(..., min_length=1, max_length=128)
    coordinates: Optional[Coordinates] = None
    hobbies: List[str] = Field(default_factory=list)
    age: int
    min_age: int = 18
    max_age: int = 35
    disclose_age_bracket: bool = Field(
        default=False,
        description="Publish a 5-year age bracket on anonymous cards.",
    )

    def normalized_city(self) -> str:
        return " ".join(self.city.split()).casefold()

    def age_bracket(self) -> str:
        low = (self.age // 5) * 5
        return f"{low}-{low + 5}"


class UnlockCosts(CamelModel):
    basic: int
    bio: int
    avatar: int
    contact: int


class AnonymousCard(CamelModel):
    """
    Ephemeral card shown while browsing. Contains no private attribute.

    Built from a counterpart's public record plus a verified
    compatibility proof; never persisted beyond a session cache.
    """
    id: str
    city_match: bool
    shared_hobby_count: int = Field(..., ge=0)
    compatibility_score: int = Field(..., ge=0, le=100)
    age_range: Optional[str] = None
    aura_required_to_unlock: UnlockCosts


class DatingStats(CamelModel):
    total_profiles: int = 0
    active_profiles: int = 0
    total_matches: int = 0
    unlocked_chats: int = 0
    average_compatibility_score: float = 0.0
