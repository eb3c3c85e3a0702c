"""
Donor Matching System
Finds and ranks eligible donors for a blood request using blood-type
compatibility, a city-then-country search and a composite score
"""

import logging
from dataclasses import dataclass, asdict
from datetime import date, datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from record_store import RecordStore

logger = logging.getLogger(__name__)

# Minimum days between two whole-blood donations
DONATION_INTERVAL_DAYS = 90

# Stand-in for "never donated" when ranking by rest time
NEVER_DONATED_RANK_DAYS = 365


class BloodType(Enum):
    """Blood type enumeration"""
    O_NEGATIVE = "O-"
    O_POSITIVE = "O+"
    A_NEGATIVE = "A-"
    A_POSITIVE = "A+"
    B_NEGATIVE = "B-"
    B_POSITIVE = "B+"
    AB_NEGATIVE = "AB-"
    AB_POSITIVE = "AB+"


class UrgencyLevel(Enum):
    """Blood request urgency levels"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


VALID_BLOOD_GROUPS = [b.value for b in BloodType]
VALID_URGENCY_LEVELS = [u.value for u in UrgencyLevel]

URGENCY_PRIORITY = {
    UrgencyLevel.HIGH.value: 3,
    UrgencyLevel.MEDIUM.value: 2,
    UrgencyLevel.LOW.value: 1,
}

# Donor blood type -> recipient types it can serve
DONOR_COMPATIBILITY: Dict[str, List[str]] = {
    "O-": ["O-", "O+", "A-", "A+", "B-", "B+", "AB-", "AB+"],  # Universal donor
    "O+": ["O+", "A+", "B+", "AB+"],
    "A-": ["A-", "A+", "AB-", "AB+"],
    "A+": ["A+", "AB+"],
    "B-": ["B-", "B+", "AB-", "AB+"],
    "B+": ["B+", "AB+"],
    "AB-": ["AB-", "AB+"],
    "AB+": ["AB+"],  # Can only donate to AB+
}


def get_compatible_donor_groups(recipient_group: str) -> Set[str]:
    """
    Blood groups that can donate to the given recipient group.
    Unknown groups have no compatible donors.
    """
    return {
        donor_group
        for donor_group, recipients in DONOR_COMPATIBILITY.items()
        if recipient_group in recipients
    }


def can_donate_to(donor_group: str, recipient_group: str) -> bool:
    return recipient_group in DONOR_COMPATIBILITY.get(donor_group, [])


def parse_date(value: Any) -> Optional[date]:
    """Accept a date, datetime or ISO string; empty values become None"""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        logger.warning(f"Unparseable date value: {value!r}")
        return None


@dataclass(frozen=True)
class BloodRequest:
    """Data class representing a blood request"""
    patient_name: str
    blood_group: str
    country: str
    city: str
    urgency_level: str
    hospital_name: str
    contact_number: str
    preferred_date: Optional[str] = None
    preferred_time: Optional[str] = None
    id: Optional[str] = None
    status: Optional[str] = None
    created_at: Optional[str] = None

    @classmethod
    def from_record(cls, row: Dict[str, Any]) -> "BloodRequest":
        return cls(
            patient_name=row.get("patient_name", ""),
            blood_group=row.get("blood_group", ""),
            country=row.get("country", ""),
            city=row.get("city", ""),
            urgency_level=(row.get("urgency_level") or UrgencyLevel.MEDIUM.value).lower(),
            hospital_name=row.get("hospital_name", ""),
            contact_number=row.get("contact_number", ""),
            preferred_date=row.get("preferred_date"),
            preferred_time=row.get("preferred_time"),
            id=row.get("id"),
            status=row.get("status"),
            created_at=row.get("created_at"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Donor:
    """Data class representing a registered blood donor"""
    id: str
    full_name: str
    phone_number: str
    country: str
    city: str
    blood_group: str
    last_donation_date: Optional[date] = None
    is_available: bool = True
    created_at: Optional[datetime] = None
    email: Optional[str] = None

    @classmethod
    def from_record(cls, row: Dict[str, Any]) -> "Donor":
        created_at = row.get("created_at")
        if isinstance(created_at, str):
            try:
                created_at = datetime.fromisoformat(created_at.replace("Z", "+00:00"))
            except ValueError:
                logger.warning(f"Unparseable created_at for donor {row.get('id')}: {created_at!r}")
                created_at = None

        return cls(
            id=str(row.get("id", "")),
            full_name=row.get("full_name", ""),
            phone_number=row.get("phone_number", ""),
            country=row.get("country", ""),
            city=row.get("city", ""),
            blood_group=row.get("blood_group", ""),
            last_donation_date=parse_date(row.get("last_donation_date")),
            is_available=bool(row.get("is_available", False)),
            created_at=created_at,
            email=row.get("email"),
        )


@dataclass
class MatchingDonor:
    """A donor scored against one blood request"""
    id: str
    full_name: str
    phone_number: str
    country: str
    city: str
    blood_group: str
    last_donation_date: Optional[date]
    is_available: bool
    created_at: Optional[datetime]
    days_since_last_donation: Optional[int]
    compatibility_score: int
    urgency_priority: int
    email: Optional[str] = None

    @property
    def is_eligible(self) -> bool:
        return (self.days_since_last_donation is None
                or self.days_since_last_donation >= DONATION_INTERVAL_DAYS)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        if self.last_donation_date:
            data["last_donation_date"] = self.last_donation_date.isoformat()
        if self.created_at:
            data["created_at"] = self.created_at.isoformat()
        return data


def days_since(last_donation: Optional[date], today: Optional[date] = None) -> Optional[int]:
    if last_donation is None:
        return None
    return ((today or date.today()) - last_donation).days


def calculate_urgency_priority(urgency: str) -> int:
    """Map request urgency to a ranking priority (high 3, medium 2, low 1)"""
    return URGENCY_PRIORITY.get((urgency or "").lower(), 1)


def score_donor(donor: Donor, request: BloodRequest, today: Optional[date] = None) -> MatchingDonor:
    """
    Score a single donor against a request.

    Exact blood-group match scores 3, an O- donor 2, any other compatible
    donor 1. Same country adds 1 and same city (case-insensitive) adds 2 more.
    Urgency priority comes from the request.
    """
    if donor.blood_group == request.blood_group:
        score = 3
    elif donor.blood_group == BloodType.O_NEGATIVE.value:
        score = 2
    else:
        score = 1

    if donor.country == request.country:
        score += 1
    if donor.city.lower() == request.city.lower():
        score += 2

    return MatchingDonor(
        id=donor.id,
        full_name=donor.full_name,
        phone_number=donor.phone_number,
        country=donor.country,
        city=donor.city,
        blood_group=donor.blood_group,
        last_donation_date=donor.last_donation_date,
        is_available=donor.is_available,
        created_at=donor.created_at,
        days_since_last_donation=days_since(donor.last_donation_date, today),
        compatibility_score=score,
        urgency_priority=calculate_urgency_priority(request.urgency_level),
        email=donor.email,
    )


def rank_key(match: MatchingDonor) -> Tuple[int, int, int]:
    days = match.days_since_last_donation
    if days is None:
        days = NEVER_DONATED_RANK_DAYS
    return (-match.urgency_priority, -match.compatibility_score, -days)


def validate_request_data(request_data: Dict[str, Any]) -> Tuple[bool, str]:
    """Validate blood request data before it is stored"""
    required_fields = ['patient_name', 'blood_group', 'country', 'city',
                       'urgency_level', 'hospital_name', 'contact_number']

    for field_name in required_fields:
        if field_name not in request_data or not request_data[field_name]:
            return False, f"Missing required field: {field_name}"

    if request_data['blood_group'] not in VALID_BLOOD_GROUPS:
        return False, f"Invalid blood group: {request_data['blood_group']}"

    if str(request_data['urgency_level']).lower() not in VALID_URGENCY_LEVELS:
        return False, f"Invalid urgency level: {request_data['urgency_level']}"

    if request_data.get('preferred_date'):
        try:
            datetime.strptime(request_data['preferred_date'], "%Y-%m-%d")
        except ValueError:
            return False, "Invalid date format. Use YYYY-MM-DD"

    return True, ""


def validate_donor_data(donor_data: Dict[str, Any]) -> Tuple[bool, str]:
    """Validate donor registration data"""
    required_fields = ['full_name', 'phone_number', 'country', 'city', 'blood_group']

    for field_name in required_fields:
        if field_name not in donor_data or not donor_data[field_name]:
            return False, f"Missing required field: {field_name}"

    if donor_data['blood_group'] not in VALID_BLOOD_GROUPS:
        return False, f"Invalid blood group: {donor_data['blood_group']}"

    if donor_data.get('last_donation_date'):
        try:
            datetime.strptime(str(donor_data['last_donation_date'])[:10], "%Y-%m-%d")
        except ValueError:
            return False, "Invalid date format. Use YYYY-MM-DD"

    return True, ""


class DonorMatchingEngine:
    """
    Engine for finding and ranking donors for a blood request.

    Searches donors in the requester's city first. Only when the city
    search returns no rows at all does it widen to the whole country.
    """

    def __init__(self, store: RecordStore, city_limit: int = 5, country_limit: int = 10,
                 today_provider: Callable[[], date] = date.today):
        """
        Args:
            store: Record store holding the ``donors`` table
            city_limit: Maximum results when city-level donors exist
            country_limit: Maximum results for the country-wide fallback
            today_provider: Returns the current date (overridable in tests)
        """
        self.store = store
        self.city_limit = city_limit
        self.country_limit = country_limit
        self.today_provider = today_provider

    def _donor_query(self, groups: Set[str], request: BloodRequest):
        return (self.store.select("donors")
                .eq("is_available", True)
                .in_("blood_group", sorted(groups))
                .eq("country", request.country))

    async def find_matching_donors(self, request: BloodRequest) -> List[MatchingDonor]:
        """
        Find eligible donors for a request, best first.

        Raises:
            RecordStoreError: If the donors table cannot be queried
        """
        logger.info(f"Searching donors for {request.blood_group} in "
                    f"{request.city}, {request.country} (urgency {request.urgency_level})")

        groups = get_compatible_donor_groups(request.blood_group)
        if not groups:
            logger.warning(f"Invalid blood group {request.blood_group!r}, no compatible donors")
            return []

        rows = await self._donor_query(groups, request).ilike("city", f"%{request.city}%").execute()
        limit = self.city_limit

        if not rows:
            logger.info(f"No donors in {request.city}, widening search to {request.country}")
            rows = await self._donor_query(groups, request).execute()
            limit = self.country_limit

            if not rows:
                logger.info(f"No compatible donors found in {request.country}")
                return []

        today = self.today_provider()
        matches = []
        for row in rows:
            donor = Donor.from_record(row)
            if not donor.is_available:
                continue
            match = score_donor(donor, request, today)
            if match.is_eligible:
                matches.append(match)

        matches.sort(key=rank_key)
        matches = matches[:limit]

        logger.info(f"Found {len(matches)} eligible donors out of {len(rows)} candidates")
        return matches

    def get_donation_eligibility(self, days_since_last_donation: Optional[int]) -> Tuple[bool, str]:
        """Eligibility status and a human-readable reason"""
        if days_since_last_donation is None:
            return True, "First-time donor - eligible"

        if days_since_last_donation >= DONATION_INTERVAL_DAYS:
            return True, f"Eligible ({days_since_last_donation} days since last donation)"

        days_remaining = DONATION_INTERVAL_DAYS - days_since_last_donation
        return False, f"Not eligible (needs {days_remaining} more days)"

    def format_donor_info(self, donor: MatchingDonor) -> str:
        if donor.days_since_last_donation is None:
            donation_status = "First-time donor"
        else:
            donation_status = f"Last donated {donor.days_since_last_donation} days ago"

        return (f"{donor.full_name} ({donor.blood_group}) - {donor.city}, {donor.country} - "
                f"{donor.phone_number} - {donation_status}")
