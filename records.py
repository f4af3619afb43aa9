"""
Canonical donation record.

Application code works with ``DonationRecord`` only. The functions at the
bottom translate to and from the ``donations`` table (and the older
camelCase payload shape still sent by some clients).
"""
from dataclasses import dataclass, asdict
from typing import Optional

DONATION_STATUSES = ('active', 'completed')

# camelCase keys from the legacy item shape -> column names
_LEGACY_KEYS = {
    'pickupTime': 'pickup_time',
    'createdAt': 'created_at',
    'imageUrl': 'image_url',
    'organizationId': 'organization_id',
}

INSERT_FIELDS = ('title', 'description', 'quantity', 'location', 'distance', 'pickup_time', 'image_url')


@dataclass
class DonationRecord:
    id: str
    organization_id: str
    title: str
    description: str
    quantity: str
    location: str
    pickup_time: str
    status: str = 'active'
    distance: str = ''
    image_url: Optional[str] = None
    rescuer_id: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @property
    def is_active(self):
        return self.status == 'active'

    def to_dict(self):
        return asdict(self)


def _iso(value):
    return value.isoformat() if value is not None else None


def from_row(row):
    """Builds a record from a ``Donation`` model instance."""
    return DonationRecord(
        id=row.id,
        organization_id=row.organization_id,
        title=row.title,
        description=row.description,
        quantity=row.quantity,
        location=row.location,
        pickup_time=row.pickup_time,
        status=row.status,
        distance=row.distance or '',
        image_url=row.image_url,
        rescuer_id=row.rescuer_id,
        created_at=_iso(row.created_at),
        updated_at=_iso(row.updated_at),
    )


def normalize_payload(payload):
    """Maps legacy camelCase keys onto column names, dropping unknown keys."""
    data = {}
    for key, value in (payload or {}).items():
        key = _LEGACY_KEYS.get(key, key)
        if key in INSERT_FIELDS:
            data[key] = value.strip() if isinstance(value, str) else value
    return data


def to_insert(payload, organization_id):
    """Column values for a new ``donations`` row. Status is always 'active'."""
    values = normalize_payload(payload)
    values.setdefault('distance', '')
    values['organization_id'] = organization_id
    values['status'] = 'active'
    return values
