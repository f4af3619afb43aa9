from utils import parse_quantity

SORT_OPTIONS = ('all', 'amount-desc', 'amount-asc', 'distance-asc', 'distance-desc', 'pickup-asc', 'pickup-desc')


def _amount(donation):
    return parse_quantity(donation.quantity) or 0


def _distance(donation):
    try:
        return float((donation.distance or '').replace('km', '').strip())
    except ValueError:
        return 0


def _pickup_end(donation):
    # "today until 18:00" -> "18:00"
    parts = (donation.pickup_time or '').split('until ', 1)
    return parts[1] if len(parts) > 1 else ''


def sort_donations(donations, sort):
    """Returns a sorted copy; unknown options keep the original order."""
    if sort in ('amount-desc', 'amount-asc'):
        return sorted(donations, key=_amount, reverse=sort == 'amount-desc')
    if sort in ('distance-asc', 'distance-desc'):
        return sorted(donations, key=_distance, reverse=sort == 'distance-desc')
    if sort in ('pickup-asc', 'pickup-desc'):
        return sorted(donations, key=_pickup_end, reverse=sort == 'pickup-desc')
    return list(donations)
