import logging
import time
from collections import namedtuple

from extensions import db
from models import Donation
from realtime import ChangeEvent
from records import DONATION_STATUSES, from_row, to_insert
from storage import DONATION_IMAGES_BUCKET
from utils import current_identity, parse_quantity

log = logging.getLogger('zipli')

Result = namedtuple('Result', ['data', 'error'])

REQUIRED_FIELDS = ('title', 'description', 'quantity', 'location', 'pickup_time')


class RepositoryError(Exception):
    pass


class DonationRepository:
    """
    CRUD for the ``donations`` table on behalf of the current identity.

    Every public method returns a ``Result(data, error)``; exceptions are
    converted to their message and never retried. One instance is built per
    application in ``create_app`` and owns the available-donations cache.
    """

    def __init__(self, identity=current_identity, storage=None, feed=None, tracker=None,
                 cache_ttl=60, clock=time.monotonic):
        self.identity = identity
        self.storage = storage
        self.feed = feed
        self.tracker = tracker
        self.cache_ttl = cache_ttl
        self.clock = clock
        self._cached = None
        self._fetched_at = 0.0

    # ------------------------------------------
    #  Helpers
    # ------------------------------------------
    def _user_id(self):
        user_id = self.identity()
        if not user_id:
            raise RepositoryError('Not authenticated')
        return str(user_id)

    def _publish(self, event_type, new=None, old=None):
        # The row is already committed; a broken listener must not fail the write
        if self.feed is None:
            return
        try:
            self.feed.publish(ChangeEvent('donations', event_type, new, old))
        except Exception as e:
            if self.tracker is not None:
                self.tracker.error(f"Failed to publish {event_type} for donations", e)
            else:
                log.exception(f"Failed to publish {event_type} for donations")

    def _fail(self, message, e, default):
        db.session.rollback()
        if self.tracker is not None:
            self.tracker.error(message, e)
        return Result(None, str(e) or default)

    # ------------------------------------------
    #  Cache
    # ------------------------------------------
    def invalidate(self):
        self._cached = None
        self._fetched_at = 0.0

    def clear(self):
        self.invalidate()
        if self.tracker is not None:
            self.tracker.clear_duplicates()

    # ------------------------------------------
    #  Operations
    # ------------------------------------------
    def create(self, donation, image=None):
        """Uploads ``image`` (if any) first, then inserts an 'active' row."""
        object_name = None
        try:
            user_id = self._user_id()

            values = to_insert(donation, user_id)
            if not all(values.get(f) for f in REQUIRED_FIELDS):
                raise RepositoryError('Missing required fields')

            amount = parse_quantity(values['quantity'])
            if amount is not None and amount <= 0:
                raise RepositoryError('Quantity must be a positive amount')

            if image is not None:
                if self.storage is None:
                    raise RepositoryError('Image storage is not configured')
                object_name = self.storage.upload(DONATION_IMAGES_BUCKET, image, prefix=user_id)
                values['image_url'] = self.storage.get_public_url(DONATION_IMAGES_BUCKET, object_name)

            row = Donation(**values)
            db.session.add(row)
            db.session.commit()
        except Exception as e:
            if object_name is not None:
                self.storage.remove(DONATION_IMAGES_BUCKET, object_name)
            return self._fail('Error in create donation', e, 'Failed to create donation')

        record = from_row(row)
        self.invalidate()
        self._publish('INSERT', new=record.to_dict())
        return Result(record, None)

    def list(self):
        """Donations owned by the current identity, newest first."""
        try:
            user_id = self._user_id()
            rows = Donation.query.filter_by(organization_id=user_id) \
                .order_by(Donation.created_at.desc()).all()
        except Exception as e:
            return self._fail('Error fetching donations', e, 'Failed to fetch donations')
        return Result([from_row(r) for r in rows], None)

    def list_available(self):
        """All active donations, newest first. Served from cache inside the TTL window."""
        now = self.clock()
        if self._cached is not None and (now - self._fetched_at) < self.cache_ttl:
            return Result(self._cached, None)

        try:
            rows = Donation.query.filter_by(status='active') \
                .order_by(Donation.created_at.desc()).all()
        except Exception as e:
            return self._fail('Error fetching available donations', e, 'Failed to fetch available donations')

        self._cached = [from_row(r) for r in rows]
        self._fetched_at = now
        return Result(self._cached, None)

    def get(self, donation_id):
        try:
            self._user_id()
            row = db.session.get(Donation, donation_id)
            if row is None:
                raise RepositoryError('Donation not found')
        except Exception as e:
            return self._fail('Error fetching donation', e, 'Failed to fetch donation')
        return Result(from_row(row), None)

    def update_status(self, donation_id, status):
        """Owner-scoped status change. Completed rows never match again."""
        try:
            user_id = self._user_id()
            if status not in DONATION_STATUSES:
                raise RepositoryError(f'Invalid status: {status}')

            row = Donation.query.filter_by(id=donation_id, organization_id=user_id, status='active').first()
            if row is None:
                raise RepositoryError('Donation not found or already completed')

            old = from_row(row).to_dict()
            if status != row.status:
                row.status = status
                db.session.commit()
        except Exception as e:
            return self._fail('Error updating donation status', e, 'Failed to update donation status')

        record = from_row(row)
        if record.status != old['status']:
            self.invalidate()
            self._publish('UPDATE', new=record.to_dict(), old=old)
        return Result(record, None)

    def rescue(self, donation_id):
        """Receiver claim: active -> completed, recording the rescuer."""
        try:
            user_id = self._user_id()
            row = Donation.query.filter_by(id=donation_id, status='active').first()
            if row is None:
                raise RepositoryError('This donation is no longer available or has already been claimed.')
            if row.organization_id == user_id:
                raise RepositoryError('You cannot rescue your own donation')

            old = from_row(row).to_dict()
            matched = Donation.query.filter_by(id=donation_id, status='active') \
                .update({'status': 'completed', 'rescuer_id': user_id}, synchronize_session='fetch')
            if matched == 0:
                raise RepositoryError('This donation is no longer available or has already been claimed.')
            db.session.commit()
            db.session.refresh(row)
        except Exception as e:
            return self._fail('Error rescuing donation', e, 'Failed to rescue donation')

        record = from_row(row)
        self.invalidate()
        self._publish('UPDATE', new=record.to_dict(), old=old)
        return Result(record, None)

    def delete(self, donation_id):
        """Owner-scoped delete. Returns the number of rows removed (0 for non-owners)."""
        try:
            user_id = self._user_id()
            row = Donation.query.filter_by(id=donation_id, organization_id=user_id).first()
            if row is None:
                return Result(0, None)
            old = from_row(row).to_dict()
            db.session.delete(row)
            db.session.commit()
        except Exception as e:
            return self._fail('Error deleting donation', e, 'Failed to delete donation')

        self.invalidate()
        self._publish('DELETE', old=old)
        return Result(1, None)
