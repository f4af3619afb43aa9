"""
Multi-step donation creation flow.

    ItemEntry -> PhotoReview -> ScheduleReview -> AddressConfirm -> Submitted

Form state accumulates in memory across steps and nothing is written until
``submit()``. The final insert happens once: an "already created" flag plus
the tracker's dedup guard keyed by title and pickup time.
"""
import threading
import time
import uuid
from enum import Enum

from storage import StorageError, image_from_data_url
from utils import parse_quantity


class WizardStep(str, Enum):
    ITEM_ENTRY = 'item_entry'
    PHOTO_REVIEW = 'photo_review'
    SCHEDULE_REVIEW = 'schedule_review'
    ADDRESS_CONFIRM = 'address_confirm'
    SUBMITTED = 'submitted'


STEP_ORDER = list(WizardStep)

# Abandoned drafts are dropped after an hour without activity
DRAFT_MAX_AGE = 60 * 60


class WizardError(Exception):
    pass


def _text(fields, key):
    value = fields.get(key)
    if value is None:
        return ''
    if not isinstance(value, str):
        raise WizardError(f'{key} must be text')
    return value.strip()


class DonationWizard:
    def __init__(self, repository, tracker, owner_id=None):
        self.id = str(uuid.uuid4())
        self.owner_id = owner_id
        self.repository = repository
        self.tracker = tracker
        self.step = WizardStep.ITEM_ENTRY
        self.state = {}
        self.donation = None
        self.error = None
        self._created = False

    # ------------------------------------------
    #  Step validation
    # ------------------------------------------
    def _item_entry(self, fields):
        title = _text(fields, 'title')
        quantity = _text(fields, 'quantity')
        if not title or not quantity:
            raise WizardError('Please fill in all fields')
        amount = parse_quantity(quantity)
        if amount is not None and amount <= 0:
            raise WizardError('Quantity must be a positive amount')
        return {
            'title': title,
            'quantity': quantity,
            'description': _text(fields, 'description'),
            'allergens': list(fields.get('allergens') or []),
        }

    def _photo_review(self, fields):
        image = _text(fields, 'image')
        if image:
            try:
                image_from_data_url(image)
            except StorageError as e:
                raise WizardError(str(e))
        return {'image': image or None, 'is_under_60c': bool(fields.get('is_under_60c', False))}

    def _schedule_review(self, fields):
        pickup_time = _text(fields, 'pickup_time')
        slot = fields.get('time_slot') or {}
        if not isinstance(slot, dict):
            raise WizardError('time_slot must be an object')
        start, end = _text(slot, 'start'), _text(slot, 'end')
        if not pickup_time and start and end:
            pickup_time = f"{start} until {end}"
        if not pickup_time:
            raise WizardError('Please choose a pickup time')
        return {
            'pickup_time': pickup_time,
            'pickup_days': list(fields.get('pickup_days') or []),
            'is_recurring': bool(fields.get('is_recurring', False)),
        }

    def _address_confirm(self, fields):
        address = _text(fields, 'address')
        if not address:
            raise WizardError('Please enter a pickup address')
        return {'address': address, 'driver_instructions': _text(fields, 'driver_instructions')}

    # ------------------------------------------
    #  Navigation
    # ------------------------------------------
    def advance(self, **fields):
        validators = {
            WizardStep.ITEM_ENTRY: self._item_entry,
            WizardStep.PHOTO_REVIEW: self._photo_review,
            WizardStep.SCHEDULE_REVIEW: self._schedule_review,
        }
        if self.step == WizardStep.ADDRESS_CONFIRM:
            # Last step only stores its fields; submit() moves on
            self.state.update(self._address_confirm(fields))
            return self.step
        if self.step == WizardStep.SUBMITTED:
            raise WizardError('Donation already submitted')

        self.state.update(validators[self.step](fields))
        self.step = STEP_ORDER[STEP_ORDER.index(self.step) + 1]
        return self.step

    def back(self):
        if self.step == WizardStep.SUBMITTED:
            raise WizardError('Donation already submitted')
        if self.step != WizardStep.ITEM_ENTRY:
            self.step = STEP_ORDER[STEP_ORDER.index(self.step) - 1]
        return self.step

    # ------------------------------------------
    #  Final persist
    # ------------------------------------------
    def build_donation(self):
        description = self.state.get('description') or self.state['title']
        if self.state.get('allergens'):
            description = f"{description}\nAllergens: {', '.join(self.state['allergens'])}"
        if self.state.get('driver_instructions'):
            description = f"{description}\nInstructions for the driver: {self.state['driver_instructions']}"
        return {
            'title': self.state['title'],
            'description': description,
            'quantity': self.state['quantity'],
            'location': self.state['address'],
            'pickup_time': self.state['pickup_time'],
        }

    @property
    def dedup_key(self):
        return f"create-donation:{self.state.get('title')}:{self.state.get('pickup_time')}"

    def submit(self):
        if self._created:
            return self.donation
        if self.step != WizardStep.ADDRESS_CONFIRM or 'address' not in self.state:
            raise WizardError('Donation details are incomplete')

        image = None
        if self.state.get('image'):
            image = image_from_data_url(self.state['image'], filename=self.state['title'])

        def persist():
            result = self.repository.create(self.build_donation(), image=image)
            if result.error:
                raise WizardError(result.error)
            return result.data

        # DuplicateOperationError propagates; the first submit is still running
        try:
            donation = self.tracker.prevent_duplicates(self.dedup_key, persist, {'draft_id': self.id})
        except WizardError as e:
            self.error = str(e)
            raise

        self._created = True
        self.donation = donation
        self.error = None
        self.step = WizardStep.SUBMITTED
        return donation

    def to_dict(self):
        return {
            'id': self.id,
            'step': self.step.value,
            'state': self.state,
            'error': self.error,
            'donation': self.donation.to_dict() if self.donation else None,
        }


class DraftStore:
    """
    In-process wizard drafts, lost on restart.

    Submitted drafts are discarded by the submit route; abandoned ones are
    dropped once untouched for ``max_age`` seconds.
    """

    def __init__(self, max_age=DRAFT_MAX_AGE, clock=time.monotonic):
        self.max_age = max_age
        self.clock = clock
        self._drafts = {}
        self._touched = {}
        self._lock = threading.Lock()

    def __len__(self):
        return len(self._drafts)

    def prune(self):
        cutoff = self.clock() - self.max_age
        with self._lock:
            for draft_id in [d for d, seen in self._touched.items() if seen < cutoff]:
                self._drafts.pop(draft_id, None)
                del self._touched[draft_id]

    def add(self, wizard):
        self.prune()
        with self._lock:
            self._drafts[wizard.id] = wizard
            self._touched[wizard.id] = self.clock()
        return wizard

    def get(self, draft_id, owner_id):
        self.prune()
        wizard = self._drafts.get(draft_id)
        if wizard is None or str(wizard.owner_id) != str(owner_id):
            return None
        with self._lock:
            self._touched[draft_id] = self.clock()
        return wizard

    def discard(self, draft_id):
        with self._lock:
            self._drafts.pop(draft_id, None)
            self._touched.pop(draft_id, None)

    def clear(self):
        with self._lock:
            self._drafts.clear()
            self._touched.clear()
