import pytest
from models import Donation
from utils import get_extension
from realtime import ChangeFeed
from repository import DonationRepository, Result
from storage import ObjectStorage
from tracking import TransactionTracker, DuplicateOperationError
from wizard import DonationWizard, DraftStore, WizardError, WizardStep

PNG_DATA_URL = "data:image/png;base64,iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNk+M9QDwADhgGAWjR9awAAAABJRU5ErkJggg=="

ITEM = {"title": "Soup", "quantity": "5 portions", "description": "Pea soup", "allergens": ["celery"]}
SCHEDULE = {"time_slot": {"start": "today", "end": "18:00"}}
ADDRESS = {"address": "Kauppatori 1", "driver_instructions": "Ring twice"}


class FlakyRepository:
    """Fails the first create, then behaves."""
    def __init__(self, inner):
        self.inner = inner
        self.calls = 0

    def create(self, donation, image=None):
        self.calls += 1
        if self.calls == 1:
            return Result(None, "network down")
        return self.inner.create(donation, image=image)


@pytest.fixture
def tracker():
    return TransactionTracker()


@pytest.fixture
def repo(app, donor_user, tracker, tmp_path):
    return DonationRepository(
        identity=lambda: donor_user.id,
        storage=ObjectStorage(str(tmp_path / "bucket")),
        feed=ChangeFeed(),
        tracker=tracker
    )


@pytest.fixture
def wizard(repo, tracker, donor_user):
    return DonationWizard(repo, tracker, owner_id=donor_user.id)


def walk_to_address(wizard, image=None):
    wizard.advance(**ITEM)
    wizard.advance(image=image)
    wizard.advance(**SCHEDULE)
    wizard.advance(**ADDRESS)
    return wizard

# ==========================================
#  1. NAVIGATION
# ==========================================

def test_steps_in_order(wizard):
    assert wizard.step == WizardStep.ITEM_ENTRY
    assert wizard.advance(**ITEM) == WizardStep.PHOTO_REVIEW
    assert wizard.advance() == WizardStep.SCHEDULE_REVIEW
    assert wizard.advance(**SCHEDULE) == WizardStep.ADDRESS_CONFIRM
    assert wizard.state["pickup_time"] == "today until 18:00"
    assert Donation.query.count() == 0


def test_back_keeps_state(wizard):
    wizard.advance(**ITEM)
    assert wizard.back() == WizardStep.ITEM_ENTRY
    assert wizard.back() == WizardStep.ITEM_ENTRY
    assert wizard.state["title"] == "Soup"


@pytest.mark.parametrize("fields,message", [
    ({"title": "Soup"}, "Please fill in all fields"),
    ({"title": "Soup", "quantity": "0 kg"}, "Quantity must be a positive amount"),
])
def test_item_entry_validation(wizard, fields, message):
    with pytest.raises(WizardError) as exc:
        wizard.advance(**fields)
    assert str(exc.value) == message
    assert wizard.step == WizardStep.ITEM_ENTRY


def test_photo_must_be_image_data(wizard):
    wizard.advance(**ITEM)
    with pytest.raises(WizardError):
        wizard.advance(image="garbage")


def test_schedule_requires_pickup_time(wizard):
    wizard.advance(**ITEM)
    wizard.advance()
    with pytest.raises(WizardError):
        wizard.advance(time_slot={"start": "today"})

# ==========================================
#  2. SUBMIT
# ==========================================

def test_submit_incomplete(wizard):
    wizard.advance(**ITEM)
    with pytest.raises(WizardError):
        wizard.submit()


def test_submit_creates_one_donation(wizard):
    walk_to_address(wizard, image=PNG_DATA_URL)

    first = wizard.submit()
    second = wizard.submit()

    assert second is first
    assert wizard.step == WizardStep.SUBMITTED
    assert Donation.query.count() == 1

    row = Donation.query.first()
    assert row.location == "Kauppatori 1"
    assert row.pickup_time == "today until 18:00"
    assert "Allergens: celery" in row.description
    assert "Instructions for the driver: Ring twice" in row.description
    assert row.image_url.endswith(".png")


def test_submit_while_running_is_rejected(wizard, tracker):
    walk_to_address(wizard)

    with pytest.raises(DuplicateOperationError):
        tracker.prevent_duplicates(wizard.dedup_key, wizard.submit)
    assert Donation.query.count() == 0


def test_submit_retry_after_failure(repo, tracker, donor_user):
    flaky = FlakyRepository(repo)
    wizard = walk_to_address(DonationWizard(flaky, tracker, owner_id=donor_user.id))

    with pytest.raises(WizardError):
        wizard.submit()
    assert wizard.error == "network down"
    assert wizard.step == WizardStep.ADDRESS_CONFIRM

    wizard.submit()
    assert wizard.error is None
    assert Donation.query.count() == 1


def test_advance_after_submit_fails(wizard):
    walk_to_address(wizard).submit()
    with pytest.raises(WizardError):
        wizard.advance(**ITEM)
    with pytest.raises(WizardError):
        wizard.back()

# ==========================================
#  3. DRAFT STORE
# ==========================================

def test_draft_store_scoped_to_owner(wizard, donor_user, receiver_user):
    store = DraftStore()
    store.add(wizard)
    assert store.get(wizard.id, donor_user.id) is wizard
    assert store.get(wizard.id, receiver_user.id) is None

    store.discard(wizard.id)
    assert store.get(wizard.id, donor_user.id) is None

# ==========================================
#  4. DRAFT ROUTES
# ==========================================

def test_draft_flow_over_http(client, donor_headers):
    draft = client.post('/api/donation-drafts', headers=donor_headers).get_json()
    assert draft['step'] == "item_entry"
    url = f"/api/donation-drafts/{draft['id']}"

    assert client.patch(url, json=ITEM, headers=donor_headers).get_json()['step'] == "photo_review"
    assert client.patch(url, json={}, headers=donor_headers).get_json()['step'] == "schedule_review"
    assert client.post(f"{url}/back", headers=donor_headers).get_json()['step'] == "photo_review"
    client.patch(url, json={}, headers=donor_headers)
    client.patch(url, json=SCHEDULE, headers=donor_headers)

    response = client.post(f"{url}/submit", json=ADDRESS, headers=donor_headers)
    assert response.status_code == 201
    body = response.get_json()
    assert body['step'] == "submitted"
    assert body['donation']['title'] == "Soup"

    # The draft is gone once submitted; a late double-tap cannot insert again
    again = client.post(f"{url}/submit", headers=donor_headers)
    assert again.status_code == 404
    assert Donation.query.count() == 1


def test_draft_validation_error(client, donor_headers):
    draft = client.post('/api/donation-drafts', headers=donor_headers).get_json()
    response = client.patch(f"/api/donation-drafts/{draft['id']}", json={"title": "Soup"}, headers=donor_headers)
    assert response.status_code == 400
    assert response.get_json()['error'] == "Please fill in all fields"


def test_draft_not_visible_to_others(client, donor_headers, receiver_headers):
    draft = client.post('/api/donation-drafts', headers=donor_headers).get_json()
    response = client.get(f"/api/donation-drafts/{draft['id']}", headers=receiver_headers)
    assert response.status_code == 404


def test_submit_incomplete_draft(client, donor_headers):
    draft = client.post('/api/donation-drafts', headers=donor_headers).get_json()
    response = client.post(f"/api/donation-drafts/{draft['id']}/submit", headers=donor_headers)
    assert response.status_code == 400
    assert response.get_json()['draft']['step'] == "item_entry"


def test_submitted_drafts_are_released(client, donor_headers):
    drafts = get_extension('drafts')

    for title in ("Soup", "Bread", "Apples"):
        draft = client.post('/api/donation-drafts', headers=donor_headers).get_json()
        url = f"/api/donation-drafts/{draft['id']}"
        client.patch(url, json=dict(ITEM, title=title), headers=donor_headers)
        client.patch(url, json={}, headers=donor_headers)
        client.patch(url, json=SCHEDULE, headers=donor_headers)
        assert client.post(f"{url}/submit", json=ADDRESS, headers=donor_headers).status_code == 201

    assert len(drafts) == 0
    assert Donation.query.count() == 3


def test_non_text_field_is_rejected(client, donor_headers):
    draft = client.post('/api/donation-drafts', headers=donor_headers).get_json()
    url = f"/api/donation-drafts/{draft['id']}"

    response = client.patch(url, json={"title": 5, "quantity": "2 kg"}, headers=donor_headers)
    assert response.status_code == 400
    assert response.get_json()['error'] == "title must be text"

    response = client.patch(url, json=["title", "Soup"], headers=donor_headers)
    assert response.status_code == 400

# ==========================================
#  5. DRAFT EXPIRY & LISTENER FAILURES
# ==========================================

def test_abandoned_drafts_expire(wizard, donor_user, repo, tracker):
    now = [0.0]
    store = DraftStore(max_age=3600, clock=lambda: now[0])
    store.add(wizard)

    now[0] = 3000
    assert store.get(wizard.id, donor_user.id) is wizard

    # Reading a draft keeps it alive
    now[0] = 6000
    store.add(DonationWizard(repo, tracker, owner_id=donor_user.id))
    assert store.get(wizard.id, donor_user.id) is wizard

    now[0] = 6000 + 3601
    store.prune()
    assert len(store) == 0


def test_broken_listener_does_not_cause_second_insert(repo, tracker, donor_user):
    """The row is committed before listeners run; a listener failure must not trigger a retry insert."""
    calls = []

    def flaky_listener(event):
        calls.append(event)
        if len(calls) == 1:
            raise RuntimeError("socket down")

    repo.feed.subscribe("donations", flaky_listener)
    wizard = walk_to_address(DonationWizard(repo, tracker, owner_id=donor_user.id))

    first = wizard.submit()
    second = wizard.submit()

    assert second is first
    assert wizard.error is None
    assert Donation.query.count() == 1
