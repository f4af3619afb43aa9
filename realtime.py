"""
Row-level change notifications.

``ChangeFeed`` fans INSERT/UPDATE/DELETE events out to in-process
subscribers and, when an emitter is attached, to Socket.IO rooms named
``public:<table>`` (plus ``public:<table>:<column>=eq.<value>`` for
filtered subscriptions). ``RealtimeStore`` keeps a local list in sync
with those events.
"""
import itertools
import threading
from collections import namedtuple

EVENT_TYPES = ('INSERT', 'UPDATE', 'DELETE')
TABLES = ('donations', 'requests', 'organizations')
FILTERABLE_COLUMNS = ('id', 'organization_id', 'user_id', 'status')


class ChangeEvent(namedtuple('ChangeEvent', ['table', 'event_type', 'new', 'old'])):
    __slots__ = ()

    @property
    def row(self):
        """The row the event is about: ``new`` for inserts/updates, ``old`` for deletes."""
        return self.old if self.event_type == 'DELETE' else self.new

    def to_payload(self):
        return {
            'schema': 'public',
            'table': self.table,
            'eventType': self.event_type,
            'new': self.new or {},
            'old': self.old or {},
        }


def parse_filter(expression):
    """
    ``'user_id=eq.42'`` -> ``('user_id', '42')``.
    Only equality filters on a few columns are supported.
    """
    if not expression:
        return None
    column, _, rest = expression.partition('=')
    op, _, value = rest.partition('.')
    if op != 'eq' or column not in FILTERABLE_COLUMNS or not value:
        raise ValueError(f'Unsupported filter: {expression}')
    return column, value


def room_name(table, row_filter=None):
    if row_filter is None:
        return f"public:{table}"
    column, value = row_filter
    return f"public:{table}:{column}=eq.{value}"


def _matches(row_filter, row):
    if row_filter is None:
        return True
    if callable(row_filter):
        return bool(row_filter(row))
    column, value = row_filter
    return str(row.get(column)) == str(value)


class Subscription:
    def __init__(self, feed, sub_id, table):
        self._feed = feed
        self.id = sub_id
        self.table = table
        self.active = True

    def unsubscribe(self):
        if self.active:
            self._feed._remove(self.id)
            self.active = False


class ChangeFeed:
    def __init__(self, emitter=None):
        # emitter(event_name, payload, room) pushes to remote clients
        self.emitter = emitter
        self._subscribers = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def subscribe(self, table, callback, row_filter=None):
        """
        ``row_filter`` is either a ``'column=eq.value'`` string or a
        predicate taking the row dict.
        """
        if table not in TABLES:
            raise ValueError(f'Unknown table: {table}')
        if isinstance(row_filter, str):
            row_filter = parse_filter(row_filter)

        with self._lock:
            sub_id = next(self._ids)
            self._subscribers[sub_id] = (table, row_filter, callback)
        return Subscription(self, sub_id, table)

    def _remove(self, sub_id):
        with self._lock:
            self._subscribers.pop(sub_id, None)

    def subscriber_count(self, table=None):
        return sum(1 for t, _, _ in self._subscribers.values() if table is None or t == table)

    def publish(self, event):
        if event.event_type not in EVENT_TYPES:
            raise ValueError(f'Unknown event type: {event.event_type}')

        row = event.row or {}
        with self._lock:
            targets = [cb for table, row_filter, cb in self._subscribers.values()
                       if table == event.table and _matches(row_filter, row)]

        for callback in targets:
            callback(event)

        if self.emitter is not None:
            payload = event.to_payload()
            self.emitter('postgres_changes', payload, room_name(event.table))
            for column in FILTERABLE_COLUMNS:
                if row.get(column) is not None:
                    self.emitter('postgres_changes', payload, room_name(event.table, (column, row[column])))


class RealtimeStore:
    """
    Local list state kept in sync with a table's change events.

    INSERT prepends, UPDATE replaces the row with the same id, DELETE removes
    it. Events are applied in arrival order with no conflict resolution.
    """

    def __init__(self, feed, table, row_filter=None, initial=()):
        self.feed = feed
        self.table = table
        self.row_filter = row_filter
        self.items = list(initial)
        self._subscription = None

    @property
    def mounted(self):
        return self._subscription is not None

    def mount(self):
        if self._subscription is None:
            self._subscription = self.feed.subscribe(self.table, self.apply, self.row_filter)
        return self

    def unmount(self):
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

    def apply(self, event):
        if event.event_type == 'INSERT':
            self.items = [event.new] + self.items
        elif event.event_type == 'UPDATE':
            self.items = [event.new if item.get('id') == event.new.get('id') else item
                          for item in self.items]
        elif event.event_type == 'DELETE':
            self.items = [item for item in self.items if item.get('id') != event.old.get('id')]

    def replace(self, items):
        self.items = list(items)

    def __enter__(self):
        return self.mount()

    def __exit__(self, *exc):
        self.unmount()
        return False
