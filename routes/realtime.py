from flask_socketio import join_room, leave_room
from realtime import TABLES, parse_filter, room_name


def _room(data):
    data = data or {}
    table = data.get('table')
    if table not in TABLES:
        raise ValueError(f"Unknown table: {table}")
    return room_name(table, parse_filter(data.get('filter')))


def handle_subscribe(data):
    """
    Client joins the change stream for a table, optionally filtered:
    {'table': 'requests', 'filter': 'user_id=eq.<id>'}
    """
    try:
        room = _room(data)
    except ValueError as e:
        return {'status': 'CHANNEL_ERROR', 'error': str(e)}

    join_room(room)
    return {'status': 'SUBSCRIBED', 'channel': room}


def handle_unsubscribe(data):
    try:
        room = _room(data)
    except ValueError as e:
        return {'status': 'CHANNEL_ERROR', 'error': str(e)}

    leave_room(room)
    return {'status': 'CLOSED', 'channel': room}


def register_socket_handlers(socketio):
    """Attaches the handlers to the server built by the latest ``init_app``."""
    socketio.on_event('subscribe', handle_subscribe)
    socketio.on_event('unsubscribe', handle_unsubscribe)
