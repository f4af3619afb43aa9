import logging
import os
import threading
import time
import traceback
import uuid
from datetime import datetime, timezone

log = logging.getLogger('zipli')


class DuplicateOperationError(Exception):
    """Raised when an operation with the same dedup key is still running."""


class TransactionTracker:
    """
    Console logger with transaction tracking.

    Every tracked operation gets a correlation id; start/end lines carry the
    duration. ``prevent_duplicates`` shares the same pending map, so one
    tracker instance per application gives a per-process double-submit guard.
    It does not coordinate across processes or devices.
    """

    def __init__(self, debug_enabled=None, logger=None):
        if debug_enabled is None:
            debug_enabled = os.getenv('ZIPLI_ENV', 'development') != 'production'
        self.debug_enabled = debug_enabled
        self.logger = logger or log
        self._pending = {}
        self._lock = threading.Lock()

    @staticmethod
    def generate_transaction_id():
        return str(uuid.uuid4())

    def log(self, message, level='info', context=None, transaction_id='none'):
        if level == 'debug' and not self.debug_enabled:
            return

        timestamp = datetime.now(timezone.utc).isoformat()
        line = f"[{timestamp}] [{level.upper()}] [{transaction_id}] {message}"
        if context:
            line = f"{line} {context}"

        if level == 'error':
            self.logger.error(line)
        elif level == 'warn':
            self.logger.warning(line)
        elif level == 'debug':
            self.logger.debug(line)
        else:
            self.logger.info(line)

    def error(self, message, exc, context=None, transaction_id='none'):
        error_context = dict(context or {})
        error_context.update({
            'error_name': type(exc).__name__,
            'error_message': str(exc),
            'stack': ''.join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
        })
        self.log(message, level='error', context=error_context, transaction_id=transaction_id)

    # ------------------------------------------
    #  Operation timing
    # ------------------------------------------
    def start_operation(self, operation_type, context=None):
        transaction_id = self.generate_transaction_id()
        with self._lock:
            self._pending[transaction_id] = {
                'start_time': time.monotonic(),
                'context': dict(context or {}),
                'operation_type': operation_type,
            }
        self.log(f"Started: {operation_type}", context=context, transaction_id=transaction_id)
        return transaction_id

    def end_operation(self, transaction_id, result=None, error=None):
        with self._lock:
            operation = self._pending.pop(transaction_id, None)

        if operation is None:
            self.log("Attempted to end unknown operation", level='warn', transaction_id=transaction_id)
            return

        duration_ms = int((time.monotonic() - operation['start_time']) * 1000)
        context = dict(operation['context'])
        context.update({
            'duration_ms': duration_ms,
            'success': error is None,
            'result': None if error else result,
        })

        if error is not None:
            self.error(f"Failed: {operation['operation_type']}", error, context, transaction_id)
        else:
            self.log(f"Completed: {operation['operation_type']}", context=context, transaction_id=transaction_id)

    def track_operation(self, operation_type, fn, context=None):
        """Runs ``fn(transaction_id)`` between start/end log lines. Errors are re-raised."""
        transaction_id = self.start_operation(operation_type, context)
        try:
            result = fn(transaction_id)
        except Exception as e:
            self.end_operation(transaction_id, error=e)
            raise
        self.end_operation(transaction_id, result)
        return result

    # ------------------------------------------
    #  Double-submit guard
    # ------------------------------------------
    def prevent_duplicates(self, key, fn, context=None):
        operation_key = f"dedup:{key}"

        with self._lock:
            if operation_key in self._pending:
                busy = True
            else:
                busy = False
                self._pending[operation_key] = {
                    'start_time': time.monotonic(),
                    'context': dict(context or {}),
                    'operation_type': operation_key,
                }

        if busy:
            self.log(f"Prevented duplicate operation: {key}", level='warn', context=context)
            raise DuplicateOperationError(f"Operation already in progress: {key}")

        try:
            return fn()
        finally:
            with self._lock:
                self._pending.pop(operation_key, None)

    def is_pending(self, key):
        return f"dedup:{key}" in self._pending

    def clear_duplicates(self):
        """Releases every dedup key. Timings of running operations are kept."""
        with self._lock:
            for key in [k for k in self._pending if k.startswith('dedup:')]:
                del self._pending[key]
