import itertools
import threading
from collections import Counter, deque
from datetime import datetime, timedelta

TIME_RANGES = {
    '1h': timedelta(hours=1),
    '24h': timedelta(hours=24),
    '7d': timedelta(days=7),
    '30d': timedelta(days=30),
}


class ErrorLogBuffer:
    """Ring buffer laporan error dari client (hilang saat proses restart)."""

    def __init__(self, capacity=1000):
        self._items = deque(maxlen=capacity)
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    @property
    def capacity(self):
        return self._items.maxlen

    def __len__(self):
        return len(self._items)

    def add(self, report):
        with self._lock:
            entry = dict(report)
            entry['id'] = next(self._ids)
            entry['timestamp'] = datetime.utcnow()
            entry['resolved'] = False
            self._items.append(entry)
            return entry

    def query(self, time_range='24h', level=None, resolved=None, limit=100, now=None):
        now = now or datetime.utcnow()
        since = now - TIME_RANGES.get(time_range, TIME_RANGES['24h'])
        with self._lock:
            items = [e for e in self._items if e['timestamp'] >= since]

        if level:
            items = [e for e in items if e.get('level') == level]
        if resolved is not None:
            items = [e for e in items if e['resolved'] is resolved]

        items.sort(key=lambda e: (e['timestamp'], e['id']), reverse=True)
        return items[:limit], items

    def resolve(self, entry_id):
        with self._lock:
            for entry in self._items:
                if entry['id'] == entry_id:
                    entry['resolved'] = True
                    entry['resolved_at'] = datetime.utcnow()
                    return entry
        return None

    @staticmethod
    def summarize(items, top=5):
        by_level = Counter(e.get('level', 'error') for e in items)
        messages = Counter(e.get('message') for e in items)
        return {
            'total': len(items),
            'by_level': dict(by_level),
            'unresolved': sum(1 for e in items if not e['resolved']),
            'top_messages': [
                {'message': message, 'count': count}
                for message, count in messages.most_common(top)
            ],
        }

    def clear(self):
        with self._lock:
            self._items.clear()
