# locks.py
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List


class KeyedLock:
  """One mutex per key, created on first use.

  Writers that touch the same invoice (or assign numbers for the same user)
  queue behind each other; different keys never block one another. An entry
  lives only while some thread holds or waits on it, so the registry stays
  as small as the number of keys in flight.
  """

  def __init__(self):
    self._guard = threading.Lock()
    # key -> [lock, holders + waiters]
    self._locks: Dict[str, List] = {}

  def _acquire_entry(self, key: str) -> threading.Lock:
    with self._guard:
      entry = self._locks.get(key)
      if entry is None:
        entry = self._locks[key] = [threading.Lock(), 0]
      entry[1] += 1
      return entry[0]

  def _release_entry(self, key: str) -> None:
    with self._guard:
      entry = self._locks[key]
      entry[1] -= 1
      if entry[1] == 0:
        del self._locks[key]

  @contextmanager
  def hold(self, key: str) -> Iterator[None]:
    lock = self._acquire_entry(key)
    try:
      with lock:
        yield
    finally:
      self._release_entry(key)

  def __len__(self) -> int:
    with self._guard:
      return len(self._locks)


invoice_locks = KeyedLock()
user_locks = KeyedLock()
