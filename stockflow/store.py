"""
File-backed persistence for the two record collections.

Each collection is a single JSON array on disk, rewritten wholesale on
every change:

  items   outstanding_items.json   derived inventory units
  orders  orders.json              supplier orders as last merged

Write discipline
----------------
  - A write whose serialised bytes equal the current file is skipped:
    no file mutation, no change notification.
  - Writes go to a sibling temp file which is then renamed over the
    target, so a reader never sees a half-written array.
  - A missing file is created as an empty array on first access.
  - An unreadable or non-array file is logged and read as empty.
    editing() refuses to run on it, so only an explicit write()
    replaces it.

Subscribers registered with subscribe() receive the freshly parsed
collection after every write made through this store, and after any
external modification picked up by the polling watcher.
"""
import json
import logging
import os
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterator, Optional

from config import Config, ITEMS_FILE_KEY, ORDERS_FILE_KEY

logger = logging.getLogger(__name__)

ITEMS  = "items"
ORDERS = "orders"
COLLECTIONS = (ITEMS, ORDERS)

Listener = Callable[[list], None]


class CorruptCollection(Exception):
    """A collection file exists but does not hold a JSON array."""

    def __init__(self, collection: str, path: Path) -> None:
        super().__init__(f"{collection} collection {path} is unreadable; fix or replace the file")
        self.collection = collection
        self.path = path


class RecordStore:
    """Reads, writes and watches the items and orders collections."""

    def __init__(self, config: Config) -> None:
        self.config = config
        self._lock = threading.RLock()
        self._listeners: dict[str, list[Listener]] = {c: [] for c in COLLECTIONS}
        self._signatures: dict[str, Optional[tuple]] = {
            c: self._signature(self.path(c)) for c in COLLECTIONS
        }
        self._watcher: Optional[threading.Thread] = None
        self._stop = threading.Event()

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def path(self, collection: str) -> Path:
        if collection == ITEMS:
            return self.config.items_path
        if collection == ORDERS:
            return self.config.orders_path
        raise ValueError(f"Unknown collection {collection!r}. Must be one of {COLLECTIONS}")

    def relocate(self, collection: str, path: Optional[str | Path]) -> Path:
        """
        Point a collection at a different file, or back at the default
        location when path is None.  The override is persisted in the
        settings document and subscribers receive the collection found
        at the new location.
        """
        key = ITEMS_FILE_KEY if collection == ITEMS else ORDERS_FILE_KEY
        self.path(collection)
        with self._lock:
            if path:
                self.config.settings.set(key, str(Path(path)))
            else:
                self.config.settings.unset(key)
            new_path = self._ensure(collection)
            self._signatures[collection] = self._signature(new_path)
        logger.info("%s collection now at %s", collection, new_path)
        self._notify(collection, self.read(collection))
        return new_path

    # ------------------------------------------------------------------
    # Read / write
    # ------------------------------------------------------------------

    def read(self, collection: str) -> list[dict]:
        """Current records.  An unreadable file reads as empty."""
        return self._load(collection)[0]

    def write(self, collection: str, records: list) -> bool:
        """
        Persist records as the whole collection.
        Returns False when the content was identical and nothing was written.
        """
        records = list(records)
        payload = self.serialize(records).encode("utf-8")
        with self._lock:
            path = self._ensure(collection)
            try:
                current = path.read_bytes()
            except OSError:
                current = None
            if current == payload:
                logger.debug("%s unchanged, write skipped", path)
                return False

            tmp = path.with_name(path.name + ".tmp")
            tmp.write_bytes(payload)
            os.replace(tmp, path)
            self._signatures[collection] = self._signature(path)
            logger.info("Wrote %d %s record(s) to %s", len(records), collection, path)

        self._notify(collection, json.loads(payload))
        return True

    @contextmanager
    def editing(self, collection: str) -> Iterator[list[dict]]:
        """
        Read-modify-write as one step.

            with store.editing(ITEMS) as items:
                items[0]["notes1"] = "checked"

        The (possibly mutated) list is written when the block exits
        cleanly.  If the block raises, nothing is written.

        Raises CorruptCollection before the block runs when the file
        cannot be parsed; the file is left as it is.
        """
        with self._lock:
            records, ok = self._load(collection)
            if not ok:
                raise CorruptCollection(collection, self.path(collection))
            yield records
            self.write(collection, records)

    def serialize(self, records: list) -> str:
        indent = 2 if self.config.pretty_json else None
        return json.dumps(records, indent=indent, ensure_ascii=False)

    # ------------------------------------------------------------------
    # Change notification
    # ------------------------------------------------------------------

    def subscribe(
        self,
        collection: str,
        listener: Listener,
        emit_initial: bool = False,
    ) -> Callable[[], None]:
        """
        Register listener(records) for a collection.
        Returns a callable that removes the subscription.
        """
        self.path(collection)
        with self._lock:
            self._listeners[collection].append(listener)
        if emit_initial:
            listener(self.read(collection))

        def _unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners[collection]:
                    self._listeners[collection].remove(listener)

        return _unsubscribe

    def check_for_changes(self) -> list[str]:
        """
        Compare each backing file's mtime/size with the last one seen and
        notify subscribers of any collection that changed on disk.
        Returns the names of the changed collections.
        """
        changed = []
        for collection in COLLECTIONS:
            signature = self._signature(self.path(collection))
            with self._lock:
                if signature == self._signatures.get(collection):
                    continue
                self._signatures[collection] = signature
            logger.info("%s collection changed on disk", collection)
            changed.append(collection)
            self._notify(collection, self.read(collection))
        return changed

    def start_watching(self, interval: Optional[float] = None) -> None:
        if self._watcher and self._watcher.is_alive():
            return
        interval = interval if interval is not None else self.config.watch_interval_seconds
        self._stop.clear()
        self._watcher = threading.Thread(
            target=self._watch_loop, args=(interval,), name="record-store-watcher", daemon=True,
        )
        self._watcher.start()
        logger.info("Watching collections every %.1fs", interval)

    def stop_watching(self) -> None:
        self._stop.set()
        if self._watcher:
            self._watcher.join(timeout=5)
        self._watcher = None

    @property
    def watching(self) -> bool:
        return bool(self._watcher and self._watcher.is_alive())

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _watch_loop(self, interval: float) -> None:
        while not self._stop.wait(interval):
            try:
                self.check_for_changes()
            except OSError as exc:
                logger.warning("Collection watch failed: %s", exc)

    def _notify(self, collection: str, records: list) -> None:
        with self._lock:
            listeners = list(self._listeners[collection])
        for listener in listeners:
            try:
                listener(records)
            except Exception:
                logger.exception("Change listener for %s failed", collection)

    def _ensure(self, collection: str) -> Path:
        path = self.path(collection)
        if not path.exists():
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text("[]", encoding="utf-8")
            self._signatures[collection] = self._signature(path)
            logger.info("Initialised empty %s collection at %s", collection, path)
        return path

    def _load(self, collection: str) -> tuple[list[dict], bool]:
        """(records, ok).  ok is False when the file could not be read or parsed."""
        path = self._ensure(collection)
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as exc:
            logger.error("Cannot read %s collection %s: %s", collection, path, exc)
            return [], False
        return self._parse(collection, path, text)

    @staticmethod
    def _parse(collection: str, path: Path, text: str) -> tuple[list[dict], bool]:
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            logger.error("Corrupt %s collection %s, reading as empty: %s", collection, path, exc)
            return [], False
        if not isinstance(data, list):
            logger.error("%s collection %s is not a JSON array, reading as empty", collection, path)
            return [], False
        records = [r for r in data if isinstance(r, dict)]
        if len(records) != len(data):
            logger.warning("Dropped %d non-object entries from %s", len(data) - len(records), path)
        return records, True

    @staticmethod
    def _signature(path: Path) -> Optional[tuple]:
        try:
            st = path.stat()
        except OSError:
            return None
        return (st.st_mtime_ns, st.st_size)
