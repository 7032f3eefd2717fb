"""
Audit Trail Module

Hash-chained, append-only audit log with SHA-256 for tamper detection, and a
background emitter that takes audit records off the request path.
"""

import hashlib
import json
import logging
import queue
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from .storage import StorageInterface, StorageRecord, _to_storable


logger = logging.getLogger(__name__)


class AuditAction:
    """Action tags used across the system"""
    LOGIN = "LOGIN"
    LOGOUT = "LOGOUT"
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    OPEN = "OPEN"
    UPDATE_STATUS = "UPDATE_STATUS"
    FREEZE = "FREEZE"
    UNFREEZE = "UNFREEZE"
    CLOSE = "CLOSE"
    ASSIGN_ROLES = "ASSIGN_ROLES"
    CHANGE_PASSWORD = "CHANGE_PASSWORD"
    RESET_PASSWORD = "RESET_PASSWORD"
    VERIFY_KYC = "VERIFY_KYC"


class AuditModule:
    """Module tags used across the system"""
    AUTHENTICATION = "AUTHENTICATION"
    ADMINISTRATION = "ADMINISTRATION"
    CASA = "CASA"
    CUSTOMER = "CUSTOMER"


def serialize_snapshot(value: Any) -> Optional[str]:
    """Serialize an old/new value snapshot to JSON text"""
    if value is None:
        return None
    if hasattr(value, 'to_dict'):
        value = value.to_dict()
    try:
        return json.dumps(_to_storable(value), sort_keys=True, default=str)
    except (TypeError, ValueError):
        logger.warning("Failed to serialize audit snapshot, falling back to str()")
        return str(value)


@dataclass
class AuditLogRecord(StorageRecord):
    """
    Immutable audit record with hash chaining for tamper detection
    """
    sequence: int
    action: str
    module: str
    entity_type: Optional[str]
    entity_id: Optional[str]
    previous_hash: str
    current_hash: str
    user_id: Optional[str] = None
    username: Optional[str] = None
    old_value: Optional[str] = None
    new_value: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    description: Optional[str] = None

    def calculate_hash(self) -> str:
        """
        Calculate SHA-256 hash of this record
        Hash includes all fields except current_hash to prevent circular reference
        """
        hash_data = self.to_dict()
        hash_data.pop('current_hash', None)
        hash_data.pop('updated_at', None)

        json_data = json.dumps(hash_data, sort_keys=True, separators=(',', ':'))
        return hashlib.sha256(json_data.encode('utf-8')).hexdigest()

    def verify_hash(self) -> bool:
        """Verify that the current hash is correct"""
        return self.current_hash == self.calculate_hash()


class AuditTrail:
    """
    Hash-chained audit trail. Records are appended only; nothing here updates
    or deletes a stored record.
    """

    def __init__(self, storage: StorageInterface, table_name: str = "audit_logs"):
        self.storage = storage
        self.table_name = table_name
        self._lock = threading.Lock()
        self._last_hash = ""
        self._sequence = 0
        self._load_chain_head()

    def _load_chain_head(self) -> None:
        """Load hash and sequence of the most recent record"""
        records = self.storage.load_all(self.table_name)
        if records:
            head = max(records, key=lambda r: r.get('sequence', 0))
            self._last_hash = head.get('current_hash', "")
            self._sequence = head.get('sequence', 0)

    def record(
        self,
        action: str,
        module: str,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        user_id: Optional[str] = None,
        username: Optional[str] = None,
        old_value: Optional[str] = None,
        new_value: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        description: Optional[str] = None,
    ) -> AuditLogRecord:
        """
        Append an audit record to the chain

        Args:
            action: Action tag (LOGIN, OPEN, FREEZE, ...)
            module: Module tag (AUTHENTICATION, CASA, ...)
            entity_type: Type of the affected entity
            entity_id: ID of the affected entity
            user_id: Acting user
            username: Acting user's login name
            old_value: JSON snapshot before the change
            new_value: JSON snapshot after the change
            ip_address: Client address, if known
            user_agent: Client user agent, truncated to 500 characters
            description: Free-text description

        Returns:
            Stored AuditLogRecord
        """
        with self._lock:
            now = datetime.now(timezone.utc)
            record = AuditLogRecord(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                sequence=self._sequence + 1,
                action=action,
                module=module,
                entity_type=entity_type,
                entity_id=entity_id,
                previous_hash=self._last_hash,
                current_hash="",
                user_id=user_id,
                username=username,
                old_value=old_value,
                new_value=new_value,
                ip_address=ip_address,
                user_agent=user_agent[:500] if user_agent else None,
                description=description,
            )
            record.current_hash = record.calculate_hash()

            self.storage.save(self.table_name, record.id, record.to_dict())

            self._sequence = record.sequence
            self._last_hash = record.current_hash
            return record

    def get_records_for_entity(self, entity_type: str, entity_id: str) -> List[AuditLogRecord]:
        """All records for one entity, oldest first"""
        data = self.storage.find(self.table_name, {'entity_type': entity_type, 'entity_id': entity_id})
        return sorted((AuditLogRecord.from_dict(d) for d in data), key=lambda r: r.sequence)

    def search(
        self,
        user_id: Optional[str] = None,
        module: Optional[str] = None,
        action: Optional[str] = None,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[AuditLogRecord]:
        """Search audit records, newest first"""
        filters = {}
        if user_id is not None:
            filters['user_id'] = user_id
        if module is not None:
            filters['module'] = module
        if action is not None:
            filters['action'] = action

        records = [AuditLogRecord.from_dict(d) for d in self.storage.find(self.table_name, filters)]
        if start_time:
            records = [r for r in records if r.created_at >= start_time]
        if end_time:
            records = [r for r in records if r.created_at <= end_time]

        records.sort(key=lambda r: r.sequence, reverse=True)
        if limit:
            records = records[:limit]
        return records

    def list_actions(self) -> List[str]:
        return sorted({r['action'] for r in self.storage.load_all(self.table_name)})

    def list_modules(self) -> List[str]:
        return sorted({r['module'] for r in self.storage.load_all(self.table_name)})

    def count(self) -> int:
        return self.storage.count(self.table_name)

    def verify_integrity(self) -> Dict[str, Any]:
        """
        Verify the integrity of the entire audit chain

        Returns:
            Dictionary with integrity check results
        """
        result = {
            'valid': True,
            'total_records': 0,
            'hash_errors': [],
            'chain_breaks': [],
        }

        records = sorted(
            (AuditLogRecord.from_dict(d) for d in self.storage.load_all(self.table_name)),
            key=lambda r: r.sequence,
        )
        result['total_records'] = len(records)

        previous_hash = ""
        for position, record in enumerate(records):
            if not record.verify_hash():
                result['valid'] = False
                result['hash_errors'].append({'record_id': record.id, 'position': position})
            if record.previous_hash != previous_hash:
                result['valid'] = False
                result['chain_breaks'].append({'record_id': record.id, 'position': position})
            previous_hash = record.current_hash

        return result


_STOP = object()


class AuditEmitter:
    """
    Fire-and-forget audit emitter.

    ``log_action`` only enqueues; a daemon worker thread resolves the username
    and appends to the trail. Neither enqueueing nor persisting ever raises
    into the caller: a full queue, a stopped worker or a storage failure is
    logged and the record dropped.
    """

    def __init__(
        self,
        trail: AuditTrail,
        max_queue_size: int = 10000,
        username_resolver: Optional[Callable[[str], Optional[str]]] = None,
        enabled: bool = True,
    ):
        self.trail = trail
        self.username_resolver = username_resolver
        self.enabled = enabled
        self._queue: "queue.Queue[Any]" = queue.Queue(maxsize=max_queue_size)
        self._worker: Optional[threading.Thread] = None
        self._running = False
        self._state_lock = threading.Lock()

    def start(self) -> None:
        """Start the background worker"""
        with self._state_lock:
            if self._running:
                return
            self._running = True
            self._worker = threading.Thread(target=self._run, name="audit-emitter", daemon=True)
            self._worker.start()

    def stop(self, timeout: float = 5.0) -> None:
        """Drain pending records and stop the worker"""
        with self._state_lock:
            if not self._running:
                return
            self._running = False
            worker = self._worker
        try:
            self._queue.put(_STOP, timeout=timeout)
        except queue.Full:
            logger.error("Audit queue full while stopping; pending records may be lost")
        if worker:
            worker.join(timeout)

    @property
    def is_running(self) -> bool:
        return self._running

    def log_action(
        self,
        user_id: Optional[str],
        action: str,
        module: str,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        old_value: Any = None,
        new_value: Any = None,
        description: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> bool:
        """
        Enqueue an audit record.

        Returns:
            True if the record was queued, False if it was dropped
        """
        if not self.enabled:
            return False
        try:
            if not self._running:
                logger.warning("Audit emitter not running; dropping %s/%s record", module, action)
                return False
            self._queue.put_nowait({
                'user_id': user_id,
                'action': action,
                'module': module,
                'entity_type': entity_type,
                'entity_id': entity_id,
                'old_value': serialize_snapshot(old_value),
                'new_value': serialize_snapshot(new_value),
                'description': description,
                'ip_address': ip_address,
                'user_agent': user_agent,
            })
            return True
        except queue.Full:
            logger.warning("Audit queue full; dropping %s/%s record", module, action)
        except Exception:
            logger.exception("Failed to enqueue audit record")
        return False

    def flush(self) -> None:
        """Block until every queued record has been processed"""
        if self._running:
            self._queue.join()

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                self._persist(item)
            finally:
                self._queue.task_done()

    def _persist(self, item: Dict[str, Any]) -> None:
        try:
            username = None
            if item['user_id'] and self.username_resolver:
                username = self.username_resolver(item['user_id'])
            self.trail.record(username=username, **item)
            logger.debug("Audit log created: %s - %s - %s",
                         item['action'], item['module'], item['entity_type'])
        except Exception:
            logger.exception("Failed to create audit log")
