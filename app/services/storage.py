"""
Append-only JSON array logs on local disk: WhatsApp messages and the two
reference response logs.
"""
import asyncio
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from app.services.matcher import phone_digits
from app.services.summarizer import message_time
from app.utils.exceptions import ExceptionContext, StorageError
from app.utils.logging_config import get_logger

logger = get_logger(__name__)

MESSAGES_FILE = "whatsapp-messages.json"
REFERENCE_RESPONSES_FILE = "reference-responses.json"
REFERENCE_HISTORY_FILE = "referenceHistory.json"
EPOCH = datetime.fromtimestamp(0, tz=timezone.utc)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class JsonLogStore:
    """A JSON array file with serialized appends.

    A missing file reads as empty; a corrupt file is logged and reads as
    empty so one bad write does not take the agent down.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = asyncio.Lock()

    def _read_sync(self) -> List[Dict[str, Any]]:
        if not self.path.exists():
            return []
        try:
            data = json.loads(self.path.read_text(encoding="utf-8") or "[]")
        except ValueError as e:
            logger.error(f"Corrupt JSON log {self.path}: {e}")
            return []
        return data if isinstance(data, list) else []

    def _write_sync(self, records: List[Dict[str, Any]]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(records, indent=2, ensure_ascii=False), encoding="utf-8")
        tmp.replace(self.path)

    async def read_all(self) -> List[Dict[str, Any]]:
        loop = asyncio.get_running_loop()
        with ExceptionContext("read_json_log", logger, path=str(self.path)):
            return await loop.run_in_executor(None, self._read_sync)

    async def append(self, record: Dict[str, Any]) -> Dict[str, Any]:
        record = {**record, "saved_at": record.get("saved_at") or utc_now_iso()}
        loop = asyncio.get_running_loop()
        async with self._lock:
            try:
                records = await loop.run_in_executor(None, self._read_sync)
                records.append(record)
                await loop.run_in_executor(None, self._write_sync, records)
            except OSError as e:
                raise StorageError(f"Could not append to {self.path}: {e}", path=str(self.path), cause=e)
        return record


class MessageStore:
    """WhatsApp message log"""

    def __init__(self, log: JsonLogStore):
        self.log = log

    async def save(self, message: Dict[str, Any]) -> Dict[str, Any]:
        return await self.log.append(message)

    async def all(self) -> List[Dict[str, Any]]:
        return await self.log.read_all()

    async def recent(self, limit: int = 10) -> List[Dict[str, Any]]:
        messages = await self.log.read_all()
        return messages[-limit:]

    async def by_number(self, phone: str) -> List[Dict[str, Any]]:
        """Messages to or from `phone`, compared on digits only.

        Local and international spellings of the same number match on their
        trailing digits.
        """
        wanted = phone_digits(phone)
        if not wanted:
            return []
        matched = []
        for msg in await self.log.read_all():
            sender, recipient = phone_digits(msg.get("from")), phone_digits(msg.get("to"))
            from_candidate = _digits_match(sender, wanted)
            to_candidate = _digits_match(recipient, wanted)
            if from_candidate or to_candidate:
                matched.append({
                    **msg,
                    "candidate_phone": phone,
                    "is_from_candidate": from_candidate,
                    "is_to_candidate": to_candidate,
                })
        return matched


def _digits_match(a: str, b: str) -> bool:
    if not a or not b:
        return False
    if a == b:
        return True
    shorter, longer = (a, b) if len(a) < len(b) else (b, a)
    return len(shorter) >= 8 and longer.endswith(shorter)


class ReferenceStore:
    """The structured reference log plus the legacy reference history log"""

    def __init__(self, responses: JsonLogStore, history: JsonLogStore):
        self.responses = responses
        self.history = history

    async def save(self, response: Dict[str, Any]) -> Dict[str, Any]:
        return await self.responses.append(response)

    async def structured(self) -> List[Dict[str, Any]]:
        return await self.responses.read_all()

    async def merged(self) -> List[Dict[str, Any]]:
        """Both logs, deduplicated on (id, timestamp), newest first"""
        seen = set()
        merged = []
        for record in (await self.responses.read_all()) + (await self.history.read_all()):
            key = (record.get("id"), record.get("timestamp"))
            if key in seen:
                continue
            seen.add(key)
            merged.append(record)
        merged.sort(key=lambda r: message_time(r) or EPOCH, reverse=True)
        return merged

    async def for_candidate(self, candidate_name: str, phone: Optional[str] = None) -> List[Dict[str, Any]]:
        wanted = (candidate_name or "").strip().lower()
        records = [
            r for r in await self.responses.read_all()
            if (r.get("reference_for") or r.get("candidate_name") or "").strip().lower() == wanted
        ]
        if phone:
            digits = phone_digits(phone)
            records = [r for r in records if _digits_match(phone_digits(r.get("from") or r.get("reference_phone")), digits)]
        return records


def build_stores(data_dir: str):
    base = Path(data_dir)
    messages = MessageStore(JsonLogStore(base / MESSAGES_FILE))
    references = ReferenceStore(
        JsonLogStore(base / REFERENCE_RESPONSES_FILE),
        JsonLogStore(base / REFERENCE_HISTORY_FILE),
    )
    return messages, references
