import json

import pytest

from app.services.storage import JsonLogStore, build_stores


class TestJsonLogStore:
    @pytest.mark.asyncio
    async def test_missing_file_reads_empty(self, tmp_path):
        assert await JsonLogStore(tmp_path / "nothing.json").read_all() == []

    @pytest.mark.asyncio
    async def test_append_keeps_order_and_stamps(self, tmp_path):
        """Appends land at the end with a saved_at stamp"""
        log = JsonLogStore(tmp_path / "log.json")
        await log.append({"id": "1"})
        await log.append({"id": "2", "saved_at": "2024-01-01T00:00:00Z"})

        records = await log.read_all()
        assert [r["id"] for r in records] == ["1", "2"]
        assert records[0]["saved_at"]
        assert records[1]["saved_at"] == "2024-01-01T00:00:00Z"

    @pytest.mark.asyncio
    async def test_corrupt_file_reads_empty(self, tmp_path):
        path = tmp_path / "log.json"
        path.write_text("{not json", encoding="utf-8")
        assert await JsonLogStore(path).read_all() == []

    @pytest.mark.asyncio
    async def test_written_file_is_a_json_array(self, tmp_path):
        path = tmp_path / "log.json"
        await JsonLogStore(path).append({"message": "¿Hola?"})

        data = json.loads(path.read_text(encoding="utf-8"))
        assert isinstance(data, list)
        assert data[0]["message"] == "¿Hola?"


class TestMessageStore:
    """Lookups by phone number"""

    @pytest.mark.asyncio
    async def test_local_and_international_numbers_match(self, stores):
        messages, _ = stores
        await messages.save({"id": "m1", "to": "+50761234567", "message": "Hola", "type": "outgoing"})
        await messages.save({"id": "m2", "from": "50761234567", "message": "Gracias", "type": "incoming"})
        await messages.save({"id": "m3", "to": "+50762223333", "message": "Otro", "type": "outgoing"})

        found = await messages.by_number("6123-4567")

        assert [m["id"] for m in found] == ["m1", "m2"]
        assert found[0]["is_to_candidate"] and not found[0]["is_from_candidate"]
        assert found[1]["is_from_candidate"]
        assert found[1]["candidate_phone"] == "6123-4567"

    @pytest.mark.asyncio
    async def test_short_numbers_do_not_suffix_match(self, stores):
        messages, _ = stores
        await messages.save({"id": "m1", "to": "+50761234567"})
        assert await messages.by_number("4567") == []

    @pytest.mark.asyncio
    async def test_recent(self, stores):
        messages, _ = stores
        for i in range(5):
            await messages.save({"id": str(i)})
        assert [m["id"] for m in await messages.recent(2)] == ["3", "4"]


class TestReferenceStore:
    @pytest.mark.asyncio
    async def test_merged_dedups_and_sorts_newest_first(self, tmp_path):
        """Records in both logs appear once"""
        _, references = build_stores(str(tmp_path))
        await references.save({"id": "r1", "timestamp": "2024-05-01T10:00:00Z"})
        await references.save({"id": "r2", "timestamp": "2024-05-03T10:00:00Z"})
        await references.history.append({"id": "r1", "timestamp": "2024-05-01T10:00:00Z"})
        await references.history.append({"id": "h1", "timestamp": "2024-05-02T10:00:00Z"})

        merged = await references.merged()

        assert [r["id"] for r in merged] == ["r2", "h1", "r1"]

    @pytest.mark.asyncio
    async def test_merged_mixes_numeric_and_iso_timestamps(self, tmp_path):
        _, references = build_stores(str(tmp_path))
        await references.save({"id": "iso", "timestamp": "2024-05-01T10:00:00Z"})
        await references.save({"id": "millis", "timestamp": 1714730400000})
        await references.history.append({"id": "seconds", "timestamp": 1714644000})

        merged = await references.merged()

        assert [r["id"] for r in merged] == ["millis", "seconds", "iso"]

    @pytest.mark.asyncio
    async def test_for_candidate(self, stores):
        """Case-insensitive candidate name, optionally narrowed by phone"""
        _, references = stores
        await references.save({"id": "1", "reference_for": "Ana López", "from": "50767778888"})
        await references.save({"id": "2", "candidate_name": "ana lópez", "from": "50761111111"})
        await references.save({"id": "3", "reference_for": "Carlos Gómez", "from": "50767778888"})

        assert [r["id"] for r in await references.for_candidate("Ana López")] == ["1", "2"]
        assert [r["id"] for r in await references.for_candidate("Ana López", "6777-8888")] == ["1"]
