"""Tests for build_session wiring and end-to-end backup flows."""

from unittest.mock import AsyncMock

import httpx
import pytest

from stockbook.config import StockbookConfig
from stockbook.session import build_session
from stockbook.store import JsonFileStore, MemoryStore


def _response(status_code: int = 200, json_data=None) -> httpx.Response:
    return httpx.Response(
        status_code=status_code,
        json=json_data,
        request=httpx.Request("GET", "https://firebasestorage.googleapis.com/test"),
    )


class TestBuildSession:
    def test_memory_store_by_default(self) -> None:
        session = build_session(StockbookConfig())
        assert isinstance(session.ledger._store, MemoryStore)
        assert session.backups.backups == []

    def test_file_store_from_data_dir(self, tmp_path) -> None:
        session = build_session(StockbookConfig(data_dir=str(tmp_path)))
        assert isinstance(session.ledger._store, JsonFileStore)
        session.ledger.add_product("Widget", "Tools", 5, 10)
        assert (tmp_path / "products.json").exists()

    def test_threshold_from_config(self) -> None:
        session = build_session(StockbookConfig(low_stock_threshold=3))
        session.ledger.add_product("A", "c", 1, 2)
        session.ledger.add_product("B", "c", 1, 5)
        assert [p.name for p in session.ledger.get_low_stock_products()] == ["A"]

    @pytest.mark.asyncio
    async def test_start_without_bucket_does_not_schedule(self) -> None:
        session = build_session(StockbookConfig())
        await session.start()
        assert not session.scheduler.running
        await session.close()

    @pytest.mark.asyncio
    async def test_start_with_bucket_schedules(self) -> None:
        session = build_session(StockbookConfig(bucket="b", sync_interval_secs=999))
        session.sync._client.request = AsyncMock(return_value=_response(200, {"name": "x.json"}))
        await session.start()
        assert session.scheduler.running
        await session.close()
        assert not session.scheduler.running


class TestRemoteRoundTrip:
    @pytest.mark.asyncio
    async def test_upload_then_restore_downloaded_snapshot(self) -> None:
        session = build_session(StockbookConfig(bucket="b"))
        ledger = session.ledger
        pid = ledger.add_product("Widget", "Tools", 5, 10).id
        ledger.add_sale(pid, 3, 5)

        uploaded = {}

        async def fake_bucket(method, endpoint, params=None, content=None, headers=None):
            if method == "POST":
                uploaded[params["name"]] = content
                return _response(200, {"name": params["name"]})
            name = endpoint.rsplit("/", 1)[-1]
            return httpx.Response(
                200, content=uploaded[name].encode(), request=httpx.Request("GET", endpoint),
            )

        session.sync._client.request = AsyncMock(side_effect=fake_bucket)
        up = await session.sync.upload()
        assert up.success

        ledger.clear_all_data()
        assert ledger.products == []

        down = await session.sync.download(up.reference.file)
        assert down.success
        session.backups.restore_snapshot(down.snapshot)

        assert ledger.find_product(pid).qty == 7
        assert ledger.sales[0].total == 15
        await session.sync.close()
