"""
Pytest configuration and shared fixtures for the inventory test suite.
"""
import json
import os
import shutil
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Generator

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
os.chdir(PROJECT_ROOT)


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current = self.current + timedelta(seconds=seconds)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Provide a temporary directory for test files."""
    tmp_path = tempfile.mkdtemp(prefix="stockflow_test_")
    yield Path(tmp_path)
    shutil.rmtree(tmp_path, ignore_errors=True)


@pytest.fixture
def test_config(temp_dir: Path) -> "Config":
    """Provide a test configuration with isolated directories."""
    from config import Config

    config = Config(
        data_dir=temp_dir / "data",
        sources_dir=temp_dir / "sources",
        backup_dir=temp_dir / "backups",
    )
    config.lease_seconds = 20
    config.sage_template = None
    config.ensure_data_dir()
    return config


@pytest.fixture
def test_store(test_config) -> "RecordStore":
    """Provide a record store over the isolated data directory."""
    from stockflow.store import RecordStore
    return RecordStore(test_config)


@pytest.fixture
def frozen_clock() -> FrozenClock:
    return FrozenClock(datetime(2025, 11, 28, 9, 50, tzinfo=timezone.utc))


@pytest.fixture
def service(test_config, frozen_clock) -> "InventoryService":
    """Inventory service with no sources registered and a frozen clock."""
    from stockflow.service import InventoryService
    return InventoryService(test_config, sources={}, clock=frozen_clock)


@pytest.fixture
def sample_world_orders() -> list[dict]:
    """Raw orders as a World list+detail scrape produces them."""
    return [
        {
            "reference": "W-1001",
            "warehouse": "World",
            "poNumber": "SHOP-22",
            "orderDateRaw": "Nov 28, 2025 09:50 AM",
            "orderDate": "2025-11-28T09:50:00",
            "status": "Shipped",
            "total": "$1,234.50",
            "source_invoice": "",
            "detailStored": True,
            "lineItems": [
                {
                    "partLineCode": "WIX",
                    "partNumber": "51515",
                    "partDescription": "Oil Filter",
                    "quantity": "4",
                    "costPrice": "$6.25",
                    "extended": "$25.00",
                },
                {
                    "partLineCode": "CORE WIX",
                    "partNumber": "51515",
                    "partDescription": "Core charge",
                    "quantity": 1,
                    "costPrice": "12.00",
                    "core": True,
                },
            ],
        },
        {
            "reference": "W-1002",
            "warehouse": "World",
            "orderDate": "2025-11-27T14:00:00",
            "status": "Open",
            "total": "89.99",
            "detailStored": False,
            "lineItems": [],
        },
    ]


@pytest.fixture
def json_source_dir(temp_dir: Path, sample_world_orders) -> Path:
    """A JSON drop folder for the 'world' source."""
    folder = temp_dir / "sources" / "world"
    folder.mkdir(parents=True, exist_ok=True)
    (folder / "orders.json").write_text(json.dumps(sample_world_orders), encoding="utf-8")
    return folder


@pytest.fixture
def csv_source_dir(temp_dir: Path) -> Path:
    """A CSV export folder for the 'transbec' source."""
    folder = temp_dir / "sources" / "transbec"
    folder.mkdir(parents=True, exist_ok=True)
    (folder / "orders.csv").write_text(
        "reference,order_date,warehouse,total,source_invoice,status\n"
        "TB-500,2025-10-02,Transbec,\"$1,020.00\",INV-9001,Invoiced\n"
        "TB-501,2025-10-03,Transbec,45.10,,Open\n",
        encoding="utf-8",
    )
    (folder / "order_lines.csv").write_text(
        "reference,line_code,part_number,description,quantity,cost_price,extended,core\n"
        "TB-500,MOT,FL-820S,Oil filter,10,$5.10,$51.00,\n"
        "TB-500,MOT,FL-820S,Oil filter core,1,$2.00,$2.00,yes\n"
        "TB-501,DOR,924-105,Bolt kit,2,$22.55,$45.10,\n"
        "TB-999,XXX,NOPE,Orphan line,1,1,1,\n",
        encoding="utf-8",
    )
    return folder


# Configure pytest markers
def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "api: API tests")
