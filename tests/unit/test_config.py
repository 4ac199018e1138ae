"""
test_config.py - Raffle catalog loading.
"""

import json

import pytest

from raffle_platform.config import DEFAULT_RAFFLES, catalog, load_raffles
from raffle_platform.domain import Raffle


def _write(tmp_path, data):
    path = tmp_path / "raffles.json"
    path.write_text(json.dumps(data), encoding="utf-8")
    return str(path)


class TestDefaultCatalog:

    def test_default_catalog(self):
        raffles = load_raffles("")
        assert sorted(raffles) == ["1", "2", "3", "4"]
        assert raffles["1"].ticket_price == 0.0023
        assert raffles["1"].capacity == 80
        assert raffles["4"].is_free
        assert raffles["4"].max_tickets_per_wallet == 1

    def test_cost(self):
        raffles = catalog(DEFAULT_RAFFLES)
        assert raffles["1"].cost(5) == 0.0115
        assert raffles["4"].cost(1) == 0.0

    def test_duplicate_ids_rejected(self):
        raffle = Raffle(id="1", name="x", ticket_price=0.1, capacity=10, prize_amount=1.0)
        with pytest.raises(ValueError):
            catalog([raffle, raffle])


class TestCatalogFile:

    def test_loads_json_catalog(self, tmp_path):
        path = _write(tmp_path, [
            {"id": 7, "name": "Weekly", "ticket_price": 0.01, "capacity": 30,
             "prize_amount": 0.2, "max_tickets_per_wallet": 5},
            {"id": "free", "capacity": 10, "prize_amount": 0.05},
        ])
        raffles = load_raffles(path)
        assert sorted(raffles) == ["7", "free"]
        assert raffles["7"].max_tickets_per_wallet == 5
        assert raffles["free"].is_free
        assert raffles["free"].name == "Raffle free"
        assert raffles["free"].currency == "BNB"

    @pytest.mark.parametrize("data", [
        [],
        {"id": "1"},
        [{"id": "1", "prize_amount": 0.1}],
        [{"id": "1", "capacity": 0, "prize_amount": 0.1}],
        [{"id": "1", "capacity": 5, "prize_amount": 0.1, "ticket_price": -1}],
        [{"id": "1", "capacity": "many", "prize_amount": 0.1}],
        [{"id": "1", "capacity": 5, "prize_amount": 0.1},
         {"id": "1", "capacity": 6, "prize_amount": 0.2}],
    ])
    def test_invalid_catalogs(self, tmp_path, data):
        with pytest.raises(ValueError):
            load_raffles(_write(tmp_path, data))
