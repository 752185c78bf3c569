"""Shared test fixtures for the portfolio tracker test suite."""

import pytest
from unittest.mock import MagicMock

import database.connection as _conn_mod
from database.connection import DatabaseConnection
from database.schema import initialize_database


@pytest.fixture
def test_db(tmp_path):
    """Create a fresh isolated test database with schema initialized."""
    db_path = tmp_path / "test.db"
    # Bypass the singleton to get a fresh DB per test
    db = DatabaseConnection(db_path)
    initialize_database(db)
    # Temporarily replace the global singleton so any code calling
    # get_connection() without arguments also uses the test DB
    old_db = _conn_mod._db
    _conn_mod._db = db
    yield db
    _conn_mod._db = old_db


@pytest.fixture
def portfolio_dao(test_db):
    from database.models import PortfolioDAO
    return PortfolioDAO(db=test_db)


@pytest.fixture
def settings_dao(test_db):
    from database.models import SettingsDAO
    return SettingsDAO(db=test_db)


@pytest.fixture
def settings_store(settings_dao):
    from portfolio.allocation import SettingsStore
    return SettingsStore(settings_dao)


@pytest.fixture
def alert_dao(test_db):
    from database.models import PriceAlertDAO
    return PriceAlertDAO(db=test_db)


@pytest.fixture
def watchlist_dao(test_db):
    from database.models import WatchlistDAO
    return WatchlistDAO(db=test_db)


@pytest.fixture
def tag_dao(test_db):
    from database.models import TagDAO
    return TagDAO(db=test_db)


@pytest.fixture
def group_dao(test_db):
    from database.models import WatchlistGroupDAO
    return WatchlistGroupDAO(db=test_db)


@pytest.fixture
def screen_dao(test_db):
    from database.models import ScreenDAO
    return ScreenDAO(db=test_db)


@pytest.fixture
def fake_response():
    """Build a MagicMock that quacks like a requests.Response."""
    def _make(payload=None, status=200, json_error=False):
        resp = MagicMock()
        resp.status_code = status
        resp.ok = 200 <= status < 300
        if json_error:
            resp.json.side_effect = ValueError("not json")
        else:
            resp.json.return_value = payload
        return resp
    return _make


@pytest.fixture
def fidelity_csv():
    """Two accounts, a money-market row, a pending row and a footer."""
    return (
        "Positions as of 03/14/2025\n"
        "\n"
        "Account Number,Account Name,Symbol,Description,Quantity,Last Price,"
        "Current Value,Cost Basis Total\n"
        "X1,Individual,AAPL,APPLE INC,10,$150.00,\"$1,500.00\",$1200.00\n"
        "X1,Individual,SPAXX**,HELD IN MONEY MARKET,,,$500.25,\n"
        "X2,Roth IRA,AAPL,APPLE INC,5,$150.00,$750.00,$700.00\n"
        "X2,Roth IRA,MSFT,MICROSOFT CORP,4,$400.00,\"$1,600.00\",\"$1,000.00\"\n"
        "X2,Roth IRA,Pending Activity,,,,$25.00,\n"
        "Total,,,,,,\"$4,350.25\",\n"
        "\n"
        "\"Date downloaded 03/14/2025\"\n"
    )


@pytest.fixture
def brokerage_csv():
    return (
        "Account Name,Symbol,Description,Quantity,Last Price,Current Value,Cost Basis Total\n"
        "Brokerage,NVDA,NVIDIA CORP,20,$120.00,\"$2,400.00\",\"$2,000.00\"\n"
        "Brokerage,AAPL,Apple Inc,2,$150.00,$300.00,$250.00\n"
        "Brokerage,FCASH**,Cash,,,$100.00,\n"
    )
