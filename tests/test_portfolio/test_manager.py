"""Tests for account summaries, account removal and category assignment."""

import pytest

from portfolio.manager import PortfolioManager, plan_account_removal, summarize_accounts

USER = "user-1"


def _acct(name, shares, value):
    return {"account": name, "shares": shares, "value": value}


@pytest.fixture
def seeded(portfolio_dao):
    portfolio_dao.save_import(
        USER,
        [
            {"symbol": "AAPL", "company_name": "Apple", "shares": 15, "current_price": 100.0,
             "current_value": 1500.0, "cost_basis": 1200.0,
             "accounts": [_acct("Individual", 10, 1000.0), _acct("Roth IRA", 5, 500.0)]},
            {"symbol": "MSFT", "company_name": "Microsoft", "shares": 2, "current_price": 400.0,
             "current_value": 800.0, "cost_basis": 600.0,
             "accounts": [_acct("Roth IRA", 2, 800.0)]},
            {"symbol": "NVDA", "company_name": "Nvidia", "shares": 3, "current_price": 100.0,
             "current_value": 300.0, "cost_basis": 200.0,
             "accounts": [_acct("Individual", 3, 300.0)]},
        ],
        cash_balance=250.0,
        cash_accounts=[_acct("Roth IRA", 250.0, 250.0)],
        file_names=["positions.csv"],
    )
    return PortfolioManager(USER, portfolio_dao)


class TestPlanAccountRemoval:
    def test_untouched_positions_are_ignored(self):
        positions = [{"id": 1, "symbol": "A", "account": [_acct("X", 1, 10.0)], "cost_basis": 5.0}]
        assert plan_account_removal(positions, "Y") == ([], [])

    def test_proportional_cost_basis(self):
        positions = [{
            "id": 1, "symbol": "A", "cost_basis": 1200.0, "current_price": 100.0,
            "account": [_acct("X", 10, 1000.0), _acct("Y", 5, 500.0)],
        }]
        deletes, updates = plan_account_removal(positions, "Y")
        assert deletes == []
        (u,) = updates
        assert u["shares"] == 10
        assert u["current_value"] == 1000.0
        assert u["current_price"] == 100.0
        assert u["cost_basis"] == pytest.approx(800.0)
        assert u["account"] == [_acct("X", 10, 1000.0)]

    def test_zero_value_keeps_cost_basis(self):
        positions = [{
            "id": 1, "symbol": "A", "cost_basis": 50.0, "current_price": 7.0,
            "account": [_acct("X", 0, 0.0), _acct("Y", 0, 0.0)],
        }]
        _, updates = plan_account_removal(positions, "Y")
        assert updates[0]["cost_basis"] == 50.0
        assert updates[0]["current_price"] == 7.0


class TestSummarizeAccounts:
    def test_groups_by_account(self):
        positions = [
            {"account": [_acct("A", 1, 100.0), _acct("B", 1, 300.0)]},
            {"account": [_acct("A", 1, 50.0), _acct("", 1, 999.0)]},
        ]
        summaries = summarize_accounts(positions)
        assert [(s.name, s.position_count, s.total_value) for s in summaries] == [
            ("B", 1, 300.0), ("A", 2, 150.0),
        ]


class TestPortfolioManager:
    def test_account_summary(self, seeded):
        names = [a.name for a in seeded.account_summary()]
        assert names == ["Individual", "Roth IRA"]

    def test_remove_account(self, seeded, portfolio_dao):
        result = seeded.remove_account("Roth IRA")
        assert result.deleted == ["MSFT"]
        assert result.updated == ["AAPL"]

        positions = {p["symbol"]: p for p in portfolio_dao.get_positions(USER)}
        assert set(positions) == {"AAPL", "NVDA"}
        aapl = positions["AAPL"]
        assert aapl["shares"] == 10
        assert aapl["current_value"] == 1000.0
        assert aapl["cost_basis"] == pytest.approx(800.0)
        assert [b["account"] for b in aapl["account"]] == ["Individual"]
        assert positions["NVDA"]["cost_basis"] == 200.0

    def test_remove_account_leaves_cash(self, seeded):
        seeded.remove_account("Roth IRA")
        assert seeded.get_cash_balance() == 250.0

    def test_no_position_keeps_removed_account(self, seeded, portfolio_dao):
        seeded.remove_account("Individual")
        for p in portfolio_dao.get_positions(USER):
            assert all(b["account"] != "Individual" for b in p["account"])
            assert p["shares"] == sum(b["shares"] for b in p["account"])

    def test_clear_all(self, seeded, portfolio_dao):
        assert seeded.clear_all() == 3
        assert portfolio_dao.get_positions(USER) == []
        assert portfolio_dao.get_summary(USER) is None

    def test_assign_tier_implies_category(self, seeded, settings_store, portfolio_dao):
        seeded.settings_store = settings_store
        assert seeded.assign("aapl", tier="C2")
        aapl = portfolio_dao.get_position(USER, "AAPL")
        assert (aapl["category"], aapl["tier"]) == ("CORE", "C2")

    def test_assign_rejects_mismatched_tier(self, seeded, settings_store):
        seeded.settings_store = settings_store
        with pytest.raises(ValueError, match="belongs to CORE"):
            seeded.assign("AAPL", category="TITAN", tier="C1")

    def test_assign_unknown_symbol(self, seeded, settings_store):
        seeded.settings_store = settings_store
        assert seeded.assign("ZZZZ", category="TITAN") is False

    def test_print_status(self, seeded, settings_store, capsys):
        seeded.settings_store = settings_store
        seeded.print_status()
        out = capsys.readouterr().out
        assert "PORTFOLIO STATUS" in out
        assert "AAPL" in out
        assert "$2,850.00" in out
