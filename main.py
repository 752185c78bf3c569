"""Portfolio Tracker CLI - broker CSV import, allocation targets, watchlist alerts and screens."""

import argparse
import sys
from pathlib import Path

from tabulate import tabulate

from config.settings import get_settings
from config.logging_config import setup_logging
from database.connection import get_connection
from database.errors import DuplicateRecordError
from database.schema import initialize_database
from utils.console import header, ok, fail, warn
from utils.helpers import format_currency, format_pct


def _user(args) -> str:
    return args.user or get_settings().user_id


def cmd_import_csv(args):
    """Parse broker exports, preview the aggregate, then persist it."""
    from portfolio.importer import parse_broker_csvs, import_positions

    paths = [Path(p) for p in args.files]
    texts = [p.read_text(encoding="utf-8-sig") for p in paths]
    names = [p.name for p in paths]
    result = parse_broker_csvs(texts, names)

    print(header("CSV IMPORT PREVIEW"))
    for err in result.errors:
        print(f"  {fail(err)}")
    if not result.positions and not result.cash_balance:
        print("\n  Nothing to import.")
        return

    rows = [
        [p.symbol, p.company_name[:30], f"{p.shares:,.4f}", format_currency(p.current_price),
         format_currency(p.current_value), ", ".join(a.account for a in p.accounts if a.account)]
        for p in result.positions
    ]
    print(tabulate(rows, headers=["Symbol", "Company", "Shares", "Price", "Value", "Accounts"],
                   tablefmt="simple"))
    print(f"\n  Positions: {len(result.positions)}  Value: {format_currency(result.total_value)}"
          f"  Cash: {format_currency(result.cash_balance)}")

    if not args.yes:
        answer = input("\n  Import these positions? [y/N] ").strip().lower()
        if answer != "y":
            print("  Import cancelled.")
            return
    import_positions(_user(args), result, names)
    print(f"\n  {ok(f'Imported {len(result.positions)} positions from {result.file_count} file(s).')}")


def cmd_portfolio_status(args):
    """Show current portfolio status."""
    from portfolio.manager import PortfolioManager
    PortfolioManager(_user(args)).print_status()


def cmd_rebalance(args):
    """Show buy/trim guidance against allocation targets."""
    from portfolio.rebalancer import Rebalancer
    Rebalancer(_user(args)).print_plan()


def cmd_accounts(args):
    """List brokerage accounts and import history."""
    from portfolio.manager import PortfolioManager
    mgr = PortfolioManager(_user(args))
    accounts = mgr.account_summary()
    print(header("ACCOUNTS"))
    if not accounts:
        print("\n  No account data found in positions.")
    else:
        print(tabulate([[a.name, a.position_count, format_currency(a.total_value)] for a in accounts],
                       headers=["Account", "Positions", "Value"], tablefmt="simple"))
    history = mgr.portfolio_dao.get_import_history(mgr.user_id)
    if history:
        print("\n  Import history:\n")
        print(tabulate(
            [[h["imported_at"], ", ".join(h["file_names"]), h["total_positions"],
              format_currency(h["total_value"])] for h in history[:args.limit]],
            headers=["Imported", "Files", "Positions", "Value"], tablefmt="simple",
        ))


def cmd_remove_account(args):
    """Remove one brokerage account from every position."""
    from portfolio.manager import PortfolioManager
    mgr = PortfolioManager(_user(args))
    if not args.yes:
        answer = input(f"Remove {args.name} from all positions? This cannot be undone. [y/N] ")
        if answer.strip().lower() != "y":
            print("Cancelled.")
            return
    result = mgr.remove_account(args.name)
    print(ok(f"{args.name} removed: {len(result.deleted)} position(s) deleted, "
             f"{len(result.updated)} reduced."))


def cmd_clear_portfolio(args):
    """Delete all positions and the portfolio summary."""
    from portfolio.manager import PortfolioManager
    print(warn("This permanently deletes all positions and portfolio summary data."))
    if input("Type DELETE to confirm: ").strip() != "DELETE":
        print("Cancelled.")
        return
    deleted = PortfolioManager(_user(args)).clear_all()
    print(ok(f"Deleted {deleted} position(s)."))


def cmd_assign(args):
    """Assign a category and/or tier to a position."""
    from portfolio.manager import PortfolioManager
    if PortfolioManager(_user(args)).assign(args.symbol, args.category, args.tier):
        print(ok(f"{args.symbol.upper()} assigned."))
    else:
        print(fail(f"No position for {args.symbol.upper()}."))


def cmd_settings(args):
    """Show allocation settings or set integration keys."""
    from portfolio.allocation import SettingsStore, category_target, per_position_target
    store = SettingsStore()
    user_id = _user(args)

    updates = {
        k: getattr(args, k) for k in ("fmp_api_key", "notification_email",
                                      "resend_api_key", "default_notify_time")
        if getattr(args, k) is not None
    }
    if updates:
        store.set_integration(user_id, **updates)
        print(ok(f"Updated: {', '.join(sorted(updates))}"))

    settings = store.load(user_id)
    print(header("ALLOCATION SETTINGS"))
    rows = []
    for cat in settings.categories:
        rows.append([cat.display_name, "", format_pct(category_target(cat)), cat.target_positions, ""])
        for t in cat.tiers:
            rows.append(["", t.name, format_pct(t.allocation_pct), t.max_positions,
                         format_pct(per_position_target(t))])
    print(tabulate(rows, headers=["Category", "Tier", "Allocation", "Positions", "Per Position"],
                   tablefmt="simple"))
    print(f"\n  FMP key:            {'set' if settings.fmp_api_key else 'not set'}")
    print(f"  Resend key:         {'set' if settings.resend_api_key else 'not set'}")
    print(f"  Notification email: {settings.notification_email or '-'}")
    print(f"  Default notify:     {settings.default_notify_time or '-'}")


def cmd_alerts(args):
    """List, add, acknowledge or delete price alerts."""
    from analysis.alerts import AlertService
    svc = AlertService(_user(args))

    if args.action == "add":
        try:
            svc.create(args.symbol, args.type, args.target,
                       reference_price=args.reference, notify_time=args.notify_time)
        except DuplicateRecordError as e:
            print(warn(str(e)))
            return
        print(ok(f"{args.type} alert set for {args.symbol.upper()}."))
    elif args.action == "ack":
        if args.id is not None:
            svc.acknowledge(args.id)
            print(ok(f"Alert {args.id} acknowledged."))
        else:
            print(ok(f"Acknowledged {svc.acknowledge_all()} alert(s)."))
    elif args.action == "delete":
        if svc.delete(args.id):
            print(ok("Alert deleted."))
        else:
            print(fail(f"No alert {args.id}."))
    else:
        alerts = svc.all()
        print(header("PRICE ALERTS"))
        if not alerts:
            print("\n  No alerts. Add one with: python main.py alerts add AAPL PRICE_ABOVE 200")
            return
        rows = [
            [a["id"], a["symbol"], a["alert_type"], a["target_value"], a.get("reference_price") or "-",
             "active" if a["is_active"] else "triggered", a.get("triggered_at") or "-",
             "yes" if a.get("acknowledged_at") else "no"]
            for a in alerts
        ]
        print(tabulate(rows, headers=["ID", "Symbol", "Type", "Target", "Reference", "State",
                                      "Triggered", "Acked"], tablefmt="simple"))


def cmd_check_alerts(args):
    """Run one alert evaluation pass now."""
    from analysis.alert_checker import AlertChecker
    summary = AlertChecker().run()
    print(ok(summary.message))
    if summary.notified:
        print(f"  Notifications sent: {summary.notified}")
    if summary.skipped_users:
        print(f"  {warn(f'Skipped {len(summary.skipped_users)} user(s) without an FMP key')}")


def cmd_scheduler(args):
    """Run the alert check on an interval until interrupted."""
    from collectors.scheduler import start_scheduler
    start_scheduler(args.minutes)


def cmd_watchlist(args):
    """Manage the watchlist."""
    from portfolio.watchlist import WatchlistManager
    from utils.tasks import run_post_commit_tasks
    mgr = WatchlistManager(_user(args))

    if args.add:
        added, skipped, tasks = mgr.add_entries(args.add, price_when_added=args.price)
        for symbol, reason in skipped.items():
            print(warn(f"{symbol}: {reason}"))
        if added:
            print(ok(f"Added {', '.join(added)}"))
        report = run_post_commit_tasks(tasks)
        for name, err in report.failed.items():
            print(f"  {warn(f'{name} failed: {err}')}")
    elif args.remove:
        for symbol in args.remove:
            if mgr.remove_entry(symbol):
                print(ok(f"Removed {symbol.upper()}"))
            else:
                print(fail(f"{symbol.upper()} is not on your watchlist"))
    else:
        if args.refresh:
            print(f"  Refreshed {mgr.refresh_prices()} price(s).")
        entries = mgr.entries(group=args.group, ungrouped=args.ungrouped)
        if not entries:
            if args.group or args.ungrouped:
                print("No watchlist entries in that group.")
            else:
                print("Watchlist is empty. Add stocks with: python main.py watchlist --add AAPL MSFT")
            return
        print(header("Watchlist"))
        rows = [
            [e["symbol"], (e.get("company_name") or "")[:28], format_currency(e.get("current_price")),
             format_pct(e["change_since_added"], signed=True) if e["change_since_added"] is not None else "-",
             e.get("market_cap_category") or "-", e.get("group_name") or "-",
             " ".join(t["short_code"] for t in e["tags"])]
            for e in entries
        ]
        print(tabulate(rows, headers=["Symbol", "Company", "Price", "Since Added", "Cap", "Group", "Tags"],
                       tablefmt="simple"))


def cmd_groups(args):
    """List, create, rename, reorder or delete watchlist groups, and move symbols between them."""
    from portfolio.watchlist import WatchlistManager
    mgr = WatchlistManager(_user(args))

    if args.action == "add":
        mgr.create_group(args.name, color=args.color)
        print(ok(f"Group {args.name.strip()} created."))
    elif args.action == "rename":
        mgr.update_group(args.name, new_name=args.new_name, color=args.color)
        print(ok(f"Group {args.name} updated."))
    elif args.action == "move":
        if mgr.move_group(args.name, -1 if args.direction == "up" else 1):
            print(ok(f"Moved {args.name} {args.direction}."))
        else:
            print(warn(f"{args.name} is already at the {'top' if args.direction == 'up' else 'bottom'}."))
    elif args.action == "delete":
        mgr.delete_group(args.name)
        print(ok(f"Group {args.name} deleted; its entries are now ungrouped."))
    elif args.action == "assign":
        print(ok(f"Moved {mgr.set_group(args.symbols, args.name)} entry(s) to {args.name}."))
    elif args.action == "unassign":
        print(ok(f"Ungrouped {mgr.set_group(args.symbols, None)} entry(s)."))
    else:
        groups = mgr.groups()
        print(header("WATCHLIST GROUPS"))
        if not groups:
            print("\n  No groups. Create one with: python main.py groups add Growth")
            return
        print(tabulate([[g["name"], g.get("color") or "-", g["entry_count"]] for g in groups],
                       headers=["Group", "Color", "Entries"], tablefmt="simple"))

def cmd_screen_upload(args):
    """Upload a screen CSV run, creating the screen if needed."""
    from analysis.screens import ScreenService
    svc = ScreenService(_user(args))
    screen = svc.find_screen(args.screen)
    if screen is None:
        if not args.name:
            print(fail(f"No screen {args.screen}. Pass --name to create it."))
            return
        svc.create_screen(args.name, args.screen)
        screen = svc.find_screen(args.screen)

    text = Path(args.file).read_text(encoding="utf-8-sig")
    result = svc.process_run(screen["id"], text, column=args.column)
    print(header(f"SCREEN {screen['short_code']} RUN {result.run_number}"))
    print(f"  Symbols: {result.total_symbols}  On watchlist: {result.match_count}")
    if result.matched:
        print(f"  {ok(f'Tagged {result.tag_code}: ' + ', '.join(result.matched))}")
    if result.unmatched and args.verbose:
        print(f"  Not on watchlist: {', '.join(result.unmatched)}")


def cmd_screen_hits(args):
    """Show watchlist and portfolio symbols that appear in screens."""
    from analysis.screens import ScreenService
    svc = ScreenService(_user(args))
    print(header("SCREEN HITS"))
    hits = svc.screen_hits()
    if hits:
        print(tabulate([[h.symbol, h.heat_score, " ".join(h.screens)] for h in hits],
                       headers=["Symbol", "Heat", "Screens"], tablefmt="simple"))
    else:
        print("\n  No watchlist symbols found in screens.")
    overlap = svc.portfolio_overlap()
    if overlap:
        print("\n  Portfolio overlap:\n")
        print(tabulate([[h.symbol, h.heat_score, format_pct(h.weight), " ".join(h.screens)] for h in overlap],
                       headers=["Symbol", "Screens", "Weight", "Codes"], tablefmt="simple"))


def cmd_lookup(args):
    """Look up a company profile through FMP."""
    from collectors.fmp import FMPClient
    from portfolio.allocation import SettingsStore
    from utils.helpers import market_cap_category
    key = SettingsStore().load(_user(args)).fmp_api_key
    if not key:
        print(fail("No FMP API key. Set one with: python main.py settings --fmp-api-key KEY"))
        return
    profile = FMPClient(key).lookup_symbol(args.symbol)
    if profile is None:
        print(fail(f"No profile found for {args.symbol.upper()}"))
        return
    print(header(f"{profile.symbol} - {profile.company_name}"))
    print(f"  Price:      {format_currency(profile.price)}")
    print(f"  Market cap: {format_currency(profile.market_cap, compact=True)} "
          f"({market_cap_category(profile.market_cap)})")
    print(f"  Sector:     {profile.sector or '-'}")
    print(f"  Industry:   {profile.industry or '-'}")


def main():
    settings = get_settings()
    logger = setup_logging(settings.log_dir, settings.log_level)

    # Initialize database
    db = get_connection(settings.db_path)
    initialize_database(db)

    parser = argparse.ArgumentParser(
        prog="portfolio_tracker",
        description="Portfolio Tracker - broker CSV import, allocation targets, price alerts and screens",
    )
    parser.add_argument("--user", help="User id to act as (default: PORTFOLIO_USER)")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # import-csv
    p_imp = subparsers.add_parser("import-csv", help="Import broker CSV exports")
    p_imp.add_argument("files", nargs="+", help="CSV files to import")
    p_imp.add_argument("-y", "--yes", action="store_true", help="Skip the confirmation prompt")
    p_imp.set_defaults(func=cmd_import_csv)

    # portfolio-status
    p_ps = subparsers.add_parser("portfolio-status", help="Show portfolio status")
    p_ps.set_defaults(func=cmd_portfolio_status)

    # rebalance
    p_reb = subparsers.add_parser("rebalance", help="Show buy/trim guidance")
    p_reb.set_defaults(func=cmd_rebalance)

    # accounts
    p_acc = subparsers.add_parser("accounts", help="List accounts and import history")
    p_acc.add_argument("--limit", type=int, default=10, help="Import history rows to show")
    p_acc.set_defaults(func=cmd_accounts)

    # remove-account
    p_ra = subparsers.add_parser("remove-account", help="Remove a brokerage account from all positions")
    p_ra.add_argument("name", help="Account name as shown by 'accounts'")
    p_ra.add_argument("-y", "--yes", action="store_true", help="Skip the confirmation prompt")
    p_ra.set_defaults(func=cmd_remove_account)

    # clear-portfolio
    p_cp = subparsers.add_parser("clear-portfolio", help="Delete all positions")
    p_cp.set_defaults(func=cmd_clear_portfolio)

    # assign
    p_as = subparsers.add_parser("assign", help="Assign a category/tier to a position")
    p_as.add_argument("symbol")
    p_as.add_argument("--category")
    p_as.add_argument("--tier")
    p_as.set_defaults(func=cmd_assign)

    # settings
    p_set = subparsers.add_parser("settings", help="Show settings or set integration keys")
    p_set.add_argument("--fmp-api-key", dest="fmp_api_key")
    p_set.add_argument("--notification-email", dest="notification_email")
    p_set.add_argument("--resend-api-key", dest="resend_api_key")
    p_set.add_argument("--default-notify-time", dest="default_notify_time", help="HH:MM")
    p_set.set_defaults(func=cmd_settings)

    # alerts
    p_al = subparsers.add_parser("alerts", help="Manage price alerts")
    al_sub = p_al.add_subparsers(dest="action")
    p_al_add = al_sub.add_parser("add", help="Create an alert")
    p_al_add.add_argument("symbol")
    p_al_add.add_argument("type", choices=["PRICE_ABOVE", "PRICE_BELOW", "PCT_CHANGE_UP", "PCT_CHANGE_DOWN"])
    p_al_add.add_argument("target", type=float, help="Dollars for PRICE_*, percent for PCT_*")
    p_al_add.add_argument("--reference", type=float, help="Reference price for PCT_* alerts")
    p_al_add.add_argument("--notify-time", dest="notify_time", help="HH:MM")
    p_al_ack = al_sub.add_parser("ack", help="Acknowledge one or all triggered alerts")
    p_al_ack.add_argument("id", type=int, nargs="?")
    p_al_del = al_sub.add_parser("delete", help="Delete an alert")
    p_al_del.add_argument("id", type=int)
    p_al.set_defaults(func=cmd_alerts)

    # check-alerts
    p_ca = subparsers.add_parser("check-alerts", help="Evaluate active alerts now")
    p_ca.set_defaults(func=cmd_check_alerts)

    # scheduler
    p_sch = subparsers.add_parser("scheduler", help="Run the alert scheduler")
    p_sch.add_argument("--minutes", type=int, help="Check interval in minutes")
    p_sch.set_defaults(func=cmd_scheduler)

    # watchlist
    p_wl = subparsers.add_parser("watchlist", help="Manage the watchlist")
    p_wl.add_argument("--add", nargs="+", help="Add tickers to watchlist")
    p_wl.add_argument("--remove", nargs="+", help="Remove tickers from watchlist")
    p_wl.add_argument("--price", type=float, help="Price when added (with --add)")
    p_wl.add_argument("--refresh", action="store_true", help="Refresh prices before listing")
    p_wl.add_argument("--group", help="Only list entries in this group")
    p_wl.add_argument("--ungrouped", action="store_true", help="Only list entries in no group")
    p_wl.set_defaults(func=cmd_watchlist)

    # watchlist groups
    p_gr = subparsers.add_parser("groups", help="Manage watchlist groups")
    gr_sub = p_gr.add_subparsers(dest="action")
    p_gr_add = gr_sub.add_parser("add", help="Create a group")
    p_gr_add.add_argument("name")
    p_gr_add.add_argument("--color", help="Hex color, e.g. #2ECC71")
    p_gr_ren = gr_sub.add_parser("rename", help="Rename or recolor a group")
    p_gr_ren.add_argument("name")
    p_gr_ren.add_argument("new_name", nargs="?")
    p_gr_ren.add_argument("--color")
    p_gr_mv = gr_sub.add_parser("move", help="Reorder a group")
    p_gr_mv.add_argument("name")
    p_gr_mv.add_argument("direction", choices=["up", "down"])
    p_gr_del = gr_sub.add_parser("delete", help="Delete a group (entries are kept)")
    p_gr_del.add_argument("name")
    p_gr_as = gr_sub.add_parser("assign", help="Move symbols into a group")
    p_gr_as.add_argument("name")
    p_gr_as.add_argument("symbols", nargs="+")
    p_gr_un = gr_sub.add_parser("unassign", help="Remove symbols from their group")
    p_gr_un.add_argument("symbols", nargs="+")
    p_gr.set_defaults(func=cmd_groups)

    # screen-upload
    p_su = subparsers.add_parser("screen-upload", help="Upload a screen CSV run")
    p_su.add_argument("screen", help="Screen short code or id")
    p_su.add_argument("file", help="CSV file")
    p_su.add_argument("--name", help="Create the screen with this name if it does not exist")
    p_su.add_argument("--column", type=int, help="Symbol column index (auto-detected by default)")
    p_su.add_argument("-v", "--verbose", action="store_true", help="List unmatched symbols")
    p_su.set_defaults(func=cmd_screen_upload)

    # screen-hits
    p_sh = subparsers.add_parser("screen-hits", help="Show screen hits and portfolio overlap")
    p_sh.set_defaults(func=cmd_screen_hits)

    # lookup
    p_lu = subparsers.add_parser("lookup", help="Look up a company profile")
    p_lu.add_argument("symbol")
    p_lu.set_defaults(func=cmd_lookup)

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        return

    try:
        args.func(args)
    except KeyboardInterrupt:
        print("\nAborted.")
    except Exception as e:
        logger.error("Command failed: %s", e, exc_info=True)
        print(f"\nError: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
