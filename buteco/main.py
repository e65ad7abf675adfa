#!/usr/bin/env python3
# buteco são benedito: tables, orders and the daily summary from a terminal

import atexit
import getpass
import inspect
import logging
import shlex
import signal
import sys
from datetime import datetime
from typing import Callable

from termcolor import colored, cprint
from colorama import just_fix_windows_console as enable_windows_ansi_interpretation

from buteco.aggregates import DailyAggregationEngine
from buteco.auth import Action, AuthGate
from buteco.config import RESTAURANT_NAME, Settings
from buteco.errors import AuthorizationError, ButecoError, ConflictError, NotFoundError, ValidationError
from buteco.lifecycle import LifecycleManager
from buteco.menu import MenuCatalog
from buteco.models import Role, Table, TableStatus
from buteco.reports import ReportingFacade, format_currency
from buteco.store import open_store
from buteco.store.base import EntityStore

logger = logging.getLogger(__name__)

# how each error kind is announced to the user
ERROR_LABELS = {
    AuthorizationError: "insufficient permission",
    ValidationError: "invalid input",
    NotFoundError: "not found",
    ConflictError: "conflict",
}


# helpers
def safe_int(value: str, minimum: int | None = None):
    """return int value or none if invalid / below minimum"""
    try:
        v = int(value)
        if minimum is not None and v < minimum:
            return None
        return v
    except ValueError:
        return None


def color_money(amount: float) -> str:
    """format amount as green money string"""
    return colored(format_currency(amount), "green")


def parse_boolean_input(prompt: str) -> bool:
    """parse y/n style input"""
    return prompt.lower().strip() in ("y", "yes", "s", "sim")


def describe_error(error: ButecoError) -> str:
    label = next((v for k, v in ERROR_LABELS.items() if isinstance(error, k)), "error")
    return f"{label}: {error.message}"


# command infrastructure
class Command:
    """bind a command name to a function"""
    def __init__(self, name: str, function: Callable, description: str,
                 login_required: bool = True, action: Action | None = None):
        self.name = name
        self._fn = function
        self.description = description
        self.login_required = login_required
        self.action = action

    def execute(self, tokens: list[str]):
        """validate arg count and invoke function"""
        params = list(inspect.signature(self._fn).parameters.values())
        required = sum(p.default is inspect.Parameter.empty for p in params)
        if not (required <= len(tokens) <= len(params)):
            cprint(f"invalid args for '{self.name}' (expected {required}-{len(params)}, got {len(tokens)})", "red")
            return
        return self._fn(*tokens)


class CommandParser:
    """simple repl parser; typed core errors are reported here"""
    def __init__(self, auth: AuthGate):
        self.auth = auth
        self.commands: list[Command] = [
            Command("help", self.show_help, "show this help", False),
            Command("h", self.show_help, "alias help", False),
            Command("quit", self.quit, "exit program", False),
        ]

    def visible(self, cmd: Command) -> bool:
        if cmd.login_required and not self.auth.is_logged_in():
            return False
        return cmd.action is None or self.auth.can(cmd.action)

    def parse_and_execute(self, input_str: str):
        """parse the raw input string and attempt to execute a command"""
        try:
            tokens = shlex.split(input_str)
        except ValueError:
            cprint("unbalanced quotes", "red"); return
        if not tokens:
            return
        # longest name first so "menu add" wins over "menu"
        for cmd in sorted(self.commands, key=lambda c: -len(c.name.split())):
            parts = cmd.name.split()
            if tokens[:len(parts)] != parts:
                continue
            if cmd.login_required and not self.auth.is_logged_in():
                cprint("please login first (or run 'setup' on a fresh install)", "yellow"); return
            try:
                if cmd.action is not None:
                    self.auth.authorize(cmd.action)
                return cmd.execute(tokens[len(parts):])
            except ButecoError as e:
                logger.debug("command %r failed: %s", cmd.name, e)
                cprint(describe_error(e), "red")
                return
        cprint("unknown command. type 'help'", "red")

    def show_help(self):
        """display help with all available command names and descriptions"""
        cprint("available commands:", "green", attrs=["bold"])
        for cmd in self.commands:
            if not self.visible(cmd):
                continue
            params = " ".join(
                f"<{name}>" if p.default is inspect.Parameter.empty else f"[{name}]"
                for name, p in inspect.signature(cmd._fn).parameters.items()
            )
            line = f"{colored(cmd.name, 'blue')} {colored(params, 'cyan')}".strip()
            print(line.ljust(60), "-", cmd.description)

    @staticmethod
    def quit():
        """interactive quit confirmation"""
        ans = input(colored("are you sure you want to quit? (y/N): ", "yellow"))
        if parse_boolean_input(ans):
            cprint("até logo!", "green")
            sys.exit(0)
        cprint("continuing...", "green")

    def start_repl(self):
        """main repl loop"""
        while True:
            user = self.auth.current_user
            prompt = f"\n{user.name}@buteco> " if user else "\n> "
            try:
                user_input = input(colored(prompt, "blue")).strip()
            except EOFError:
                print()
                break
            if user_input:
                self.parse_and_execute(user_input)


# application wiring
class Application:
    """composition root: the one store instance and every component built on it"""
    def __init__(self, settings: Settings | None = None, store: EntityStore | None = None,
                 clock: Callable[[], datetime] = datetime.now):
        self.settings = settings or Settings()
        self.store = store or open_store(self.settings)
        self.auth = AuthGate(self.store)
        self.aggregates = DailyAggregationEngine(self.store, clock)
        self.lifecycle = LifecycleManager(self.store, self.aggregates, self.auth)
        self.menu = MenuCatalog(self.store, self.auth)
        self.reports = ReportingFacade(self.store, self.aggregates)
        self.parser = CommandParser(self.auth)

        self.parser.commands += [
            Command("setup", self.setup, "create the first admin", False),
            Command("login", self.login, "login", False),
            Command("logout", self.logout, "logout"),
            Command("whoami", self.whoami, "current user"),
            Command("dashboard", self.dashboard, "overview for your role"),
            Command("menu", self.show_menu, "show menu"),
            Command("menu add", self.menu_add, "add menu item", action=Action.MANAGE_MENU),
            Command("menu update", self.menu_update, "change a menu item field", action=Action.MANAGE_MENU),
            Command("menu delete", self.menu_delete, "delete menu item", action=Action.MANAGE_MENU),
            Command("menu toggle", self.menu_toggle, "toggle availability", action=Action.MANAGE_MENU),
            Command("table open", self.table_open, "open a table"),
            Command("table close", self.table_close, "close a table"),
            Command("table delete", self.table_delete, "delete a closed table", action=Action.DELETE_TABLE),
            Command("table settle", self.table_settle, "mark items paid and close", action=Action.SETTLE_TABLE),
            Command("table list", self.table_list, "list tables"),
            Command("table show", self.table_show, "show a table and its items"),
            Command("item add", self.item_add, "add a menu item to a table"),
            Command("item deliver", self.item_deliver, "mark item delivered"),
            Command("item advance", self.item_advance, "move item to a later status"),
            Command("kitchen queue", self.kitchen_queue, "items waiting in the kitchen"),
            Command("stats", self.stats, "today's realtime stats", action=Action.VIEW_REPORTS),
            Command("report", self.report, "daily summary", action=Action.VIEW_REPORTS),
            Command("report export", self.report_export, "write daily summary file", action=Action.VIEW_REPORTS),
            Command("admin users list", self.users_list, "list users", action=Action.MANAGE_USERS),
            Command("admin users add", self.users_add, "add user", action=Action.MANAGE_USERS),
            Command("admin users activate", self.users_activate, "activate user", action=Action.MANAGE_USERS),
            Command("admin users deactivate", self.users_deactivate, "deactivate user", action=Action.MANAGE_USERS),
            Command("admin users delete", self.users_delete, "delete user", action=Action.MANAGE_USERS),
            Command("admin recompute", self.recompute, "repair cached table totals", action=Action.REPAIR_TOTALS),
        ]

    def run(self, *args: str):
        cprint(f"\n{RESTAURANT_NAME} 🍺\n", "yellow", attrs=["bold"])
        if not self.auth.has_users():
            cprint("no users yet: run 'setup' to create the first admin", "yellow")
        print("type 'help' or 'h' at any time. to exit, type 'quit'.")
        if args:
            self.parser.parse_and_execute(shlex.join(args))
        self.parser.start_repl()

    # account
    def setup(self, name: str | None = None, password: str | None = None):
        if name is None:
            name = input(colored("admin name: ", "magenta")).strip()
        if password is None:
            password = getpass.getpass(colored("password: ", "magenta"))
        user = self.auth.bootstrap_first_admin(name, password)
        cprint(f"admin {colored(user.name, 'yellow', attrs=['bold'])} created, you can login now", "green")

    def login(self, name: str | None = None, password: str | None = None):
        if name is None:
            name = input(colored("name: ", "magenta")).strip()
        if password is None:
            password = getpass.getpass(colored("password: ", "magenta"))
        user = self.auth.login(name, password)
        cprint(f"logged in as {user.role.value}: {colored(user.name, 'yellow', attrs=['bold'])}", "green")

    def logout(self):
        self.auth.logout()
        cprint("logged out", "green")

    def whoami(self):
        user = self.auth.current_user
        cprint(f"you are {colored(user.name, 'yellow', attrs=['bold'])} ({user.role.value})", "green")

    def dashboard(self):
        """per-role overview"""
        role = self.auth.current_role()
        if role in (Role.ADMIN, Role.CASHIER):
            self.stats()
            self.table_list(TableStatus.OPEN.value)
        elif role is Role.WAITER:
            self.table_list(TableStatus.OPEN.value)
        else:
            self.kitchen_queue()

    # menu
    def show_menu(self):
        """print menu grouped by category"""
        cprint(f"{RESTAURANT_NAME} menu", None, attrs=["bold"])
        items = sorted(self.menu.list_items(), key=lambda i: (i.category, i.name))
        if not items:
            cprint("menu empty", "red"); return
        current = None
        for item in items:
            if item.category != current:
                current = item.category
                cprint(f"\n{current or 'Outros'}:", "green", attrs=["bold"])
            status = "" if item.available else colored(" (unavailable)", "red")
            print(f"  #{item.id} {item.name}: {color_money(item.price)}{status}")

    def menu_add(self, name: str, price: str, category: str = "Outros", description: str = ""):
        if category not in self.menu.categories:
            cprint(f"category must be one of: {', '.join(self.menu.categories)}", "red"); return
        item = self.menu.add_item(name, price, category, description)
        cprint(f"menu item #{item.id} {item.name} added", "green")

    def menu_update(self, item_id: str, field: str, value: str):
        if field == "available":
            value = parse_boolean_input(value)
        elif field == "category" and value not in self.menu.categories:
            cprint(f"category must be one of: {', '.join(self.menu.categories)}", "red"); return
        item = self.menu.update_item(item_id, **{field: value})
        cprint(f"menu item #{item.id} updated", "green")

    def menu_delete(self, item_id: str):
        self.menu.delete_item(item_id)
        cprint("deleted", "green")

    def menu_toggle(self, item_id: str):
        item = self.menu.toggle_availability(item_id)
        cprint(f"{item.name} is now {'available' if item.available else 'unavailable'}", "green")

    # tables
    def print_table(self, table: Table):
        state = colored("open", "green") if table.is_open else colored("closed", "red")
        print(f"#{table.id} {table.name} [{state}] {table.total_orders} item(s), {color_money(table.total_revenue)}")

    def table_open(self, name: str):
        table = self.lifecycle.open_table(name)
        cprint(f"table #{table.id} {table.name} opened", "green")

    def table_close(self, table_id: str):
        table = self.lifecycle.close_table(table_id)
        cprint(f"table #{table.id} {table.name} closed", "green")

    def table_delete(self, table_id: str):
        ans = input(colored(f"delete table #{table_id} and all its items? (y/N): ", "red"))
        if not parse_boolean_input(ans):
            cprint("cancelled", "yellow"); return
        self.lifecycle.delete_table(table_id)
        cprint(f"table #{table_id} deleted", "green")

    def table_settle(self, table_id: str):
        table = self.lifecycle.settle_table(table_id)
        cprint(f"table #{table.id} settled: {format_currency(table.total_revenue)}", "green")

    def table_list(self, status: str | None = None):
        try:
            wanted = TableStatus(status) if status else None
        except ValueError:
            cprint("status must be open or closed", "red"); return
        tables = self.lifecycle.list_tables(wanted)
        if not tables:
            cprint("no tables", "yellow"); return
        for table in tables:
            self.print_table(table)

    def table_show(self, table_id: str):
        table = self.lifecycle.get_table(table_id)
        self.print_table(table)
        for item in self.lifecycle.list_line_items(table.id):
            print(f"\t#{item.id} {item.quantity} x {item.item_name} "
                  f"{color_money(item.line_total)} [{item.status.value}] by {item.added_by}")

    # line items
    def item_add(self, table_id: str, menu_item_id: str, quantity: str = "1"):
        qty = safe_int(quantity, minimum=1)
        if qty is None:
            cprint("invalid quantity", "red"); return
        item = self.lifecycle.add_menu_item(table_id, menu_item_id, qty)
        cprint(f"added {item.quantity} x {item.item_name} to table #{item.table_id}", "green")

    def item_deliver(self, table_id: str, item_id: str):
        item = self.lifecycle.mark_line_item_delivered(table_id, item_id)
        cprint(f"{item.item_name} delivered", "green")

    def item_advance(self, table_id: str, item_id: str, status: str):
        item = self.lifecycle.advance_line_item(table_id, item_id, status)
        cprint(f"{item.item_name} is now {item.status.value}", "green")

    def kitchen_queue(self):
        queue = self.lifecycle.kitchen_queue()
        if not queue:
            cprint("kitchen queue empty", "green"); return
        for table, item in queue:
            print(f"{table.name}: #{item.id} {item.quantity} x {item.item_name} [{item.status.value}]")

    # reports
    def stats(self):
        s = self.aggregates.get_realtime_stats(self.aggregates.today())
        cprint("today", "green", attrs=["bold"])
        print(f"tables opened: {s.tables_opened_today} | open now: {s.currently_open_tables} | "
              f"orders: {s.orders_today} | revenue: {color_money(s.revenue_today)}")

    def report(self, date: str | None = None):
        summary = self.reports.get_daily_summary(date or self.aggregates.today())
        print(self.reports.export_to_text(summary), end="")

    def report_export(self, date: str | None = None):
        summary = self.reports.get_daily_summary(date or self.aggregates.today())
        path = self.reports.save_export(summary, self.settings.export_dir)
        cprint(f"summary written to {path}", "green")

    # users
    def users_list(self):
        for user in self.auth.list_users():
            active = "" if user.is_active else colored(" (inactive)", "red")
            print(f"#{user.id}: {user.name} ({user.role.value}){active}")

    def users_add(self, name: str, role: str, password: str | None = None):
        if password is None:
            password = getpass.getpass(colored("password: ", "magenta"))
        user = self.auth.create_user(name, password, role)
        cprint(f"user #{user.id} {user.name} created", "green")

    def users_activate(self, user_id: str):
        self.auth.update_user(user_id, is_active=True)
        cprint("activated", "green")

    def users_deactivate(self, user_id: str):
        self.auth.update_user(user_id, is_active=False)
        cprint("deactivated", "green")

    def users_delete(self, user_id: str):
        self.auth.delete_user(user_id)
        cprint("deleted", "green")

    def recompute(self):
        repaired = self.lifecycle.recompute_all_table_totals()
        cprint(f"recomputed totals for {repaired} table(s)", "green")


# signal handler
class SignalHandler:
    """ctrl+c handler"""
    @staticmethod
    def sigint(_, __):
        cprint("\nnext time, use quit!", "yellow")
        sys.exit(0)


# entry point
def main():
    """entrypoint wrapper"""
    enable_windows_ansi_interpretation()
    settings = Settings.from_env()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    signal.signal(signal.SIGINT, SignalHandler.sigint)
    app = Application(settings)
    atexit.register(app.store.close)
    app.run(*sys.argv[1:])


if __name__ == "__main__":
    main()
