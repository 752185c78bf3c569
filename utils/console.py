"""Coloured status markers and section headers for CLI output."""

from colorama import Fore, Style


def ok(msg: str) -> str:
    return f"{Fore.GREEN}+{Style.RESET_ALL} {msg}"


def fail(msg: str) -> str:
    return f"{Fore.RED}x{Style.RESET_ALL} {msg}"


def warn(msg: str) -> str:
    return f"{Fore.YELLOW}!{Style.RESET_ALL} {msg}"


def header(title: str, width: int = 60) -> str:
    rule = "=" * width
    return f"\n{Style.BRIGHT}{rule}\n{title}\n{rule}{Style.RESET_ALL}"


def separator(width: int = 60) -> str:
    return "-" * width
