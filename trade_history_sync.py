from __future__ import annotations

from core.trade_history.cli import cli_main


def main() -> int:
    return cli_main()


if __name__ == "__main__":
    raise SystemExit(main())
