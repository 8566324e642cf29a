"""Command line entry point for Chat Translate."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Optional

import typer

from .config.manager import ConfigManager
from .infra.logging import setup_logging
from .replay import load_events, run_replay

app = typer.Typer(
    help="Chat Translate 命令行工具",
    no_args_is_help=True,
    rich_markup_mode=None,
)


@app.callback()
def _root() -> None:
    """Translate live chat feeds through an OpenAI-compatible API."""


@app.command()
def replay(
    events: Path = typer.Argument(..., exists=True, dir_okay=False, help="JSON Lines 格式的事件文件。"),
    config: Optional[Path] = typer.Option(None, "--config", help="配置文件路径（默认 ~/.chat_translate/config.json）。"),
    verbose: bool = typer.Option(False, "--verbose", help="开启调试日志", is_flag=True),
) -> None:
    """Replay navigation and chat events and print each translation."""
    setup_logging(verbose=verbose)

    try:
        parsed = load_events(events)
    except (OSError, ValueError) as exc:
        typer.echo(f"无法读取事件文件: {exc}", err=True)
        raise typer.Exit(code=1)

    manager = ConfigManager(config_path=config) if config else ConfigManager()
    stats = asyncio.run(run_replay(parsed, manager, echo=typer.echo))

    typer.echo(
        f"请求 {stats.get('totalRequests', 0)} 次，"
        f"缓存命中 {stats.get('cacheHits', 0)} 次，"
        f"错误 {stats.get('errors', 0)} 次"
    )


def main() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    main()
