"""Click-based command line interface for replyd."""

from __future__ import annotations

import json
import time
from pathlib import Path

import click

from replyd.core.daemon import control
from replyd.core.daemon.constants import PLATFORM_ORDER
from replyd.core.daemon.models import PlatformApiError
from replyd.core.daemon.service import ReplyListenerService
from replyd.core.daemon.service_config import DaemonConfig, write_config_template
from replyd.core.daemon.service_telegram import TelegramPoller
from replyd.core.daemon.session_registry import SessionRegistry
from replyd.runtime import ReplyListenerPaths, resolve_paths


def _paths(ctx: click.Context) -> ReplyListenerPaths:
    return ctx.obj["paths"]


def _load_config(paths: ReplyListenerPaths) -> DaemonConfig:
    config, warnings = DaemonConfig.from_file(paths.config_file)
    for message in warnings:
        click.echo(f"warning: {message}", err=True)
    return config


@click.group()
@click.option(
    "--state-dir",
    default=None,
    help="Directory holding pid, state, config and logs (default: ~/.replyd).",
)
@click.pass_context
def main(ctx: click.Context, state_dir: str | None) -> None:
    ctx.obj = {"paths": resolve_paths(state_dir)}


@main.command("version", help="Print replyd version.")
def cmd_version() -> None:
    from replyd import __version__

    click.echo(__version__)


@main.command("start", help="Start the reply listener daemon.")
@click.option("--foreground", is_flag=True, default=False, help="Run in this process instead of detaching.")
@click.pass_context
def cmd_start(ctx: click.Context, foreground: bool) -> None:
    paths = _paths(ctx)
    if foreground:
        raise SystemExit(ReplyListenerService(paths).run())
    try:
        pid = control.start_detached(paths)
    except RuntimeError as exc:
        raise click.ClickException(str(exc)) from exc
    except OSError as exc:
        raise click.ClickException(f"failed to spawn daemon: {exc}") from exc
    click.echo(f"started reply listener (pid={pid}); log: {paths.log_file}")


@main.command("stop", help="Stop the running daemon.")
@click.option("--timeout", "timeout_sec", default=10.0, type=float, show_default=True)
@click.pass_context
def cmd_stop(ctx: click.Context, timeout_sec: float) -> None:
    stopped, detail = control.stop_daemon(_paths(ctx), timeout_sec=timeout_sec)
    click.echo(detail)
    if not stopped and not detail.startswith(("not running", "removed stale")):
        raise SystemExit(1)


@main.command("status", help="Show daemon status and delivery state.")
@click.option("--json", "json_output", is_flag=True, default=False)
@click.pass_context
def cmd_status(ctx: click.Context, json_output: bool) -> None:
    status = control.daemon_status(_paths(ctx))
    if json_output:
        click.echo(json.dumps(status.to_payload(), ensure_ascii=False, indent=2))
        return
    state = status.state
    click.echo(f"running: {'yes' if status.running else 'no'}" + (f" (pid={status.pid})" if status.running else ""))
    if status.stale_pid_file:
        click.echo("pid file: stale")
    click.echo(f"started at: {state.started_at or '-'}")
    click.echo(f"last poll: {state.last_poll_at or '-'}")
    click.echo(f"discord offset: {state.discord_last_message_id or '-'}")
    click.echo(f"telegram offset: {state.telegram_last_update_id if state.telegram_last_update_id is not None else '-'}")
    click.echo(f"injected: {state.messages_injected}")
    click.echo(f"errors: {state.error_count}")
    if state.last_error:
        click.echo(f"last error: {state.last_error}")


@main.command("poll-once", help="Run a single poll cycle in the foreground.")
@click.pass_context
def cmd_poll_once(ctx: click.Context) -> None:
    raise SystemExit(ReplyListenerService(_paths(ctx)).run_once())


@main.command("register", help="Map an outbound notification message to a tmux pane.")
@click.option("--platform", type=click.Choice(list(PLATFORM_ORDER)), required=True)
@click.option("--message-id", required=True)
@click.option("--pane", "pane_id", required=True, help="tmux target, e.g. %3 or session:0.1")
@click.option("--session-id", default="")
@click.pass_context
def cmd_register(ctx: click.Context, platform: str, message_id: str, pane_id: str, session_id: str) -> None:
    registry = SessionRegistry(_paths(ctx).registry_file)
    try:
        entry = registry.register(platform, message_id, pane_id, session_id)
    except ValueError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(f"registered {entry.platform}:{entry.message_id} -> {entry.pane_id}")


@main.group(help="Configuration commands.")
def config() -> None:
    pass


@config.command("init", help="Write a config template with mode 0600.")
@click.option("--force", is_flag=True, default=False, help="Overwrite an existing config file.")
@click.pass_context
def config_init(ctx: click.Context, force: bool) -> None:
    path: Path = _paths(ctx).config_file
    if path.exists() and not force:
        raise click.ClickException(f"config exists: {path} (use --force)")
    write_config_template(path)
    click.echo(f"wrote {path}")


@config.command("show", help="Print the effective config with tokens masked.")
@click.pass_context
def config_show(ctx: click.Context) -> None:
    cfg = _load_config(_paths(ctx))
    click.echo(json.dumps(cfg.masked_summary(), ensure_ascii=False, indent=2))


@main.command("get-my-id", help="Show the Telegram user/chat id of whoever messages the bot next.")
@click.option("--wait-sec", default=60, type=int, show_default=True)
@click.pass_context
def cmd_get_my_id(ctx: click.Context, wait_sec: int) -> None:
    cfg = _load_config(_paths(ctx))
    if not cfg.telegram_bot_token:
        raise click.ClickException("telegramBotToken is missing from the config file")
    poller = TelegramPoller(timeout_sec=cfg.request_timeout_sec)
    try:
        me = poller.get_me(cfg)
        click.echo(f"bot: @{me.get('username', '(unknown)')}")
        click.echo("send any message to the bot now...")
        existing = poller.get_raw_updates(cfg)
        last_update_id = int(existing[-1]["update_id"]) if existing else 0
        for _ in range(max(1, wait_sec)):
            updates = poller.get_raw_updates(cfg, offset=last_update_id + 1)
            for update in updates:
                last_update_id = max(last_update_id, int(update.get("update_id", 0)))
                message = update.get("message") or {}
                sender = message.get("from") or {}
                chat = message.get("chat") or {}
                if sender.get("id") is None:
                    continue
                click.echo(f"user id: {sender.get('id')} (@{sender.get('username', '-')})")
                click.echo(f"chat id: {chat.get('id')}")
                return
            time.sleep(1)
    except PlatformApiError as exc:
        raise click.ClickException(str(exc)) from exc
    raise click.ClickException(f"no message received within {wait_sec}s")


if __name__ == "__main__":
    main()
