"""
fleetwatch 命令行入口模块。

提供 CLI 命令：diagnose（诊断单个实例）、fix（诊断并自动修复）、
sweep（批量巡检，支持 --watch 循环）和 watchdog（在本机执行一次看门狗检查）。
"""
import asyncio
import json
import logging
import signal
import sys

import click

from fleetwatch import __version__
from fleetwatch.core.config import settings
from fleetwatch.core.exceptions import FleetwatchError

logger = logging.getLogger("fleetwatch")


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
@click.version_option(version=__version__)
@click.pass_context
def cli(ctx, verbose):
    """fleetwatch - 实例群健康探测、自动修复与看门狗。"""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose

    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _fail(e: Exception) -> None:
    click.echo(f"Error: {e}", err=True)
    sys.exit(1)


@cli.command()
@click.argument("name")
@click.option("--json", "as_json", is_flag=True, help="Machine-readable JSON output")
def diagnose(name, as_json):
    """诊断实例 NAME（``self`` 表示本机）。仅在实例不可达时退出码为 1。"""
    from fleetwatch.probe.collector import ProbeCollector
    from fleetwatch.reporting import render_diagnosis
    from fleetwatch.services.registry import load_instance

    try:
        host = load_instance(name)
        report = asyncio.run(ProbeCollector().collect(host))
    except FleetwatchError as e:
        _fail(e)

    if as_json:
        click.echo(json.dumps(report.to_wire(), indent=2))
    else:
        click.echo(render_diagnosis(report))
    if not report.reachable:
        sys.exit(1)


@cli.command()
@click.argument("name")
@click.option("--dry-run", is_flag=True, help="Log remediation commands without running them")
def fix(name, dry_run):
    """诊断实例 NAME 并自动修复，输出修复会话 JSON。"""
    from fleetwatch.remediation import diagnose_and_fix
    from fleetwatch.services.registry import load_instance

    try:
        host = load_instance(name)
        report, result = asyncio.run(diagnose_and_fix(host, dry_run=True if dry_run else None))
    except FleetwatchError as e:
        _fail(e)

    click.echo(json.dumps(result.to_wire(), indent=2))
    if not report.reachable:
        sys.exit(1)


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Machine-readable JSON output")
@click.option("--concurrency", type=int, default=None, help="Hosts probed in parallel")
@click.option("--timeout", "host_timeout", type=float, default=None, help="Per-host timeout in seconds")
@click.option("--watch", type=int, default=0, help="Repeat every N seconds until interrupted")
def sweep(as_json, concurrency, host_timeout, watch):
    """巡检注册表中的全部实例。"""
    from fleetwatch.fleet import FleetSweeper
    from fleetwatch.reporting import render_fleet
    from fleetwatch.services.registry import list_instances

    hosts = list_instances()
    try:
        sweeper = FleetSweeper(concurrency=concurrency, per_host_timeout=host_timeout)
    except ValueError as e:
        _fail(e)

    def show(report):
        if as_json:
            click.echo(json.dumps(report.to_wire(), indent=2))
        else:
            if watch:
                click.clear()
            click.echo(render_fleet(report))
            if watch:
                click.echo(click.style(f"\nRefreshing in {watch} seconds... (Ctrl+C to stop)", fg="cyan"))

    async def _run():
        cancel = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, cancel.set)
        if watch > 0:
            await sweeper.sweep_forever(hosts, watch, cancel, on_report=show)
        else:
            show(await sweeper.sweep(hosts, cancel))

    logger.info("Sweeping %d instance(s) from %s", len(hosts), settings.instances_dir)
    asyncio.run(_run())


@cli.command()
@click.option("--config", "-c", "config_path", default="/etc/fleetwatch/watchdog.yaml", help="Config file path")
def watchdog(config_path):
    """在本机执行一次看门狗检查（由 cron / systemd timer 调用）。"""
    from fleetwatch.watchdog import Watchdog, WatchdogStatus, load_config
    from fleetwatch.watchdog.watchdog import setup_file_logging

    try:
        cfg = load_config(config_path)
    except (FileNotFoundError, FleetwatchError) as e:
        _fail(e)

    setup_file_logging(cfg.paths.log_file)
    result = asyncio.run(Watchdog(cfg).tick())
    click.echo(json.dumps(result.model_dump(mode="json")))
    if result.state == WatchdogStatus.DEAD:
        sys.exit(1)


def main():
    """CLI 入口函数。"""
    cli()


if __name__ == "__main__":
    main()
