"""
终端报告渲染。

把 DiagnosisReport / FleetReport 渲染成分组的彩色文本，供 CLI 非 JSON 模式输出。
"""
import click

from fleetwatch.models import CheckStatus, DiagnosisReport, FleetReport, HostStatus

RULE = "=" * 51

GROUPS = [
    ("Connectivity", [
        ("ssh", "SSH"),
        ("gateway_process", "Gateway"),
        ("health_endpoint", "Health Endpoint"),
    ]),
    ("Authentication", [
        ("api_key", "API Key"),
        ("cli_tool", "CLI Tool"),
        ("delegated_auth", "CLI Auth"),
        ("user_mismatch", "User Mismatch"),
    ]),
    ("Identity", [
        ("identity", "Identity"),
        ("declared_config", "Config"),
        ("last_checkpoint", "Last Checkpoint"),
    ]),
    ("System", [
        ("disk", "Disk"),
        ("memory", "Memory"),
        ("config_valid", "Config JSON"),
        ("sessions", "Sessions"),
    ]),
]

_INDICATORS = {
    CheckStatus.OK: ("✓", "green"),
    CheckStatus.WARN: ("⚠", "yellow"),
    CheckStatus.ERROR: ("✗", "red"),
}

_HOST_STYLE = {
    HostStatus.HEALTHY: ("✓", "green"),
    HostStatus.DEGRADED: ("⚠", "yellow"),
    HostStatus.OFFLINE: ("✗", "red"),
    HostStatus.UNREACHABLE: ("✗", "red"),
}

TROUBLESHOOTING = [
    "Check specific instance: fleetwatch diagnose <instance-name>",
    "Attempt automatic repair: fleetwatch fix <instance-name>",
    "Watchdog state on the host: /var/lib/fleetwatch/watchdog-state.json",
]


def indicator(status: CheckStatus) -> str:
    symbol, color = _INDICATORS[status]
    return click.style(symbol, fg=color)


def render_diagnosis(report: DiagnosisReport) -> str:
    """分组输出各检查项，末尾附汇总行。未出现在报告中的检查项跳过。"""
    lines = [
        "",
        click.style(RULE, bold=True),
        click.style(f"  Diagnosing: {report.instance} ({report.ip})", bold=True),
        click.style(RULE, bold=True),
        "",
    ]
    for title, members in GROUPS:
        rows = [(label, report.checks[name]) for name, label in members if name in report.checks]
        if not rows:
            continue
        lines.append(f"{title}:")
        for label, check in rows:
            lines.append(f"  {label + ':':<22} {indicator(check.status)} {check.detail}")
        lines.append("")

    summary = f"{report.passed_count} passed"
    if report.warned_count:
        summary += ", " + click.style(f"{report.warned_count} warnings", fg="yellow")
    if report.failed_count:
        summary += ", " + click.style(f"{report.failed_count} errors", fg="red")
    if not report.warned_count and not report.failed_count:
        summary += ", 0 warnings, 0 errors"
    lines.append(f"Summary: {summary}")
    return "\n".join(lines)


def render_fleet(report: FleetReport) -> str:
    lines = []
    for name, status in report.per_instance.items():
        symbol, color = _HOST_STYLE[status]
        lines.append(click.style(f"{symbol} {name}", fg=color) + f" - {status.value}")
    for name in report.cancelled:
        lines.append(click.style(f"? {name}", fg="cyan") + " - CANCELLED")

    counts = report.summary()
    lines += [
        "",
        click.style(RULE, fg="blue"),
        click.style("                  MONITORING SUMMARY", fg="blue"),
        click.style(RULE, fg="blue"),
        "",
        f"  Total instances:     {counts['total']}",
        f"  Healthy:             {counts[HostStatus.HEALTHY.value]}",
        f"  Degraded:            {counts[HostStatus.DEGRADED.value]}",
        f"  Offline:             {counts[HostStatus.OFFLINE.value]}",
        f"  Unreachable:         {counts[HostStatus.UNREACHABLE.value]}",
        "",
    ]

    bad = counts[HostStatus.OFFLINE.value] + counts[HostStatus.UNREACHABLE.value]
    degraded = counts[HostStatus.DEGRADED.value]
    if bad:
        lines.append(click.style("⚠ CRITICAL: Some instances are offline or unreachable", fg="red"))
    elif degraded:
        lines.append(click.style("⚠ WARNING: Some instances are degraded", fg="yellow"))
    elif counts["total"] == 0:
        lines.append(click.style("No instances found to monitor", fg="cyan"))
    else:
        lines.append(click.style("✓ All instances healthy", fg="green"))

    if bad or degraded:
        lines += ["", click.style("Troubleshooting:", fg="blue")]
        lines += [f"  • {hint}" for hint in TROUBLESHOOTING]
    return "\n".join(lines)
