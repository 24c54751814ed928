"""Command-line interface for frugal-jenkins."""

import sys
from pathlib import Path

import click

from . import config, credentials, deploy, idle, security, verify
from .utils import FrugalError


class AliasedGroup(click.Group):
    """A Click Group that supports command aliases."""

    def get_command(self, ctx, cmd_name):
        rv = click.Group.get_command(self, ctx, cmd_name)
        if rv is not None:
            return rv
        # Check if cmd_name is an alias for any command
        for name, cmd in self.commands.items():
            if cmd_name in getattr(cmd, "aliases", ()):
                return cmd
        return None

    def format_commands(self, ctx, formatter):
        """List commands together with their aliases."""
        commands = []
        for subcommand in self.list_commands(ctx):
            cmd = self.get_command(ctx, subcommand)
            if cmd is None or cmd.hidden:
                continue

            cmd_name = subcommand
            if getattr(cmd, "aliases", None):
                cmd_name = f"{subcommand} ({', '.join(cmd.aliases)})"

            commands.append((cmd_name, cmd))

        if len(commands):
            limit = formatter.width - 6 - max(len(cmd[0]) for cmd in commands)

            rows = []
            for subcommand, cmd in commands:
                rows.append((subcommand, cmd.get_short_help_str(limit)))

            if rows:
                with formatter.section("Commands"):
                    formatter.write_dl(rows)


def _fail(e: Exception) -> None:
    click.echo(f"❌ Error: {e}", err=True)
    sys.exit(1)


@click.group(cls=AliasedGroup)
@click.option("--env-file", type=click.Path(exists=True), help="Path to .env file")
@click.pass_context
def cli(ctx, env_file):
    """Ultra-frugal Jenkins on GCP - deploy, unlock, and keep agents cheap."""
    ctx.ensure_object(dict)
    config.reset_config()
    config.get_config(env_file)


@cli.command("deploy")
@click.argument("environment", type=click.Choice(deploy.ENVIRONMENTS), default="dev")
@click.option("--skip-validation", is_flag=True, help="Skip prerequisite validation checks")
@click.option("--force", is_flag=True, help="Apply changes without confirmation prompts")
@click.option("--destroy", is_flag=True, help="Destroy infrastructure instead of creating it")
def deploy_cmd(environment, skip_validation, force, destroy):
    """Deploy (or destroy) an environment with Terraform."""
    cfg = config.get_config()
    try:
        deploy.deploy(
            environment,
            root=cfg.repo_root,
            skip_validation=skip_validation,
            force=force,
            destroy=destroy,
            confirm=lambda prompt, default: click.confirm(prompt, default=default),
        )
    except FrugalError as e:
        click.echo("🔧 Check terraform.tfvars, project permissions, enabled APIs and billing.", err=True)
        _fail(e)


@cli.command("password")
@click.option("--service", "-s", help="Cloud Run service name")
@click.option("--region", "-r", help="Cloud Run region")
@click.option("--project", "-p", help="GCP project ID")
@click.option("--from-file", "-f", type=click.Path(exists=True, dir_okay=False), help="Read logs from a file instead of gcloud")
@click.option("--no-clipboard", is_flag=True, help="Do not copy the password to the clipboard")
def password_cmd(service, region, project, from_file, no_clipboard):
    """Retrieve the Jenkins initial admin password from Cloud Run logs."""
    cfg = config.get_config()
    service = service or cfg.service_name
    region = region or cfg.region
    project = project or cfg.project_id

    if from_file:
        source = credentials.StaticLogSource.from_file(from_file)
        click.echo(f"🔍 Searching {from_file} for the initial admin password...")
    else:
        source = credentials.CloudRunLogSource(service, region, project, timeout=cfg.log_timeout)
        click.echo("🔍 Retrieving Jenkins initial admin password...")
        click.echo(f"📋 Service: {service}")
        click.echo(f"🌍 Region: {region}")

    try:
        result = credentials.retrieve_initial_credential(
            source,
            marker_text=cfg.password_marker,
            expected_length=cfg.password_length,
            log_limit=cfg.log_limit,
            fallback_limit=cfg.fallback_log_limit,
            max_diagnostics=10,
        )
    except FrugalError as e:
        _fail(e)

    if result.found:
        click.echo("✅ Found Jenkins Initial Admin Password!")
        click.echo("")
        click.echo(f"🔑 Password: {result.password}")
        click.echo("")
        click.echo("📋 Next Steps:")
        click.echo("1. Paste it in the Jenkins 'Administrator password' field")
        click.echo("2. Click 'Continue' and complete the setup wizard")
        if not no_clipboard and credentials.copy_to_clipboard(result.password):
            click.echo("📋 Password copied to clipboard!")
        return

    click.echo(f"❌ Could not find a valid {cfg.password_length}-character password.")
    click.echo("🔍 Showing recent password-related log entries:")
    click.echo("")
    for line in result.diagnostics:
        click.echo(line)
    click.echo("")
    click.echo("💡 Troubleshooting:")
    click.echo("1. Jenkins may still be starting up - wait a few minutes and try again")
    click.echo(f"2. Check recent logs: gcloud run services logs read {service} --region={region} --limit=20")
    click.echo(f"3. Verify the service is running: gcloud run services describe {service} --region={region}")
    sys.exit(1)


password_cmd.aliases = ["pw"]


@cli.command("verify")
@click.argument("project_id", required=False)
@click.option("--no-scale", is_flag=True, help="Do not touch the service's instance limits")
@click.option("--wait", is_flag=True, help="Wait for Jenkins to answer over HTTP")
def verify_cmd(project_id, no_scale, wait):
    """Verify Jenkins persistence across Cloud Run scale-to-zero."""
    cfg = config.get_config()
    project_id = project_id or cfg.project_id
    if not project_id:
        _fail(FrugalError("PROJECT_ID is required (argument or FJ_PROJECT_ID)"))

    try:
        report = verify.verify_persistence(
            project_id,
            service=cfg.service_name,
            region=cfg.region,
            bucket=cfg.bucket_name if cfg.project_id in (None, project_id) else None,
            scale=not no_scale,
            wait=wait,
        )
    except FrugalError as e:
        _fail(e)

    click.echo("")
    click.echo("🎉 Persistence Test Complete!")
    click.echo(f"✅ GCS bucket configured: {report.bucket}")
    if report.scaled:
        click.echo("✅ Cloud Run scales to zero: YES")
    for warning in report.warnings:
        click.echo(f"⚠️  {warning}")
    if report.jenkins_url:
        click.echo(f"🔗 Jenkins URL: {report.jenkins_url}")


@cli.group(name="security", cls=AliasedGroup)
def security_group():
    """Restrict who can reach the Jenkins endpoint."""
    pass


@security_group.command("ip-allowlist")
@click.argument("environment", type=click.Choice(deploy.ENVIRONMENTS), default="dev")
@click.option("--additional-ips", "-a", default="", help="Extra comma-separated IPs or ranges")
@click.option("--no-detect", is_flag=True, help="Do not add this machine's public IP")
@click.option("--force", is_flag=True, help="Plan and apply without confirmation prompts")
def ip_allowlist_cmd(environment, additional_ips, no_detect, force):
    """Allow HTTPS only from listed IPs (firewall rules)."""
    cfg = config.get_config()
    try:
        current_ip = None
        if not no_detect:
            click.echo("📡 Detecting your current public IP address...")
            current_ip = security.detect_public_ip()
            click.echo(f"✅ Your current public IP: {current_ip}")
        cidrs = security.normalize_cidrs(current_ip, additional_ips)
        security.apply_ip_allowlist(
            cfg.repo_root,
            environment,
            cidrs,
            confirm=lambda prompt, default: click.confirm(prompt, default=default),
            force=force,
        )
    except FrugalError as e:
        _fail(e)


@security_group.command("iap")
@click.argument("environment", type=click.Choice(deploy.ENVIRONMENTS), default="dev")
@click.option("--force", is_flag=True, help="Apply without confirmation prompts")
@click.option("--no-check", is_flag=True, help="Skip the HTTP check of the Jenkins URL")
def iap_cmd(environment, force, no_check):
    """Enable Identity-Aware Proxy authentication."""
    cfg = config.get_config()
    try:
        jenkins_url = security.enable_iap(
            cfg.repo_root,
            environment,
            confirm=lambda prompt, default: click.confirm(prompt, default=default),
            force=force,
            check=not no_check,
        )
    except FrugalError as e:
        _fail(e)

    if jenkins_url is None:
        sys.exit(1)


@cli.group(name="agent", cls=AliasedGroup)
def agent():
    """Spot VM agent helpers."""
    pass


@agent.command("idle-guard")
@click.option("--interval", type=float, help="Seconds between samples")
@click.option("--threshold", type=int, help="Consecutive idle samples before shutdown")
@click.option("--cpu-threshold", type=float, help="CPU percent below which a sample may be idle")
@click.option(
    "--on-sampler-error",
    type=click.Choice([p.value for p in idle.SamplerFailurePolicy]),
    help="How a failed sample is counted",
)
@click.option("--shutdown-command", help="Command that halts the host")
def idle_guard_cmd(interval, threshold, cpu_threshold, on_sampler_error, shutdown_command):
    """Shut this host down after a sustained idle period."""
    cfg = config.get_config()
    try:
        shutdown = idle.ShutdownCommand(shutdown_command or cfg.shutdown_command)
        shutdown.check()
        guard = idle.IdleGuard(
            shutdown=shutdown,
            interval=interval if interval is not None else cfg.idle_interval,
            idle_threshold=threshold if threshold is not None else cfg.idle_threshold,
            cpu_threshold=cpu_threshold if cpu_threshold is not None else cfg.cpu_threshold,
            failure_policy=on_sampler_error or cfg.sampler_failure_policy,
        )
        guard.install_signal_handlers()
        guard.monitor_and_shutdown()
    except (FrugalError, ValueError) as e:
        _fail(e)


@agent.command("unit")
@click.option("--user", "-u", default="jenkins", show_default=True, help="User the guard runs as")
@click.option("--executable", "-e", help="Path to the fj executable")
@click.option("--output", "-o", type=click.Path(dir_okay=False), help="Write the unit to a file")
def unit_cmd(user, executable, output):
    """Render the idle-shutdown systemd unit."""
    unit = idle.render_service_unit(executable=executable, user=user)
    if output:
        Path(output).write_text(unit)
        click.echo(f"Wrote {output}")
    else:
        click.echo(unit, nl=False)


if __name__ == "__main__":
    cli()
