"""CLI entry point for api-spec-drift."""

import json
import logging
from pathlib import Path

import click

from api_spec_drift.config import DriftConfig, load_config
from api_spec_drift.coverage.export import EXPORT_FORMATS, render_report, write_report
from api_spec_drift.errors import MalformedTraffic, SpecError
from api_spec_drift.generator.base import Strategy
from api_spec_drift.parser.traffic import TRAFFIC_FORMATS, load_traffic
from api_spec_drift.session import AssessmentSession

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR"]


def _common_options(fn):
    fn = click.option("--log-level", default=None, type=click.Choice(LOG_LEVELS, case_sensitive=False),
                      help="Logging level (defaults to the config value).")(fn)
    fn = click.option("--config", "config_path", default=None, type=click.Path(exists=True, path_type=Path),
                      help="YAML settings file.")(fn)
    return fn


def _setup(config_path: Path | None, log_level: str | None) -> DriftConfig:
    try:
        config = load_config(config_path)
    except ValueError as e:
        raise click.ClickException(str(e)) from e
    logging.basicConfig(
        level=(log_level or config.log_level).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return config


def _open_session(spec_path: Path, config: DriftConfig, host: str | None = None) -> AssessmentSession:
    try:
        return AssessmentSession.from_file(spec_path, config, host=host)
    except SpecError as e:
        raise click.ClickException(f"{spec_path}: {e}") from e


@click.group()
def main():
    """API Spec Drift: reconcile an OpenAPI/Swagger spec with observed traffic."""
    pass


@main.command()
@click.argument("spec_path", type=click.Path(exists=True, path_type=Path))
@_common_options
def inspect(spec_path: Path, config_path: Path | None, log_level: str | None):
    """List declared operations, their parameters and readiness."""
    config = _setup(config_path, log_level)
    with _open_session(spec_path, config) as session:
        spec = session.spec
        click.echo(f"{spec.title} {spec.version} (source {spec.source_version})")
        for server in spec.servers:
            click.echo(f"  server: {server.resolved_url}")
        readiness = session.readiness()
        click.echo(f"Found {len(spec.operations)} operations.")
        for op in spec.operations:
            click.echo(f"{op.key}  [{readiness[op.key]}]" + (f"  ({op.operation_id})" if op.operation_id else ""))
            for p in op.parameters:
                flag = "*" if p.required else " "
                origin = " security" if p.security else ""
                click.echo(f"   {flag} {p.location}:{p.name} {p.param_type}{origin}")
            if op.request_body is not None and op.request_body.media_type:
                flag = "*" if op.request_body.required else " "
                click.echo(f"   {flag} body:{op.request_body.media_type}")


@main.command()
@click.argument("spec_path", type=click.Path(exists=True, path_type=Path))
@click.option("-o", "--output", required=True, type=click.Path(path_type=Path), help="Output JSON-lines file.")
@click.option("--strategy", default="valid", type=click.Choice([s.value for s in Strategy]), help="Synthesis strategy.")
@click.option("--operation", "operations", multiple=True, help="Operation key ('GET /pets') or operationId; repeatable.")
@_common_options
def synth(spec_path: Path, output: Path, strategy: str, operations: tuple[str, ...],
          config_path: Path | None, log_level: str | None):
    """Synthesize requests for the host to execute."""
    config = _setup(config_path, log_level)
    with _open_session(spec_path, config) as session:
        try:
            batch = session.synthesize_all(strategy, list(operations) if operations else None)
        except KeyError as e:
            raise click.ClickException(str(e)) from e

    output.parent.mkdir(parents=True, exist_ok=True)
    with output.open("w", encoding="utf-8") as fh:
        for request in batch.requests:
            fh.write(request.model_dump_json() + "\n")
    click.echo(f"Wrote {len(batch.requests)} {strategy} request(s) to {output}")
    for failure in batch.failures:
        click.echo(f"  FAILED {failure.operation_key}: [{failure.error_kind}] {failure.reason}", err=True)
    if batch.failures:
        click.echo(f"{len(batch.failures)} operation(s) could not be synthesized.", err=True)


@main.command()
@click.argument("spec_path", type=click.Path(exists=True, path_type=Path))
@click.argument("traffic_path", type=click.Path(exists=True, path_type=Path))
@click.option("--format", "fmt", default="json", type=click.Choice(list(EXPORT_FORMATS)), help="Report format.")
@click.option("--traffic-format", default="auto", type=click.Choice(list(TRAFFIC_FORMATS)), help="Traffic file format.")
@click.option("-o", "--output", default=None, type=click.Path(path_type=Path), help="Write the report here instead of stdout.")
@click.option("--host", default=None, help="Only harvest parameter values from this host.")
@_common_options
def report(spec_path: Path, traffic_path: Path, fmt: str, traffic_format: str, output: Path | None,
           host: str | None, config_path: Path | None, log_level: str | None):
    """Replay captured traffic and report drift against the spec."""
    config = _setup(config_path, log_level)
    try:
        requests = load_traffic(traffic_path, traffic_format)
    except MalformedTraffic as e:
        raise click.ClickException(str(e)) from e

    with _open_session(spec_path, config, host=host) as session:
        session.observe_all(requests)
        drift = session.report()
        details = session.details()

    if output is not None:
        write_report(drift, output, fmt, details)
        click.echo(f"Report saved to {output}")
    else:
        click.echo(render_report(drift, fmt, details))
    click.echo(json.dumps(drift.summary()), err=True)
