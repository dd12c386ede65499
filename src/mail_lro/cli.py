# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Command-line interface for mail-lro.

Usage:
    # Send one message and poll it to completion, blocking
    mail-lro send

    # Same flow, polled by a background task and rendered as a stream
    mail-lro send-async --wait-timeout 60 --on-timeout abandon

    # Fire a burst of 35 sends with retries disabled and report the first 429
    mail-lro probe someone@example.com --burst-size 35

    # Show how the two status vocabularies map onto each other
    mail-lro statuses

Required environment:
    ACS_CONNECTION_STRING  endpoint=https://<resource>.communication.azure.com/;accesskey=<key>
    ACS_SENDER_ADDRESS     DoNotReply@<domain>.azurecomm.net
"""

from __future__ import annotations

import asyncio
import itertools
import json
import sys
from html import escape
from typing import NoReturn

import click
from rich.console import Console
from rich.table import Table

from .async_poller import AsyncOperationPoller, OperationSubscription, TimeoutPolicy
from .async_transport import AsyncEmailTransport
from .config import DEFAULT_LOG_LEVEL, AppConfig, load_config
from .errors import (
    ConfigurationError,
    HttpResponseError,
    MailLroError,
    ThrottledError,
    ValidationError,
)
from .logger import configure_logging
from .models import EmailMessage, OperationSnapshot, PollOutcome, ProbeOutcome, ProbeReport, ProbeResult
from .poller import OperationPoller
from .probe import RateLimitProbe
from .status import Lifecycle
from .transport import EmailTransport

console = Console()
err_console = Console(stderr=True)

DEFAULT_SUBJECT = "ACS Email Test"
DEFAULT_BODY = "This is a test email from Azure Communication Services."
DEFAULT_ASYNC_SUBJECT = "ACS Email Test (Async)"
DEFAULT_ASYNC_BODY = "This is a test email from Azure Communication Services using AsyncClient."

EXIT_FAILURE = 1
EXIT_CONFIG = 2


def print_error(message: str) -> None:
    """Print a formatted error message to stderr."""
    err_console.print(f"[red]Error:[/red] {message}")


def print_warning(message: str) -> None:
    """Print a formatted warning to stderr."""
    err_console.print(f"[yellow]Warning:[/yellow] {message}")


def print_success(message: str) -> None:
    """Print a formatted success message with checkmark."""
    console.print(f"[green]✓[/green] {message}")


def print_rule(title: str = "") -> None:
    console.rule(title)


def fail(exc: BaseException) -> NoReturn:
    """Report an error raised by a command and exit non-zero.

    Must be called from inside an ``except`` block: unexpected errors are
    printed with their traceback.
    """
    if isinstance(exc, ConfigurationError):
        print_error(str(exc))
        if exc.example:
            err_console.print(f"Example: export {exc.setting}=\"{exc.example}\"", markup=False)
        sys.exit(EXIT_CONFIG)
    if isinstance(exc, ThrottledError):
        print_error(f"Throttled (HTTP {exc.status_code}): {exc}")
        _print_headers(exc.headers, stderr=True)
    elif isinstance(exc, HttpResponseError):
        print_error(f"{type(exc).__name__} (HTTP {exc.status_code}, {exc.code or 'no code'}): {exc.detail or exc}")
    elif isinstance(exc, MailLroError):
        print_error(f"{type(exc).__name__}: {exc}")
    else:
        print_error(f"Unexpected {type(exc).__module__}.{type(exc).__name__}: {exc}")
        err_console.print_exception()
    sys.exit(EXIT_FAILURE)


def _print_headers(headers: dict[str, str], stderr: bool = False) -> None:
    out = err_console if stderr else console
    out.print("Response headers:")
    for name, value in headers.items():
        out.print(f"  {name}: {value}", markup=False)


def get_config(ctx: click.Context) -> AppConfig:
    """Load configuration once per invocation, exiting on missing settings."""
    if "config" not in ctx.obj:
        try:
            ctx.obj["config"] = load_config(ctx.obj.get("config_path"))
        except ConfigurationError as exc:
            fail(exc)
        if ctx.obj.get("log_level") is None:
            configure_logging(ctx.obj["config"].log_level)
    return ctx.obj["config"]


def prompt_message(
    config: AppConfig,
    recipient: str | None,
    subject: str | None,
    body: str | None,
    default_subject: str,
    default_body: str,
) -> EmailMessage:
    """Ask for missing fields and build the message.

    Raises:
        ValidationError: If no recipient address was entered.
    """
    if recipient is None:
        recipient = click.prompt("Recipient email address", default="", show_default=False)
    recipient = recipient.strip()
    if not recipient:
        raise ValidationError("No recipient email address was entered.", fields=["to"])
    if subject is None:
        subject = click.prompt(f"Subject (default: {default_subject})", default="", show_default=False)
    subject = subject.strip() or default_subject
    if body is None:
        body = click.prompt(f"Body (default: {default_body})", default="", show_default=False)
    body = body.strip() or default_body
    return EmailMessage.create(
        sender=config.provider.sender_address,
        to=[recipient],
        subject=subject,
        plain_text=body,
        html=f"<html><body><h1>{escape(subject)}</h1><p>{escape(body)}</p></body></html>",
    )


def render_snapshot(snapshot: OperationSnapshot, index: int | None = None) -> None:
    """Print one poll read."""
    if index is not None:
        console.print(f"[bold]\\[Poll #{index}][/bold]")
    console.print(f"  Operation status: {snapshot.generic_status}")
    console.print(f"  Terminal: {snapshot.is_terminal}")
    console.print(f"  Operation ID: {snapshot.handle.id}", markup=False)
    console.print(f"  Send status: {snapshot.domain_status or '-'}")
    if snapshot.error_code or snapshot.error_message:
        console.print(f"  Error code: {snapshot.error_code}", markup=False)
        console.print(f"  Error message: {snapshot.error_message}", markup=False)
    if not snapshot.is_terminal:
        console.print("  [dim](in progress...)[/dim]")


def render_result(snapshot: OperationSnapshot | None) -> None:
    """Print the final result with the meaning of its status."""
    if snapshot is None:
        console.print("Result: no status was read")
        return
    table = Table(title="Send result", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Operation ID", snapshot.handle.id)
    table.add_row("Operation status", str(snapshot.generic_status))
    table.add_row("Send status", str(snapshot.domain_status or "-"))
    table.add_row("Meaning", snapshot.lifecycle.description)
    if snapshot.is_failure:
        table.add_row("Error code", snapshot.error_code or "")
        table.add_row("Error message", snapshot.error_message or "")
    console.print(table)


def render_outcome(outcome: PollOutcome) -> int:
    """Print the final outcome and return the exit code it maps to."""
    print_rule("Final result")
    render_result(outcome.snapshot)
    if outcome.timed_out:
        print_warning(
            f"No terminal status after {outcome.elapsed:.1f}s ({outcome.polls} polls); "
            "the send may still complete server-side."
        )
        return 0
    if outcome.cancelled:
        print_warning(f"Polling stopped after {outcome.polls} polls.")
        return 0
    if outcome.snapshot is not None and outcome.snapshot.is_failure:
        return EXIT_FAILURE
    print_success(f"Operation finished with {outcome.snapshot.generic_status} after {outcome.polls} polls")
    return 0


def _print_send_banner(config: AppConfig, message: EmailMessage) -> None:
    print_rule("Sending")
    console.print(f"Sender: {config.provider.sender_address}", markup=False)
    console.print(f"Recipient: {', '.join(message.to)}", markup=False)
    console.print(f"Subject: {message.subject}", markup=False)
    print_rule()


@click.group()
@click.option("--config", "config_path", envvar="ACS_CONFIG", default=None,
              type=click.Path(dir_okay=False), help="INI file with [provider], [polling] and [probe] sections.")
@click.option("--log-level", default=None,
              help="Logging level (default: [logging] level, ACS_LOG_LEVEL or WARNING).")
@click.pass_context
def main(ctx: click.Context, config_path: str | None, log_level: str | None) -> None:
    """Send mail through a long-running operation and watch it complete."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["log_level"] = log_level
    configure_logging(log_level or DEFAULT_LOG_LEVEL)


@main.command()
@click.option("--to", "recipient", default=None, help="Recipient address (prompted if omitted).")
@click.option("--subject", default=None, help=f"Subject (default: {DEFAULT_SUBJECT}).")
@click.option("--body", default=None, help="Plain-text body.")
@click.option("--interval", type=float, default=None, help="Seconds between status reads.")
@click.option("--timeout", type=float, default=None, help="Seconds to wait for a terminal status.")
@click.pass_context
def send(
    ctx: click.Context,
    recipient: str | None,
    subject: str | None,
    body: str | None,
    interval: float | None,
    timeout: float | None,
) -> None:
    """Send one message and poll it to completion (blocking)."""
    config = get_config(ctx)
    try:
        message = prompt_message(config, recipient, subject, body, DEFAULT_SUBJECT, DEFAULT_BODY)
    except ValidationError as exc:
        fail(exc)
    _print_send_banner(config, message)

    counter = itertools.count(1)
    try:
        with EmailTransport(config.provider) as transport:
            poller = OperationPoller(transport, config.polling)
            handle = poller.submit(message)
            console.print(f"Send accepted, operation {handle.id}", markup=False)
            outcome = poller.await_completion(
                handle, interval, timeout, on_snapshot=lambda s: render_snapshot(s, next(counter))
            )
    except Exception as exc:
        fail(exc)
    sys.exit(render_outcome(outcome))


async def _render_stream(subscription: OperationSubscription) -> None:
    index = 0
    async for snapshot in subscription:
        index += 1
        render_snapshot(snapshot, index)


async def send_with_subscription(
    config: AppConfig,
    message: EmailMessage,
    wait_timeout: float,
    on_timeout: TimeoutPolicy,
    interval: float | None = None,
    timeout: float | None = None,
) -> PollOutcome:
    """Submit ``message`` and follow it through a subscription.

    The caller only waits on the subscription's final signal; polling and
    rendering run in their own tasks, and both are released on every exit
    path.
    """
    renderer: asyncio.Task[None] | None = None
    try:
        async with AsyncEmailTransport(config.provider) as transport:
            poller = AsyncOperationPoller(transport, config.polling)
            handle = await poller.submit(message)
            console.print(f"Send accepted, operation {handle.id}", markup=False)
            async with poller.subscribe(handle, interval, timeout) as subscription:
                renderer = asyncio.create_task(_render_stream(subscription), name="render-snapshots")
                console.print("Waiting for the polling task to report a final status...")
                outcome = await subscription.wait(wait_timeout, on_timeout=on_timeout)
                if outcome.timed_out and on_timeout is TimeoutPolicy.KEEP_POLLING:
                    print_warning(f"Timed out after {wait_timeout:.0f}s; polling continues for audit.")
                    outcome = await subscription.drain()
                elif outcome.timed_out:
                    print_warning(f"Timed out after {wait_timeout:.0f}s; polling abandoned.")
    finally:
        if renderer is not None:
            # Stream errors are re-raised by wait(); the renderer only displays.
            await asyncio.gather(renderer, return_exceptions=True)
    return outcome


@main.command("send-async")
@click.option("--to", "recipient", default=None, help="Recipient address (prompted if omitted).")
@click.option("--subject", default=None, help=f"Subject (default: {DEFAULT_ASYNC_SUBJECT}).")
@click.option("--body", default=None, help="Plain-text body.")
@click.option("--interval", type=float, default=None, help="Seconds between status reads.")
@click.option("--timeout", type=float, default=None, help="Seconds the polling task may run.")
@click.option("--wait-timeout", type=float, default=None, help="Seconds to wait for the final status.")
@click.option("--on-timeout", type=click.Choice([p.value for p in TimeoutPolicy]), default=TimeoutPolicy.ABANDON.value,
              show_default=True, help="Stop polling or keep polling for audit when the wait times out.")
@click.pass_context
def send_async(
    ctx: click.Context,
    recipient: str | None,
    subject: str | None,
    body: str | None,
    interval: float | None,
    timeout: float | None,
    wait_timeout: float | None,
    on_timeout: str,
) -> None:
    """Send one message and follow it from a background polling task."""
    config = get_config(ctx)
    try:
        message = prompt_message(config, recipient, subject, body, DEFAULT_ASYNC_SUBJECT, DEFAULT_ASYNC_BODY)
    except ValidationError as exc:
        fail(exc)
    _print_send_banner(config, message)

    wait = config.polling.wait_timeout if wait_timeout is None else wait_timeout
    try:
        outcome = asyncio.run(
            send_with_subscription(config, message, wait, TimeoutPolicy(on_timeout), interval, timeout)
        )
    except Exception as exc:
        fail(exc)
    sys.exit(render_outcome(outcome))


def render_probe_result(result: ProbeResult, burst_size: int) -> None:
    """Print one probe submission as soon as it is recorded."""
    prefix = f"[{result.sequence_number}/{burst_size}]"
    elapsed_ms = result.elapsed * 1000
    if result.outcome is ProbeOutcome.ACCEPTED:
        console.print(f"{prefix} accepted in {elapsed_ms:.0f} ms, operation {result.operation_id}", markup=False)
    elif result.outcome is ProbeOutcome.THROTTLED:
        err_console.print(f"{prefix} THROTTLED (HTTP {result.http_status_code}) after {elapsed_ms:.0f} ms",
                          markup=False)
        _print_headers(result.headers, stderr=True)
    else:
        err_console.print(f"{prefix} failed in {elapsed_ms:.0f} ms: {result.error_detail}", markup=False)


def render_probe_report(report: ProbeReport) -> None:
    """Print the aggregate probe report."""
    print_rule("Probe summary")
    if report.first_throttled_index is not None:
        err_console.print(
            f"[bold red]429 received at submission #{report.first_throttled_index}[/bold red] "
            f"after {report.accepted_before_throttling} accepted"
        )
    table = Table(show_header=False)
    table.add_column("Metric", style="cyan")
    table.add_column("Value")
    table.add_row("Accepted", str(report.accepted))
    table.add_row("Failed", str(report.failed))
    table.add_row("Issued", f"{len(report.results)} / {report.burst_size}")
    table.add_row("Burst completed", "yes" if report.completed else "no")
    table.add_row("Total time", f"{report.elapsed * 1000:.0f} ms ({report.elapsed:.3f} s)")
    console.print(table)


@main.command()
@click.argument("recipient", required=False)
@click.option("--burst-size", type=int, default=None, help="Number of submissions (default: 35).")
@click.option("--json", "as_json", is_flag=True, help="Print the summary as JSON.")
@click.pass_context
def probe(ctx: click.Context, recipient: str | None, burst_size: int | None, as_json: bool) -> None:
    """Submit a burst with retries disabled and report the first HTTP 429."""
    config = get_config(ctx)
    if not recipient:
        print_error("Usage: mail-lro probe <recipient-address>")
        err_console.print("Example: mail-lro probe test@example.com")
        sys.exit(EXIT_FAILURE)
    size = config.probe.burst_size if burst_size is None else burst_size

    if not as_json:
        print_rule("Rate limit probe")
        console.print(f"Expected ceiling: {config.probe.limit_per_minute}/min, submissions: {size}")
        console.print(f"Sender: {config.provider.sender_address}", markup=False)
        console.print(f"Recipient: {recipient}", markup=False)
        print_rule()

    on_result = None if as_json else (lambda result: render_probe_result(result, size))
    try:
        with RateLimitProbe.from_config(config, on_result=on_result) as rate_probe:
            report = rate_probe.run(recipient, burst_size=size)
    except Exception as exc:
        fail(exc)

    if as_json:
        click.echo(json.dumps(report.summary(), indent=2))
    else:
        render_probe_report(report)


@main.command()
def statuses() -> None:
    """Show the status lifecycle and its two vocabularies."""
    table = Table(title="Send operation lifecycle")
    table.add_column("Lifecycle", style="cyan")
    table.add_column("Operation status")
    table.add_column("Send status")
    table.add_column("Terminal")
    table.add_column("Meaning")
    for lifecycle in Lifecycle:
        table.add_row(
            lifecycle.name,
            str(lifecycle.generic),
            str(lifecycle.domain),
            "yes" if lifecycle.is_terminal else "no",
            lifecycle.description,
        )
    console.print(table)


if __name__ == "__main__":
    main()
