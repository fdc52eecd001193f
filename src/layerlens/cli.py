"""Command-line interface for layerlens."""
import asyncio
import json
import logging
import os
import signal
import sys
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import click
from rich.text import Text

from .core.compare import build_compare_summary_delta, compare_layers, layers_from_result, summary_from_result
from .core.models import BulkAnalyzeReport, BulkAnalyzeTarget, Config, FileTreeArtifacts, ImageInfo
from .core.reconcile import AGGREGATE_FALLBACKS
from .core.wasted import calculate_final_image_efficiency
from .service.client import AnalysisClient, run_single_analysis
from .service.job_status import format_job_status_display
from .service.scheduler import BulkAnalyzeScheduler, CancellationToken, build_bulk_request, validate_days
from .utils.console import THEME_NAMES, ConsoleManager, get_alternating_theme
from .utils.formatting import (
    extract_id,
    format_bytes,
    format_elapsed,
    format_percent,
    format_signed_bytes,
    format_signed_percent,
)
from .worker.orchestrator import FileTreeOrchestrator, FileTreeStatus


def setup_logging(debug: bool) -> None:
    """Configure logging based on debug flag."""
    level = logging.DEBUG if debug else logging.WARNING
    format_string = '[%(levelname)s] %(name)s: %(message)s' if debug else '[%(levelname)s] %(message)s'

    logging.basicConfig(
        level=level,
        format=format_string,
        handlers=[logging.StreamHandler(sys.stderr)]
    )

    # Reduce noise from external libraries
    logging.getLogger("aiohttp").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)


@dataclass
class CliState:
    config: Config
    console: ConsoleManager


@contextmanager
def handle_errors(state: CliState):
    """Report failures through the console and exit with status 1."""
    console = state.console
    try:
        yield
    except click.ClickException:
        raise
    except KeyboardInterrupt:
        console.print("\n[error]> PROCESS TERMINATED BY USER[/error]")
        sys.exit(1)
    except Exception as e:
        console.print(f"\n[error]> CRITICAL ERROR:[/error] {str(e)}")
        if state.config.debug:
            console.print_exception()
        sys.exit(1)


def unwrap_result(data: Dict[str, Any]) -> Dict[str, Any]:
    """Accept both a stored history entry ({metadata, result}) and a bare result."""
    if 'metadata' in data and isinstance(data.get('result'), dict):
        return data['result']
    return data


def load_result_file(path: str) -> Dict[str, Any]:
    with open(path, 'r', encoding='utf-8') as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise click.ClickException(f"{path} does not contain an analysis result")
    return unwrap_result(data)


async def compute_artifacts(raw_result: Dict[str, Any], config: Config):
    with FileTreeOrchestrator(aggregate_fallback=config.aggregate_fallback,
                              use_worker=config.use_worker) as orchestrator:
        return await orchestrator.compute(raw_result)


def artifacts_to_dict(artifacts: FileTreeArtifacts) -> Dict[str, Any]:
    return {
        'fileTreeData': artifacts.file_tree_data.to_dict(),
        'wastedFileReferences': [ref.to_dict() for ref in artifacts.wasted_file_references],
    }


def print_summary(console: ConsoleManager, raw_result: Dict[str, Any]) -> None:
    summary = summary_from_result(raw_result)
    image = raw_result.get('image') if isinstance(raw_result.get('image'), dict) else {}
    efficiency = summary.efficiency_score
    if 'efficiencyScore' not in image:
        efficiency = calculate_final_image_efficiency(summary.inefficient_bytes, summary.size_bytes)

    console.print(f"[info]IMAGE SIZE:[/info] [number]{format_bytes(summary.size_bytes)}[/number]")
    console.print(f"[info]WASTED SPACE:[/info] [number]{format_bytes(summary.inefficient_bytes)}[/number]")
    console.print(f"[info]EFFICIENCY:[/info] [number]{format_percent(efficiency)}[/number]")
    console.print(f"[info]LAYERS:[/info] [number]{len(layers_from_result(raw_result))}[/number]")


def print_wasted(console: ConsoleManager, artifacts: FileTreeArtifacts, top: int) -> None:
    references = artifacts.wasted_file_references
    if not references:
        console.print_success("No wasted files detected")
        return
    rows = [
        (ref.file, ref.count, format_bytes(ref.size_bytes))
        for ref in references[:top]
    ]
    console.print_table(["File", "Count", "Size"], rows,
                        title=f"Wasted files ({format_bytes(artifacts.wasted_bytes)})",
                        justify_right=(1, 2))
    if len(references) > top:
        console.print(f"  [dim]... +{len(references) - top} more[/dim]")


@click.group()
@click.option('--theme', '-t', type=click.Choice(THEME_NAMES),
              default=get_alternating_theme(), help='Terminal color theme')
@click.option('--backend-url', help='Analysis backend URL (default: $LAYERLENS_BACKEND_URL)')
@click.option('--socket', 'backend_socket', help='Unix socket of the analysis backend')
@click.option('--debug', is_flag=True, help='Enable debug logging and tracebacks')
@click.version_option(package_name='layerlens')
@click.pass_context
def main(ctx: click.Context, theme: str, backend_url: Optional[str],
         backend_socket: Optional[str], debug: bool) -> None:
    """
    Inspect container image layers, file trees and wasted space.

    Examples:

        layerlens tree result.json --depth 2

        layerlens analyze nginx:latest -o nginx.json

        layerlens compare old.json new.json

        layerlens bulk --images-file images.json --days 7
    """
    setup_logging(debug)

    config = Config(debug=debug)
    if backend_url:
        config.backend_url = backend_url
    if backend_socket:
        config.backend_socket = backend_socket

    ctx.obj = CliState(config=config, console=ConsoleManager(theme=theme))


@main.command()
@click.argument('result_file', type=click.Path(exists=True, dir_okay=False))
@click.option('--layer', '-l', type=int, help='Show the tree of one layer (by index)')
@click.option('--depth', '-d', type=int, help='Maximum tree depth to display')
@click.option('--top', type=int, default=10, show_default=True, help='Wasted files to list')
@click.option('--json', 'export_json', is_flag=True, help='Print computed trees as JSON')
@click.option('--no-worker', is_flag=True, help='Build trees in the main process')
@click.option('--aggregate-fallback', type=click.Choice(AGGREGATE_FALLBACKS),
              help='How to derive the final tree when the analyzer reports none')
@click.pass_obj
def tree(state: CliState, result_file: str, layer: Optional[int], depth: Optional[int],
         top: int, export_json: bool, no_worker: bool, aggregate_fallback: Optional[str]) -> None:
    """Show the file tree and wasted files of a saved analysis result."""
    config = state.config
    console = state.console
    if no_worker:
        config.use_worker = False
    if aggregate_fallback:
        config.aggregate_fallback = aggregate_fallback

    with handle_errors(state):
        raw_result = load_result_file(result_file)
        file_state = asyncio.run(compute_artifacts(raw_result, config))

        if file_state.status == FileTreeStatus.ERROR:
            raise click.ClickException(f"File tree computation failed: {file_state.error}")
        if file_state.warning:
            console.print_warning(file_state.warning)

        artifacts = file_state.artifacts
        if export_json:
            click.echo(json.dumps(artifacts_to_dict(artifacts), indent=2))
            return

        data = artifacts.file_tree_data
        if layer is None:
            nodes, title = data.aggregate, "/ (final image)"
        else:
            match = next((entry for entry in data.layers if entry.layer_index == layer), None)
            if match is None:
                raise click.ClickException(f"No layer with index {layer}")
            nodes = match.tree
            title = f"/ (layer {layer}: {match.command or extract_id(match.layer_id or '')})"

        if nodes:
            console.print_file_tree(nodes, title=title, max_depth=depth)
        else:
            console.print_warning("No file tree data in this result")
        console.print()
        print_summary(console, raw_result)
        print_wasted(console, artifacts, top)


async def _fetch_history_result(config: Config, history_id: str) -> Dict[str, Any]:
    async with AnalysisClient(config) as client:
        entry = await client.get_history(history_id)
    return entry.result


def resolve_result(config: Config, source: str) -> Dict[str, Any]:
    """A result file on disk, or otherwise a history id on the backend."""
    if os.path.isfile(source):
        return load_result_file(source)
    return asyncio.run(_fetch_history_result(config, source))


@main.command()
@click.argument('baseline')
@click.argument('target')
@click.option('--all', 'show_all', is_flag=True, help='Include unchanged layers')
@click.pass_obj
def compare(state: CliState, baseline: str, target: str, show_all: bool) -> None:
    """
    Compare the layers of two analysis results.

    BASELINE and TARGET are result files or history ids.
    """
    console = state.console
    with handle_errors(state):
        left = resolve_result(state.config, baseline)
        right = resolve_result(state.config, target)

        deltas = compare_layers(layers_from_result(left), layers_from_result(right))
        rows = []
        for delta in deltas:
            if delta.status == 'unchanged' and not show_all:
                continue
            layer = delta.right or delta.left
            command = (layer.command or '').strip()
            rows.append((
                console.change_text(delta.status),
                extract_id(delta.key),
                command[:60] + ('…' if len(command) > 60 else ''),
                format_bytes(delta.left.size_bytes) if delta.left else '-',
                format_bytes(delta.right.size_bytes) if delta.right else '-',
                format_signed_bytes(delta.size_bytes_delta),
            ))

        if rows:
            console.print_table(["Status", "Layer", "Command", "Baseline", "Target", "Delta"],
                                rows, title="Layer changes", justify_right=(3, 4, 5))
        else:
            console.print_success("Layers are identical")

        summary = build_compare_summary_delta(summary_from_result(left), summary_from_result(right))
        console.print()
        console.print(f"[info]SIZE:[/info] {format_bytes(summary.size_bytes.left)} -> "
                      f"{format_bytes(summary.size_bytes.right)} "
                      f"([number]{format_signed_bytes(summary.size_bytes.delta)}[/number])")
        console.print(f"[info]WASTED:[/info] {format_bytes(summary.inefficient_bytes.left)} -> "
                      f"{format_bytes(summary.inefficient_bytes.right)} "
                      f"([number]{format_signed_bytes(summary.inefficient_bytes.delta)}[/number])")
        console.print(f"[info]EFFICIENCY:[/info] {format_percent(summary.efficiency_score.left)} -> "
                      f"{format_percent(summary.efficiency_score.right)} "
                      f"([number]{format_signed_percent(summary.efficiency_score.delta)}[/number])")


@main.command()
@click.argument('target')
@click.option('--archive', is_flag=True, help='TARGET is a docker-archive tarball path')
@click.option('--image-id', help='Pin the analysis to an image id')
@click.option('--output', '-o', type=click.Path(dir_okay=False, writable=True),
              help='Write the raw result JSON to this file')
@click.option('--no-worker', is_flag=True, help='Build trees in the main process')
@click.option('--top', type=int, default=10, show_default=True, help='Wasted files to list')
@click.pass_obj
def analyze(state: CliState, target: str, archive: bool, image_id: Optional[str],
            output: Optional[str], top: int, no_worker: bool) -> None:
    """Analyze an image (or image archive) and summarize the result."""
    config = state.config
    console = state.console
    if no_worker:
        config.use_worker = False
    source = 'docker-archive' if archive else 'docker'

    async def run():
        async with AnalysisClient(config) as client:
            with console.status(f"Submitting {target}") as spinner:
                def on_status(status):
                    display = format_job_status_display(
                        status.status, status.message,
                        format_elapsed(status.elapsed_seconds), target,
                    )
                    spinner.update(display.status_line)

                final_status, raw_result = await run_single_analysis(
                    client, target, source, image_id, config.poll_interval, on_status,
                )
        file_state = await compute_artifacts(raw_result, config)
        return final_status, raw_result, file_state

    with handle_errors(state):
        console.print(f"[highlight]> ACQUIRED TARGET:[/highlight] [path]{target}[/path]")
        final_status, raw_result, file_state = asyncio.run(run())

        elapsed = format_elapsed(final_status.elapsed_seconds)
        console.print_success(f"Analysis complete ({elapsed})")
        if output:
            with open(output, 'w', encoding='utf-8') as f:
                json.dump(raw_result, f, indent=2)
            console.print(f"[info]RESULT:[/info] [path]{os.path.relpath(output)}[/path]")

        print_summary(console, raw_result)
        if file_state.warning:
            console.print_warning(file_state.warning)
        if file_state.status == FileTreeStatus.READY:
            print_wasted(console, file_state.artifacts, top)
        else:
            console.print_error(f"File tree computation failed: {file_state.error}")


def load_images_file(path: str) -> List[ImageInfo]:
    with open(path, 'r', encoding='utf-8') as f:
        data = json.load(f)
    if not isinstance(data, list):
        raise click.ClickException(f"{path} must contain a JSON list of images")
    return [ImageInfo.from_dict(item) for item in data if isinstance(item, dict)]


def print_report(console: ConsoleManager, report: BulkAnalyzeReport) -> None:
    elapsed = format_elapsed(report.completed_at - report.started_at)
    console.print_separator()
    if report.cancelled:
        console.print_warning(
            f"Bulk analysis cancelled, {report.cancelled_remaining_count} target(s) not started"
        )
    console.print(f"[info]SUCCEEDED:[/info] [number]{len(report.succeeded)}[/number]")
    console.print(f"[info]FAILED:[/info] [number]{len(report.failed)}[/number]")
    console.print(f"[info]ELAPSED:[/info] {elapsed}")
    if report.has_failures():
        console.print_table(["Image", "Error"],
                            [(failure.image, Text(failure.message, style="error")) for failure in report.failed],
                            title="Failures")


@main.command()
@click.argument('images', nargs=-1)
@click.option('--images-file', type=click.Path(exists=True, dir_okay=False),
              help='JSON list of images ({name, id, fullId, createdAt, sizeBytes})')
@click.option('--days', default=None, help='Only images created within this many days')
@click.option('--force', is_flag=True, help='Re-analyze images that already have results')
@click.pass_obj
def bulk(state: CliState, images: tuple, images_file: Optional[str],
         days: Optional[str], force: bool) -> None:
    """
    Analyze many images one after another.

    Pass image names directly, or an --images-file listing to select from.
    Press Ctrl+C once to stop after the current image.
    """
    config = state.config
    console = state.console

    async def run():
        token = CancellationToken()
        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signal.SIGINT, token.cancel)
            handler_installed = True
        except (NotImplementedError, RuntimeError, ValueError):
            handler_installed = False

        try:
            async with AnalysisClient(config) as client:
                request = None
                if images_file:
                    day_count = validate_days(days if days is not None else str(config.bulk_default_days))
                    analyzed_ids = {
                        entry.image_id for entry in await client.list_history() if entry.image_id
                    }
                    request = build_bulk_request(
                        load_images_file(images_file), analyzed_ids, day_count, force,
                    )
                    console.print(
                        f"[info]SELECTED:[/info] [number]{request.eligible_count}[/number] of "
                        f"[number]{request.visible_count}[/number] images "
                        f"[dim](older: {request.skipped_older_count}, "
                        f"unknown age: {request.skipped_unknown_created_at_count}, "
                        f"already analyzed: {request.skipped_already_analyzed_count})[/dim]"
                    )
                    targets = request.targets
                else:
                    targets = [BulkAnalyzeTarget(image=image) for image in images]

                scheduler = BulkAnalyzeScheduler(client, config.bulk_poll_interval)
                with console.create_progress() as progress_bar:
                    task = progress_bar.add_task("Starting", total=len(targets))

                    def on_progress(progress):
                        if progress.cancel_requested:
                            description = "Cancelling after current image"
                        else:
                            description = progress.current_target or "Waiting"
                        progress_bar.update(task, completed=progress.completed,
                                            total=progress.total, description=description)

                    return await scheduler.run(targets, token, on_progress=on_progress, request=request)
        finally:
            if handler_installed:
                loop.remove_signal_handler(signal.SIGINT)

    if not images and not images_file:
        raise click.UsageError("Pass image names or --images-file")

    with handle_errors(state):
        if days is not None and not images_file:
            raise click.UsageError("--days only applies to --images-file")
        report = asyncio.run(run())
        print_report(console, report)
        if report.has_failures():
            sys.exit(1)


@main.command()
@click.option('--delete', 'delete_id', help='Delete one stored analysis')
@click.option('--clear', is_flag=True, help='Delete every stored analysis')
@click.pass_obj
def history(state: CliState, delete_id: Optional[str], clear: bool) -> None:
    """List, delete or clear stored analyses."""
    config = state.config
    console = state.console

    if clear:
        click.confirm("Delete all stored analyses?", abort=True)

    async def run():
        async with AnalysisClient(config) as client:
            if delete_id:
                await client.delete_history(delete_id)
                return None
            if clear:
                await client.clear_history()
                return None
            return await client.list_history()

    with handle_errors(state):
        entries = asyncio.run(run())
        if delete_id:
            console.print_success(f"Deleted {delete_id}")
            return
        if clear:
            console.print_success("History cleared")
            return
        if not entries:
            console.print_info("No stored analyses")
            return
        rows = [
            (
                entry.id,
                entry.image,
                extract_id(entry.image_id or ''),
                format_bytes(entry.summary.size_bytes),
                format_bytes(entry.summary.inefficient_bytes),
                format_percent(entry.summary.efficiency_score),
                entry.completed_at or '-',
            )
            for entry in entries
        ]
        console.print_table(
            ["ID", "Image", "Image ID", "Size", "Wasted", "Efficiency", "Completed"],
            rows, title="Stored analyses", justify_right=(3, 4, 5),
        )


@main.command()
@click.pass_obj
def check(state: CliState) -> None:
    """Check that the backend is reachable and can run the analyzer."""
    config = state.config
    console = state.console

    async def run():
        async with AnalysisClient(config) as client:
            return await client.check_dive()

    with handle_errors(state):
        answer = asyncio.run(run())
        target = config.backend_socket or config.backend_url
        console.print_success(f"Backend reachable at {target}")
        if isinstance(answer, dict) and answer:
            for key, value in answer.items():
                console.print(f"  [dim]>[/dim] {key}: {value}")


if __name__ == '__main__':
    main()
