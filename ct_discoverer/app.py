"""Typer CLI entrypoint for CT Discoverer."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional

import typer
from rich import box
from rich.console import Console
from rich.table import Table

from .config import ConfigRepository, GlobalConfig
from .engine import (
    CollectionManager,
    ExtractionClient,
    ExtractionError,
    GeminiExtractionClient,
    Group,
    GroupStatus,
    IngestError,
    InvalidTransitionError,
    load_csv,
)
from .engine.exporter import FileExporter
from .engine.state import export_rows, scanned_count, status_label
from .infra import SnapshotStore, SQLiteManager
from .logging_conf import (
    available_group_logs,
    configure_logging,
    group_logger,
    log_path,
    tail_log,
)
from .orchestrator import GroupOrchestrator, LoggingObserver, run_groups
from .ui import (
    MultiGroupProgress,
    render_group_panel,
    render_groups_table,
    render_results_table,
    render_storage,
)

app = typer.Typer(
    help="CT Discoverer 命令行工具：按地区批量检索 CT 扫描中心",
    no_args_is_help=True,
    rich_markup_mode=None,
)
log_app = typer.Typer(
    name="log",
    help="日志查看命令",
    no_args_is_help=True,
    rich_markup_mode=None,
)

console = Console()


@dataclass
class AppState:
    repository: ConfigRepository
    config: GlobalConfig
    storage: SQLiteManager
    manager: CollectionManager
    extractor_factory: Callable[[], ExtractionClient]


def build_state(verbose: bool) -> AppState:
    configure_logging(verbose=verbose)
    repository = ConfigRepository()
    config = repository.load_global_config()
    storage = SQLiteManager()
    store = SnapshotStore(storage, repository.snapshot_path(), key=config.storage.snapshot_key)
    manager = CollectionManager(store=store, quota_kb=config.storage.quota_kb)
    manager.load()

    def _extractor() -> ExtractionClient:
        return GeminiExtractionClient(config.extraction)

    return AppState(
        repository=repository,
        config=config,
        storage=storage,
        manager=manager,
        extractor_factory=_extractor,
    )


def _get_state(ctx: typer.Context) -> AppState:
    state = ctx.obj
    if state is None:
        state = build_state(verbose=False)
        ctx.obj = state
    return state


def _require_group(state: AppState, label: str, name: str) -> Group:
    group = state.manager.collection.get(label, name)
    if group is None:
        console.print(f"未找到分组 `{label} / {name}`，可先执行 `ct-discoverer groups` 查看。", style="red")
        raise typer.Exit(code=1)
    return group


def _select_groups(
    state: AppState, label: Optional[str], names: List[str], all_groups: bool
) -> list[Group]:
    collection = state.manager.collection
    if all_groups:
        selected = [
            group for group in collection.iter_groups() if label is None or group.label == label
        ]
        if not selected:
            console.print("没有可执行的分组，请先使用 `ct-discoverer ingest` 导入数据。", style="yellow")
            raise typer.Exit(code=1)
        return selected
    if not label or not names:
        console.print("请指定 STATE 与至少一个 DISTRICT，或使用 --all。", style="red")
        raise typer.Exit(code=1)
    return [_require_group(state, label, name) for name in names]


def _render_summary(groups: list[Group]) -> Table:
    table = Table(title="执行结果", box=box.SIMPLE_HEAD)
    table.add_column("分组", style="cyan", no_wrap=True)
    table.add_column("进度", justify="right")
    table.add_column("中心数", justify="right", style="green")
    table.add_column("状态")
    for group in groups:
        table.add_row(
            f"{group.label} / {group.name}",
            f"{scanned_count(group)}/{len(group.items)}",
            str(group.result_count),
            status_label(group),
        )
    return table


def _build_extractor(state: AppState) -> ExtractionClient:
    try:
        return state.extractor_factory()
    except ExtractionError as exc:
        console.print(f"无法初始化检索服务：{exc}", style="red")
        raise typer.Exit(code=1)


async def _close_extractor(extractor: ExtractionClient) -> None:
    closer = getattr(extractor, "aclose", None)
    if closer is not None:
        await closer()


async def _discover(
    state: AppState, groups: list[Group], extractor: ExtractionClient, show_progress: bool
) -> list[Group]:
    settings = state.config.discovery
    with MultiGroupProgress(enabled=show_progress, console=console) as progress:
        orchestrators = [
            GroupOrchestrator(
                state.manager,
                group.label,
                group.name,
                extractor,
                settings=settings,
                observer=progress.observer_for(
                    group, LoggingObserver(group_logger(group.label, group.name))
                ),
            )
            for group in groups
        ]
        try:
            return await run_groups(orchestrators)
        except asyncio.CancelledError:
            # Ctrl-C：停止所有分组并丢弃仍在途的结果
            for orchestrator in orchestrators:
                await orchestrator.shutdown()
            raise
        finally:
            await _close_extractor(extractor)


async def _retry(
    state: AppState, group: Group, code: str, extractor: ExtractionClient
) -> Group:
    orchestrator = GroupOrchestrator(
        state.manager, group.label, group.name, extractor, settings=state.config.discovery
    )
    try:
        orchestrator.retry_item(code)
        return await orchestrator.wait()
    except asyncio.CancelledError:
        await orchestrator.shutdown()
        raise
    finally:
        await _close_extractor(extractor)


app.add_typer(log_app, name="log", help="查看日志文件")


@app.callback()
def main(
    ctx: typer.Context, verbose: bool = typer.Option(False, "--verbose", help="开启调试日志", is_flag=True)
) -> None:
    ctx.obj = build_state(verbose)


@app.command("ingest", help="导入包含 Pincode/District/StateName/Population 列的 CSV。")
def ingest(
    ctx: typer.Context,
    path: Path = typer.Argument(..., help="CSV 文件路径。"),
) -> None:
    state = _get_state(ctx)
    if not path.exists():
        console.print(f"文件不存在：{path}", style="red")
        raise typer.Exit(code=1)
    try:
        groups = load_csv(path)
    except IngestError as exc:
        console.print(str(exc), style="red")
        raise typer.Exit(code=1)
    if not groups:
        console.print("文件中没有可导入的数据行。", style="yellow")
        raise typer.Exit(code=0)
    collection = state.manager.merge(groups)
    pincodes = sum(len(group.items) for group in groups)
    console.print(
        f"已导入 {len(groups)} 个分组（{pincodes} 个 pincode），当前共 "
        f"{sum(1 for _ in collection.iter_groups())} 个分组。",
        style="green",
    )


@app.command("groups", help="查看全部分组及进度。")
def groups_list(ctx: typer.Context) -> None:
    state = _get_state(ctx)
    collection = state.manager.collection
    if collection.is_empty:
        console.print("暂无分组，先使用 `ct-discoverer ingest` 导入 CSV。", style="yellow")
        raise typer.Exit(code=0)
    console.print(render_groups_table(collection))


@app.command("show", help="查看单个分组的状态、pincode 徽标与检索结果。")
def show(
    ctx: typer.Context,
    label: str = typer.Argument(..., help="州名（StateName）。"),
    name: str = typer.Argument(..., help="地区名（District）。"),
    results: bool = typer.Option(True, "--results/--no-results", help="是否列出检索到的中心。"),
) -> None:
    state = _get_state(ctx)
    group = _require_group(state, label, name)
    console.print(render_group_panel(group))
    if results and group.results:
        console.print(render_results_table(group))


@app.command("discover", help="对一个或多个分组执行检索；Ctrl-C 可随时停止并保留进度。")
def discover(
    ctx: typer.Context,
    label: Optional[str] = typer.Argument(None, help="州名（StateName）。"),
    names: Optional[List[str]] = typer.Argument(None, help="一个或多个地区名。"),
    all_groups: bool = typer.Option(False, "--all", help="执行该州（或全部）分组。", is_flag=True),
    quiet: bool = typer.Option(False, "--quiet", help="静默模式，不显示进度条", is_flag=True),
) -> None:
    state = _get_state(ctx)
    groups = _select_groups(state, label, list(names or []), all_groups)
    extractor = _build_extractor(state)
    show_progress = state.config.enable_progress_bar and not quiet
    try:
        finished = asyncio.run(_discover(state, groups, extractor, show_progress))
    except KeyboardInterrupt:
        console.print("检索已停止，进度已保存，可再次执行以继续。", style="yellow")
        raise typer.Exit(code=130)
    console.print(_render_summary(finished))
    if any(group.status is GroupStatus.ERROR for group in finished):
        console.print("部分 pincode 重试后仍失败，可使用 `ct-discoverer retry` 重新检索。", style="red")
        raise typer.Exit(code=1)


@app.command("retry", help="重新检索一个失败的 pincode。")
def retry(
    ctx: typer.Context,
    label: str = typer.Argument(..., help="州名（StateName）。"),
    name: str = typer.Argument(..., help="地区名（District）。"),
    code: str = typer.Argument(..., help="失败的 pincode。"),
) -> None:
    state = _get_state(ctx)
    group = _require_group(state, label, name)
    try:
        group.item(code)
    except KeyError:
        console.print(f"分组 `{name}` 中不存在 pincode {code}。", style="red")
        raise typer.Exit(code=1)
    extractor = _build_extractor(state)
    try:
        finished = asyncio.run(_retry(state, group, code, extractor))
    except InvalidTransitionError as exc:
        console.print(str(exc), style="red")
        raise typer.Exit(code=1)
    except KeyboardInterrupt:
        console.print("检索已停止。", style="yellow")
        raise typer.Exit(code=130)
    console.print(render_group_panel(finished))


@app.command("export", help="导出分组检索结果为 CSV 或 JSONL。")
def export(
    ctx: typer.Context,
    label: str = typer.Argument(..., help="州名（StateName）。"),
    name: str = typer.Argument(..., help="地区名（District）。"),
    fmt: str = typer.Option("csv", "--format", help="导出格式：csv 或 json。"),
    output: Optional[Path] = typer.Option(None, "--output", help="输出目录（默认 data/outputs）。"),
) -> None:
    state = _get_state(ctx)
    group = _require_group(state, label, name)
    if fmt not in ("csv", "json"):
        console.print("导出格式仅支持 csv 或 json。", style="red")
        raise typer.Exit(code=1)
    rows = export_rows(group)
    if not rows:
        console.print("该分组暂无检索结果可导出。", style="yellow")
        raise typer.Exit(code=0)
    output_dir = output or state.repository.outputs_dir()
    with FileExporter(output_dir, group.name, fmt) as exporter:
        count = exporter.export_many(rows)
        exporter.flush()
    console.print(f"已导出 {count} 条记录至 {exporter.path}", style="green")


@app.command("reset", help="清空全部分组与检索结果。")
def reset(
    ctx: typer.Context,
    yes: bool = typer.Option(False, "--yes", help="跳过确认提示。", is_flag=True),
) -> None:
    state = _get_state(ctx)
    if not yes:
        confirm = typer.confirm("确定要清空全部分组与检索结果？", default=False)
        if not confirm:
            console.print("已取消操作。", style="yellow")
            raise typer.Exit(code=0)
    state.manager.reset()
    console.print("已清空全部分组与检索结果。", style="green")


@app.command("storage", help="查看本地存储占用。")
def storage(ctx: typer.Context) -> None:
    state = _get_state(ctx)
    console.print(render_storage(state.manager.storage_usage()))


@log_app.command("list", help="列出可用的分组日志文件。")
def log_list() -> None:
    logs = list(available_group_logs())
    console.print("日志文件：", style="cyan")
    if not logs:
        console.print("暂未生成任何分组日志。", style="dim")
        return
    table = Table(box=box.SIMPLE_HEAD)
    table.add_column("文件名", style="green")
    for path in logs:
        table.add_row(path.name)
    console.print(table)


@log_app.command("show", help="查看指定日志的最近内容。")
def log_show(
    label: Optional[str] = typer.Option(None, "--label", help="州名（与 --group 一同使用）。"),
    name: Optional[str] = typer.Option(None, "--group", help="地区名（为空则展示全局日志）。"),
    tail: int = typer.Option(100, "--tail", help="显示最近 N 行内容。"),
) -> None:
    path = log_path(label, name)
    lines = tail_log(path, tail)
    if not lines:
        console.print("暂无日志信息，请稍后再试。", style="dim")
        return
    header = f"{'分组日志' if label and name else '全局日志'} · 最近 {len(lines)} 行"
    console.print(header, style="cyan")
    console.print("".join(lines), markup=False)


def cli() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    cli()
