"""CLI: 安装 / 更新 / 导入命令"""

from __future__ import annotations

from contextlib import ExitStack
from pathlib import Path

import click

from modkit.cli import cli_errors, echo_report
from modkit.core.pkg.index import LocalIndex, open_index
from modkit.services.container import ServiceContainer
from modkit.services.install_service import InstallPlan
from modkit.services.update_service import OutdatedPackage, find_outdated


def register(group: click.Group) -> None:
    group.add_command(install)
    group.add_command(update)
    group.add_command(import_list)


def _confirm_install(plan: InstallPlan) -> bool:
    click.echo("准备下载:")
    for item in plan.items:
        tag = " (依赖)" if item.dependency else ""
        click.echo(f"    {item.label}{tag} - {item.version.file_size_string()}")
    click.echo(f"下载总大小: {plan.total_size_string()}")
    return click.confirm("确认?", default=True)


def _confirm_update(plan: list[OutdatedPackage]) -> bool:
    click.echo(f"发现 {len(plan)} 个过期包:")
    for item in plan:
        click.echo(f"    {item.label}")
    return click.confirm("确认?", default=True)


def _run_install(
    svc: ServiceContainer, names: list[str],
    yes: bool, force: bool, global_: bool, no_cache: bool,
) -> None:
    with cli_errors():
        report = svc.installs.install(
            names, yes=yes, force=force, global_=global_,
            use_cache=False if no_cache else None,
            confirm=_confirm_install,
        )
    echo_report(report, empty="所有包均已安装。")


@click.command()
@click.argument("names", nargs=-1, required=True)
@click.option("--yes", "-y", is_flag=True, help="跳过确认")
@click.option("--force", "-f", is_flag=True, help="有包找不到或安装失败时继续")
@click.option("--global", "global_", is_flag=True, help="安装到全局目录")
@click.option("--no-cache", is_flag=True, help="忽略已缓存的归档，重新下载")
@click.pass_obj
def install(
    svc: ServiceContainer, names: tuple[str, ...],
    yes: bool, force: bool, global_: bool, no_cache: bool,
) -> None:
    """安装包（author.name 或 author.name@version）及其依赖"""
    _run_install(svc, list(names), yes, force, global_, no_cache)


@click.command()
@click.option("--yes", "-y", is_flag=True, help="跳过确认")
@click.option("--force", "-f", is_flag=True, help="单个包失败时继续")
@click.pass_obj
def update(svc: ServiceContainer, yes: bool, force: bool) -> None:
    """把本地与全局目录中的过期包更新到最新版本"""
    cfg = svc.config
    local_root = Path(cfg.mods_dir).resolve()
    global_root = Path(cfg.global_dir).resolve()
    with cli_errors():
        remote_index = svc.registry.fetch_index()
        # 只读预检: 没有过期包时不加锁、不建目录
        ledgers = [cfg.local_index_path]
        if global_root != local_root:
            ledgers.append(cfg.global_index_path)
        if not any(
            find_outdated(LocalIndex.load(p), remote_index) for p in ledgers if p.exists()
        ):
            click.echo("所有包均为最新。")
            return
        with ExitStack() as stack:
            global_index = None
            if global_root != local_root and cfg.global_index_path.exists():
                global_index = stack.enter_context(
                    open_index(cfg.global_index_path, timeout=cfg.lock_timeout)
                )
            local_index = stack.enter_context(
                open_index(cfg.local_index_path, timeout=cfg.lock_timeout)
            )
            profiles = []
            for p in cfg.profiles:
                root = Path(p).resolve()
                if root in (local_root, global_root) or not cfg.index_path(root).exists():
                    continue
                profiles.append(stack.enter_context(
                    open_index(cfg.index_path(root), create=False, timeout=cfg.lock_timeout)
                ))
            report = svc.updates.update(
                local_index, global_index, remote_index,
                yes=yes, force=force, confirm=_confirm_update, profiles=profiles,
            )
    echo_report(report, empty="所有包均为最新。")


@click.command(name="import")
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
@click.option("--yes", "-y", is_flag=True, help="跳过确认")
@click.option("--force", "-f", is_flag=True, help="有包找不到或安装失败时继续")
@click.option("--global", "global_", is_flag=True, help="安装到全局目录")
@click.pass_obj
def import_list(
    svc: ServiceContainer, file: str, yes: bool, force: bool, global_: bool,
) -> None:
    """从 export 导出的列表文件安装全部包"""
    with cli_errors():
        names = svc.packages.import_list(file)
    if not names:
        click.echo("列表为空。")
        return
    _run_install(svc, [str(n) for n in names], yes, force, global_, no_cache=False)
