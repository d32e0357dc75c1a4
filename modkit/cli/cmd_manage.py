"""CLI: 已安装包管理命令"""

from __future__ import annotations

import click

from modkit.cli import cli_errors, echo_report
from modkit.services.container import ServiceContainer


def register(group: click.Group) -> None:
    group.add_command(remove)
    group.add_command(list_installed)
    group.add_command(enable)
    group.add_command(disable)
    group.add_command(link)
    group.add_command(unlink)
    group.add_command(export)
    group.add_command(clear_cache)


@click.command()
@click.argument("names", nargs=-1, required=True)
@click.option("--global", "global_", is_flag=True, help="从全局目录删除")
@click.option("--force", "-f", is_flag=True, help="仍被 profile 链接时也删除")
@click.pass_obj
def remove(svc: ServiceContainer, names: tuple[str, ...], global_: bool, force: bool) -> None:
    """删除已安装的包"""
    with cli_errors():
        report = svc.packages.remove(list(names), global_=global_, force=force)
    echo_report(report)


@click.command(name="list")
@click.option("--global", "global_", is_flag=True, help="列出全局目录")
@click.pass_obj
def list_installed(svc: ServiceContainer, global_: bool) -> None:
    """列出已安装与已链接的包"""
    with cli_errors():
        rows = svc.packages.list_installed(global_=global_)
    if not rows:
        click.echo("没有已安装的包。")
        return
    for row in rows:
        tag = " [linked]" if row["linked"] else ""
        owners = f" (被 {len(row['linked_by'])} 个 profile 链接)" if row["linked_by"] else ""
        click.echo(f"  {row['name']:30s} {row['version']:12s}{tag}{owners}")
        for sub in row["subpackages"]:
            mark = "x" if sub["disabled"] else "+"
            click.echo(f"      [{mark}] {sub['name']}")


@click.command()
@click.argument("names", nargs=-1, required=True)
@click.option("--global", "global_", is_flag=True, help="作用于全局目录")
@click.pass_obj
def enable(svc: ServiceContainer, names: tuple[str, ...], global_: bool) -> None:
    """启用包（全部子包）或单个子包"""
    with cli_errors():
        report = svc.packages.enable(list(names), global_=global_)
    echo_report(report)


@click.command()
@click.argument("names", nargs=-1, required=True)
@click.option("--global", "global_", is_flag=True, help="作用于全局目录")
@click.pass_obj
def disable(svc: ServiceContainer, names: tuple[str, ...], global_: bool) -> None:
    """禁用包（全部子包）或单个子包"""
    with cli_errors():
        report = svc.packages.disable(list(names), global_=global_)
    echo_report(report)


@click.command()
@click.argument("names", nargs=-1, required=True)
@click.option("--profile", default=None, help="目标 profile 的 mods 目录（默认本地 mods 目录）")
@click.option("--force", "-f", is_flag=True, help="已链接时重新链接")
@click.pass_obj
def link(svc: ServiceContainer, names: tuple[str, ...], profile: str | None, force: bool) -> None:
    """把全局安装的包硬链接到 profile"""
    with cli_errors():
        report = svc.packages.link(list(names), profile, force=force)
    echo_report(report)


@click.command()
@click.argument("names", nargs=-1, required=True)
@click.option("--profile", default=None, help="目标 profile 的 mods 目录（默认本地 mods 目录）")
@click.pass_obj
def unlink(svc: ServiceContainer, names: tuple[str, ...], profile: str | None) -> None:
    """删除 profile 中指向全局包的链接"""
    with cli_errors():
        report = svc.packages.unlink(list(names), profile)
    echo_report(report)


@click.command()
@click.argument("file", type=click.Path(dir_okay=False))
@click.option("--global", "global_", is_flag=True, help="导出全局目录")
@click.pass_obj
def export(svc: ServiceContainer, file: str, global_: bool) -> None:
    """把已安装包导出为列表文件"""
    with cli_errors():
        names = svc.packages.export_list(file, global_=global_)
    click.echo(f"已导出 {len(names)} 个包到 {file}")


@click.command(name="clear-cache")
@click.option("--full", is_flag=True, help="同时删除非 .zip 文件")
@click.pass_obj
def clear_cache(svc: ServiceContainer, full: bool) -> None:
    """清空归档缓存"""
    with cli_errors():
        removed = svc.packages.clear_cache(full=full)
    click.echo(f"已删除 {removed} 个缓存文件")
