"""modkit 命令行接口

CLI 按领域拆分为子模块，每个模块注册自己的命令到 main group。
main 每次调用构造一个 Config 和一个 ServiceContainer，经 ctx.obj 传给子命令。
"""

from __future__ import annotations

import os
from collections.abc import Iterator
from contextlib import contextmanager

import click

from modkit import __version__
from modkit.core.config import Config
from modkit.core.exceptions import ModkitError
from modkit.services.container import ServiceContainer
from modkit.services.report import BatchReport
from modkit.utils.logger import setup_logging


@contextmanager
def cli_errors() -> Iterator[None]:
    """业务异常与文件系统异常统一转为 ClickException（非零退出码）"""
    try:
        yield
    except ModkitError as e:
        raise click.ClickException(f"[{e.code}] {e}") from e
    except OSError as e:
        raise click.ClickException(f"文件操作失败: {e}") from e


def echo_report(report: BatchReport, empty: str = "没有需要处理的包。") -> None:
    """逐包输出结果，有失败时以非零状态退出"""
    if report.aborted:
        click.echo("已取消，未做任何修改。")
        return
    if not report.results:
        click.echo(empty)
        return
    for r in report.results:
        click.echo(f"  {r}")
    if report.failures:
        raise click.ClickException(
            f"{len(report.failures)} 个包处理失败，{len(report.changed)} 个包已完成"
        )


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--config", "config_path", envvar="MODKIT_CONFIG", default="modkit.yml",
    show_default=True, help="配置文件路径",
)
@click.option("--mods-dir", default=None, help="覆盖配置中的本地 mods 目录")
@click.pass_context
def main(ctx: click.Context, config_path: str, mods_dir: str | None) -> None:
    """modkit - 游戏模组包管理器"""
    setup_logging(
        level=os.getenv("MODKIT_LOG_LEVEL", "WARNING"),
        json_output=os.getenv("MODKIT_LOG_JSON", "") == "1",
    )
    with cli_errors():
        cfg = Config.from_file(config_path)
    if mods_dir:
        cfg.mods_dir = mods_dir
    ctx.obj = ServiceContainer(cfg)


# 注册各领域子命令
from modkit.cli.cmd_install import register as _reg_install  # noqa: E402
from modkit.cli.cmd_manage import register as _reg_manage  # noqa: E402

_reg_install(main)
_reg_manage(main)
