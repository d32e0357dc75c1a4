"""归档下载器

流式写入目标文件；失败时删除已写入的部分文件。
"""

from __future__ import annotations

import logging
import shutil
import urllib.error
import urllib.request
from collections.abc import Callable
from pathlib import Path

from modkit.core.exceptions import NetworkError
from modkit.utils.net import validate_url_scheme

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024

ProgressCallback = Callable[[int, int], None]


class Downloader:
    """HTTP 下载器"""

    def __init__(self, timeout: int = 60) -> None:
        self.timeout = timeout

    def download(
        self,
        url: str,
        dest: str | Path,
        progress: ProgressCallback | None = None,
    ) -> Path:
        """下载 url 到 dest，progress(已下载字节, 总字节) 每个数据块回调一次

        Raises:
            ValidationError: URL 协议不是 http/https
            NetworkError: 请求或写入失败
        """
        validate_url_scheme(url, context="download")
        dest = Path(dest)
        dest.parent.mkdir(parents=True, exist_ok=True)
        logger.info("下载: %s", url)
        try:
            with urllib.request.urlopen(url, timeout=self.timeout) as resp, \
                    open(dest, "wb") as f:  # nosec B310
                total = int(resp.headers.get("Content-Length") or 0)
                if progress is None:
                    shutil.copyfileobj(resp, f, CHUNK_SIZE)
                else:
                    done = 0
                    for chunk in iter(lambda: resp.read(CHUNK_SIZE), b""):
                        f.write(chunk)
                        done += len(chunk)
                        progress(done, total)
        except (urllib.error.URLError, OSError) as e:
            dest.unlink(missing_ok=True)
            raise NetworkError(f"下载失败: {url} - {e}") from e
        logger.info("已保存: %s", dest)
        return dest
