"""
Diff Position Resolver。

GitLab 行内评论（discussion）只能挂在 diff 中“新文件一侧存在的行”上：
新增行（`+`）或上下文行（` `）。模型给出的行号经常落在 diff 之外，
这里负责把它落到一个合法坐标上：

- 行号命中某个可评论行 -> 就挂在那一行
- 没命中 -> 退回到 diff 中**第一个**可评论行（不插值、不编造）
- diff 里一个可评论行都没有（纯删除 / 格式错乱）-> 返回 `UnresolvablePosition`
"""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from dataclasses import dataclass

from mr_reviewer.review.models import DiffPosition
from mr_reviewer.review.models import DiffRefs
from mr_reviewer.review.models import FileChange
from mr_reviewer.review.models import UnresolvablePosition


@dataclass(frozen=True)
class AddableLine:
    """新文件一侧存在的一行：new_line 总有值，old_line 只有上下文行才有。"""

    new_line: int
    old_line: int | None
    is_addition: bool


def find_file_change(changes: Sequence[FileChange], path: str) -> FileChange | None:
    """按 path 精确匹配 new_path 或 old_path（不做模糊匹配）。"""
    for change in changes:
        if path in (change.new_path, change.old_path):
            return change
    return None


def iter_addable_lines(diff: str) -> Iterator[AddableLine]:
    """
    逐行扫描 unified diff，产出新文件一侧存在的行。

    - 每个 `@@ -a,b +c,d @@` 把计数器重置到 a / c
    - 没有 hunk header 的 diff 从第 1 行开始计数
    - 第一个 hunk 之前的 `---`/`+++` 是文件头，不计数
    """
    old_line = 1
    new_line = 1
    in_hunk = False
    for line in diff.splitlines():
        if line.startswith("@@"):
            header = _parse_hunk_header(header=line)
            if header is not None:
                old_line, new_line = header
            in_hunk = True
            continue
        if not in_hunk and (line.startswith("+++") or line.startswith("---")):
            continue
        if line.startswith("\\"):
            continue
        if line.startswith("-"):
            old_line += 1
            continue
        if line.startswith("+"):
            yield AddableLine(new_line=new_line, old_line=None, is_addition=True)
            new_line += 1
            continue
        if line.startswith(" ") or (in_hunk and line == ""):
            yield AddableLine(new_line=new_line, old_line=old_line, is_addition=False)
            old_line += 1
            new_line += 1
            continue


def _parse_hunk_header(header: str) -> tuple[int, int] | None:
    # @@ -a,b +c,d @@ optional section
    parts = header.split(" ")
    if len(parts) < 3 or not parts[1].startswith("-") or not parts[2].startswith("+"):
        return None
    try:
        old_start = int(parts[1].split(",")[0].lstrip("-"))
        new_start = int(parts[2].split(",")[0].lstrip("+"))
    except ValueError:
        return None
    return old_start, new_start


def resolve_diff_position(
    file_change: FileChange,
    diff_refs: DiffRefs,
    requested_line: int,
) -> DiffPosition | UnresolvablePosition:
    """
    把 `requested_line`（新文件行号）解析为可用的 discussion position。

    - 输入：单文件 diff、MR 的 diff refs、目标行号
    - 输出：`DiffPosition`，或在没有可评论行时返回 `UnresolvablePosition`
    """
    first: AddableLine | None = None
    anchor: AddableLine | None = None
    for candidate in iter_addable_lines(diff=file_change.diff):
        if first is None:
            first = candidate
        if candidate.new_line == requested_line:
            anchor = candidate
            break

    if anchor is None:
        anchor = first
    if anchor is None:
        return UnresolvablePosition(
            path=file_change.new_path,
            requested_line=requested_line,
            reason="diff has no added or context lines to anchor a comment",
        )

    return DiffPosition(
        base_sha=diff_refs.base_sha,
        start_sha=diff_refs.start_sha,
        head_sha=diff_refs.head_sha,
        old_path=file_change.old_path,
        new_path=file_change.new_path,
        new_line=anchor.new_line,
        old_line=anchor.old_line,
    )
