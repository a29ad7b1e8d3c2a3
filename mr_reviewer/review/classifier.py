"""
Change Classifier（非 AI）。

职责：
- 从 change-set 中挑出“值得送给 LLM review 的文件”
- 忽略规则完全确定性：basename 精确匹配 ignore 集合，或扩展名命中排除集合
- 删除的文件没有内容可 review，不进入结果（checklist 仍然看完整 change-set）
"""

from __future__ import annotations

from collections.abc import Iterable

from mr_reviewer.review.models import ChangeSet
from mr_reviewer.review.models import FileChange

DEFAULT_IGNORE_FILES: frozenset[str] = frozenset(
    {
        ".gitignore",
        "VERSION.md",
        "pubspec.yaml",
        "pubspec.lock",
        "README.md",
        "LICENSE",
        "LICENSE.md",
        "package.json",
        "package-lock.json",
    }
)

EXCLUDED_EXTENSIONS: frozenset[str] = frozenset({"md", "txt", "json", "lock", "png", "jpg", "jpeg", "gif", "svg"})


def basename(path: str) -> str:
    return path.rsplit("/", 1)[-1]


def extension(path: str) -> str:
    """小写扩展名（不含点）；没有扩展名返回空串。"""
    name = basename(path)
    if "." not in name:
        return ""
    return name.rsplit(".", 1)[-1].lower()


def resolve_ignore_set(extra: Iterable[str] = ()) -> frozenset[str]:
    """默认 ignore 集合 ∪ 调用方集合（集合语义，重复自动合并）。"""
    return DEFAULT_IGNORE_FILES | frozenset(item for item in extra if item)


def is_ignored(path: str, ignore_set: frozenset[str]) -> bool:
    return basename(path) in ignore_set or extension(path) in EXCLUDED_EXTENSIONS


def classify(change_set: ChangeSet, ignore_files: Iterable[str] = ()) -> list[FileChange]:
    """
    返回需要 review 的文件（保持 change-set 原顺序）。

    - 没有错误情况：全部被忽略时返回空列表，由上游短路为 “nothing to review”
    """
    ignore_set = resolve_ignore_set(ignore_files)
    return [c for c in change_set.changes if not c.is_deleted and not is_ignored(c.new_path, ignore_set)]
