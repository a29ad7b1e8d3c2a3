from __future__ import annotations

from mr_reviewer.review.diff_position import find_file_change
from mr_reviewer.review.diff_position import iter_addable_lines
from mr_reviewer.review.diff_position import resolve_diff_position
from mr_reviewer.review.models import DiffPosition
from mr_reviewer.review.models import DiffRefs
from mr_reviewer.review.models import FileChange
from mr_reviewer.review.models import UnresolvablePosition

REFS = DiffRefs(base_sha="base", start_sha="start", head_sha="head")


def _file(diff: str, new_path: str = "src/app.js", old_path: str | None = None) -> FileChange:
    return FileChange(new_path=new_path, old_path=old_path or new_path, diff=diff)


def test_iter_addable_lines_follows_hunk_headers() -> None:
    diff = "\n".join(
        [
            "@@ -1,3 +1,4 @@",
            " line1",
            "-line2",
            "+line2_new",
            "+line3_new",
            " line4",
            "@@ -20,2 +21,2 @@ def tail():",
            "-old",
            "+new",
            " keep",
        ]
    )
    lines = list(iter_addable_lines(diff=diff))
    assert [(x.new_line, x.is_addition) for x in lines] == [
        (1, False),
        (2, True),
        (3, True),
        (4, False),
        (21, True),
        (22, False),
    ]
    assert lines[0].old_line == 1
    assert lines[3].old_line == 3
    assert lines[5].old_line == 21


def test_resolve_exact_line() -> None:
    diff = "@@ -1,2 +1,3 @@\n a\n+b\n c\n"
    position = resolve_diff_position(file_change=_file(diff), diff_refs=REFS, requested_line=2)
    assert isinstance(position, DiffPosition)
    assert position.new_line == 2
    assert position.old_line is None
    assert (position.base_sha, position.start_sha, position.head_sha) == ("base", "start", "head")


def test_resolve_context_line_carries_old_line() -> None:
    diff = "@@ -10,2 +12,3 @@\n a\n+b\n c\n"
    position = resolve_diff_position(file_change=_file(diff), diff_refs=REFS, requested_line=14)
    assert isinstance(position, DiffPosition)
    assert position.new_line == 14
    assert position.old_line == 11
    assert position.to_gitlab_payload()["old_line"] == 11


def test_resolve_falls_back_to_first_addable_line() -> None:
    diff = "@@ -0,0 +1,8 @@\n" + "\n".join(f"+line{i}" for i in range(1, 9))
    position = resolve_diff_position(file_change=_file(diff), diff_refs=REFS, requested_line=12)
    assert isinstance(position, DiffPosition)
    assert position.new_line == 1


def test_resolve_never_anchors_on_deleted_line() -> None:
    diff = "@@ -5,3 +5,1 @@\n-gone1\n-gone2\n+kept\n"
    position = resolve_diff_position(file_change=_file(diff), diff_refs=REFS, requested_line=6)
    assert isinstance(position, DiffPosition)
    assert position.new_line == 5


def test_resolve_pure_deletion_is_unresolvable() -> None:
    diff = "@@ -1,2 +0,0 @@\n-a\n-b\n"
    position = resolve_diff_position(file_change=_file(diff), diff_refs=REFS, requested_line=1)
    assert isinstance(position, UnresolvablePosition)
    assert position.requested_line == 1
    assert position.path == "src/app.js"


def test_resolve_malformed_diff_is_unresolvable() -> None:
    position = resolve_diff_position(file_change=_file("Binary files differ"), diff_refs=REFS, requested_line=3)
    assert isinstance(position, UnresolvablePosition)


def test_resolve_empty_diff_is_unresolvable() -> None:
    position = resolve_diff_position(file_change=_file(""), diff_refs=REFS, requested_line=1)
    assert isinstance(position, UnresolvablePosition)


def test_resolve_ignores_file_headers_before_first_hunk() -> None:
    diff = "--- a/src/app.js\n+++ b/src/app.js\n@@ -1 +1 @@\n-x\n+y\n"
    position = resolve_diff_position(file_change=_file(diff), diff_refs=REFS, requested_line=1)
    assert isinstance(position, DiffPosition)
    assert position.new_line == 1


def test_resolve_keeps_renamed_paths() -> None:
    change = _file("@@ -1 +1 @@\n+x\n", new_path="src/new.js", old_path="src/old.js")
    position = resolve_diff_position(file_change=change, diff_refs=REFS, requested_line=1)
    assert isinstance(position, DiffPosition)
    assert position.old_path == "src/old.js"
    assert position.new_path == "src/new.js"


def test_find_file_change_matches_old_or_new_path_exactly() -> None:
    renamed = _file("", new_path="src/new.js", old_path="src/old.js")
    other = _file("", new_path="src/other.js")
    changes = [renamed, other]
    assert find_file_change(changes, "src/new.js") is renamed
    assert find_file_change(changes, "src/old.js") is renamed
    assert find_file_change(changes, "new.js") is None
    assert find_file_change(changes, "src/other") is None
