"""
Checklist Evaluator。

固定规则目录（运行时不增删，条数恒定），每条规则都是“全函数”：
总会产出一个 `ChecklistResult`，内部异常转成失败结果 + 说明文字。

注意：启发式规则（error handling / function length / ...）扫描的是**reviewer 产出的文字**，
不是源码本身；实现上就是大小写不敏感的关键字共现判断，不要“升级”成代码分析。

路径/diff 规则（命名、保留字、行长度、测试引用）只看文件路径和 diff 文本，
命名类规则对删除的文件同样生效。
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass

from pydantic import BaseModel

from mr_reviewer.review.classifier import basename
from mr_reviewer.review.models import ChangeSet
from mr_reviewer.review.models import ChecklistResult
from mr_reviewer.review.models import FileChange
from mr_reviewer.review.models import MergeRequestInfo
from mr_reviewer.review.models import ReviewFinding

logger = logging.getLogger(__name__)

FileReader = Callable[[str, str], Awaitable[str]]


class ChecklistPolicy(BaseModel):
    """规则里的常量（团队约定）。"""

    min_description_length: int = 20
    tracker_tokens: tuple[str, ...] = ("trello",)
    version_manifest: str = "version.json"
    schema_extension: str = ".proto"
    api_path_markers: tuple[str, ...] = ("/controllers/", "/routes/", "/services/", "/models/")
    file_name_pattern: str = r"^[a-z0-9_.-]+$"
    reserved_words: tuple[str, ...] = ("delete", "update", "create")
    max_line_length: int = 200
    test_reference_pattern: str = r"(test|spec)"
    coded_extensions: tuple[str, ...] = (".js", ".ts")


@dataclass(frozen=True)
class RuleOutcome:
    status: bool
    message: str


@dataclass(frozen=True)
class ChecklistContext:
    mr: MergeRequestInfo
    change_set: ChangeSet
    findings: Sequence[ReviewFinding]
    read_file: FileReader
    policy: ChecklistPolicy


RuleFn = Callable[[ChecklistContext], Awaitable[RuleOutcome]]


@dataclass(frozen=True)
class ChecklistRule:
    rule: str
    title: str
    check: RuleFn


def _has_tracker_link(ctx: ChecklistContext) -> bool:
    description = ctx.mr.description.lower()
    return any(token.lower() in description for token in ctx.policy.tracker_tokens)


async def check_description(ctx: ChecklistContext) -> RuleOutcome:
    if len(ctx.mr.description) > ctx.policy.min_description_length:
        return RuleOutcome(True, "Diff description is adequate")
    return RuleOutcome(False, "Diff description is missing or too brief")


async def check_tracker_link(ctx: ChecklistContext) -> RuleOutcome:
    if _has_tracker_link(ctx):
        return RuleOutcome(True, "Issue tracker link is included")
    return RuleOutcome(False, "No issue tracker link found in the description")


async def check_tracker_description(ctx: ChecklistContext) -> RuleOutcome:
    # 远端 card 内容无法校验，只能跟随 link 是否存在
    if _has_tracker_link(ctx):
        return RuleOutcome(True, "Tracker card is linked, description is assumed to be present")
    return RuleOutcome(False, "Cannot verify tracker card description as no link was found")


def _find_manifest(changes: Sequence[FileChange], manifest: str) -> FileChange | None:
    for change in changes:
        if change.new_path == manifest or change.new_path.endswith(f"/{manifest}"):
            return change
    return None


def _read_version(raw: str) -> object:
    data = json.loads(raw)
    if not isinstance(data, dict):
        raise ValueError("manifest is not a JSON object")
    return data.get("version")


async def check_version_bump(ctx: ChecklistContext) -> RuleOutcome:
    manifest = ctx.policy.version_manifest
    change = _find_manifest(ctx.change_set.changes, manifest)
    if change is None:
        return RuleOutcome(False, f"{manifest} was not updated in this merge request")
    if change.is_deleted:
        return RuleOutcome(False, f"{manifest} was deleted in this merge request")
    if change.is_new:
        return RuleOutcome(True, f"{manifest} was added in this merge request")

    refs = ctx.change_set.diff_refs
    try:
        new_raw = await ctx.read_file(change.new_path, refs.head_sha)
        old_raw = await ctx.read_file(change.old_path, refs.base_sha)
    except Exception as exc:
        logger.error(f"Error reading {manifest} for version check: {exc}")
        return RuleOutcome(False, f"Error checking version update: {exc}")

    try:
        new_version = _read_version(new_raw)
        old_version = _read_version(old_raw)
    except ValueError as exc:
        return RuleOutcome(False, f"Error parsing {manifest}: {exc}")

    if new_version == old_version:
        return RuleOutcome(False, f"{manifest} was modified but the version number was not increased")
    return RuleOutcome(True, f"Version was updated from {old_version} to {new_version}")


async def check_schema_files(ctx: ChecklistContext) -> RuleOutcome:
    paths = [c.new_path for c in ctx.change_set.changes]
    schema_files = [p for p in paths if p.endswith(ctx.policy.schema_extension)]
    if schema_files:
        return RuleOutcome(True, f"Found {len(schema_files)} updated schema file(s)")

    api_changes = [p for p in paths if any(marker in p for marker in ctx.policy.api_path_markers)]
    if api_changes:
        return RuleOutcome(
            False,
            "API changes detected but no schema files were updated. Verify if schema updates are needed.",
        )
    return RuleOutcome(True, "No API changes that would require schema updates")


def _paths_matching(findings: Sequence[ReviewFinding], predicate: Callable[[str], bool]) -> list[str]:
    return [f.path for f in findings if predicate(f.text().lower())]


def _keyword_rule(
    predicate: Callable[[str], bool],
    passed: str,
    failed: Callable[[str], str],
) -> RuleFn:
    """通用的关键字共现规则：任何一个 finding 命中即失败，消息里列出文件。"""

    async def check(ctx: ChecklistContext) -> RuleOutcome:
        hits = _paths_matching(ctx.findings, predicate)
        if not hits:
            return RuleOutcome(True, passed)
        return RuleOutcome(False, failed(", ".join(hits)))

    return check


async def check_error_handling(ctx: ChecklistContext) -> RuleOutcome:
    issues: list[str] = []
    for finding in ctx.findings:
        text = finding.text().lower()
        if "try-catch" in text and ("missing" in text or "should" in text or "error handling" in text):
            issues.append(f"Issue in {finding.path}: Error handling might be incomplete")
        if "slack" in text and "notification" in text:
            issues.append(f"Issue in {finding.path}: Slack notifications might not be properly implemented for errors")
    if issues:
        return RuleOutcome(False, "Error handling issues detected:\n" + "\n".join(issues))
    return RuleOutcome(True, "Error handling appears to be properly implemented")


async def check_single_purpose(ctx: ChecklistContext) -> RuleOutcome:
    return RuleOutcome(True, "MR appears to have a single purpose based on the description and changes")


async def check_file_naming(ctx: ChecklistContext) -> RuleOutcome:
    pattern = re.compile(ctx.policy.file_name_pattern)
    offenders = [c.new_path for c in ctx.change_set.changes if not pattern.match(basename(c.new_path))]
    if offenders:
        return RuleOutcome(
            False,
            "Files do not follow naming conventions (use lowercase letters, numbers, underscores, hyphens, "
            f"and dots only): {', '.join(offenders)}",
        )
    return RuleOutcome(True, "All file names follow naming conventions")


async def check_reserved_words(ctx: ChecklistContext) -> RuleOutcome:
    words = ctx.policy.reserved_words
    offenders = [
        c.new_path for c in ctx.change_set.changes if any(word in basename(c.new_path) for word in words)
    ]
    if offenders:
        return RuleOutcome(
            False,
            f"Files contain reserved word(s) ({', '.join(words)}) in their names: {', '.join(offenders)}",
        )
    return RuleOutcome(True, "No reserved words used in file names")


def _coded_changes(ctx: ChecklistContext) -> list[FileChange]:
    return [c for c in ctx.change_set.changes if c.new_path.endswith(ctx.policy.coded_extensions)]


async def check_line_length(ctx: ChecklistContext) -> RuleOutcome:
    limit = ctx.policy.max_line_length
    offenders = [
        c.new_path
        for c in _coded_changes(ctx)
        if any(line.startswith("+") and len(line) > limit for line in c.diff.splitlines())
    ]
    if offenders:
        return RuleOutcome(False, f"Lines exceeding {limit} characters added in: {', '.join(offenders)}")
    return RuleOutcome(True, f"No added lines exceed {limit} characters")


async def check_test_references(ctx: ChecklistContext) -> RuleOutcome:
    pattern = re.compile(ctx.policy.test_reference_pattern, re.IGNORECASE)
    # 删除的文件不需要测试
    offenders = [c.new_path for c in _coded_changes(ctx) if not c.is_deleted and not pattern.search(c.diff)]
    if offenders:
        return RuleOutcome(
            False,
            f"No test references (e.g. 'test' or 'spec') in the changes of: {', '.join(offenders)}",
        )
    return RuleOutcome(True, "Code changes reference tests")


RULES: tuple[ChecklistRule, ...] = (
    ChecklistRule("description", "Diff description is clear and complete", check_description),
    ChecklistRule("tracker_link", "Issue tracker card is linked", check_tracker_link),
    ChecklistRule("version_bump", "Version has been increased in the version manifest", check_version_bump),
    ChecklistRule("tracker_description", "Tracker card has proper description", check_tracker_description),
    ChecklistRule("schema_files", "Schema/proto files are updated if needed", check_schema_files),
    ChecklistRule(
        "error_handling",
        "Error handling with try-catch is properly implemented, with Slack notifications where appropriate",
        check_error_handling,
    ),
    ChecklistRule(
        "function_length",
        "Functions are not over 50 lines (or have explanation if they are)",
        _keyword_rule(
            lambda t: ("function" in t and "too long" in t) or "exceeds 50 lines" in t,
            "All functions appear to be under 50 lines",
            lambda paths: f"Potentially long functions found in: {paths}",
        ),
    ),
    ChecklistRule(
        "single_purpose",
        "Merge request focuses on a single purpose (logic change or refactoring)",
        check_single_purpose,
    ),
    ChecklistRule(
        "null_checks",
        "Null checks are implemented where needed",
        _keyword_rule(
            lambda t: "null check" in t and "missing" in t,
            "Proper null checks appear to be in place",
            lambda paths: f"Potential missing null checks in: {paths}",
        ),
    ),
    ChecklistRule(
        "conciseness",
        "Code is concise and not unnecessarily verbose",
        _keyword_rule(
            lambda t: "verbose" in t or "could be shorter" in t or "could be simplified" in t,
            "Code appears to be concise",
            lambda paths: f"Code could be more concise in: {paths}",
        ),
    ),
    ChecklistRule(
        "lambda_usage",
        "Lambda functions are used instead of 1-2 loops where appropriate",
        _keyword_rule(
            lambda t: ("loop" in t or "for " in t) and "lambda" in t,
            "Lambda functions appear to be used appropriately",
            lambda paths: f"Potential opportunities for lambda functions in: {paths}",
        ),
    ),
    ChecklistRule(
        "early_returns",
        "Early returns are used where possible",
        _keyword_rule(
            lambda t: "early return" in t,
            "Early returns appear to be used where appropriate",
            lambda paths: f"Potential opportunities for early returns in: {paths}",
        ),
    ),
    ChecklistRule(
        "parallel_fanout",
        "Promise.all() is not used (as per team guidelines)",
        _keyword_rule(
            lambda t: "promise.all" in t,
            "No Promise.all() usage detected, as per guidelines",
            lambda paths: f"Promise.all() may be used in: {paths}, which is against team guidelines",
        ),
    ),
    ChecklistRule(
        "localization",
        "Localization strings are not mixed with code",
        _keyword_rule(
            lambda t: "localization" in t or "translation" in t,
            "Localization strings appear to be properly separated from code",
            lambda paths: f"Potential localization issues in: {paths}",
        ),
    ),
    ChecklistRule("file_naming", "File names follow naming conventions", check_file_naming),
    ChecklistRule("reserved_words", "File names avoid reserved words", check_reserved_words),
    ChecklistRule("line_length", "Added lines stay within the maximum line length", check_line_length),
    ChecklistRule("test_references", "Code changes reference tests", check_test_references),
)


async def evaluate_checklist(
    mr: MergeRequestInfo,
    change_set: ChangeSet,
    findings: Sequence[ReviewFinding],
    read_file: FileReader,
    policy: ChecklistPolicy | None = None,
) -> list[ChecklistResult]:
    """
    按固定顺序跑完所有规则。

    - read_file(path, ref)：读取仓库文件（version bump 规则需要新旧两份内容）
    - 单条规则异常不会影响其他规则
    """
    ctx = ChecklistContext(
        mr=mr,
        change_set=change_set,
        findings=findings,
        read_file=read_file,
        policy=policy or ChecklistPolicy(),
    )
    results: list[ChecklistResult] = []
    for rule in RULES:
        try:
            outcome = await rule.check(ctx)
        except Exception as exc:
            logger.exception(f"Checklist rule {rule.rule} crashed")
            outcome = RuleOutcome(False, f"Error evaluating rule: {exc}")
        results.append(ChecklistResult(rule=rule.rule, title=rule.title, status=outcome.status, message=outcome.message))
    return results


def format_checklist_report(results: Sequence[ChecklistResult]) -> str:
    """渲染为 GitLab markdown（发布到 summary comment / 汇总 prompt）。"""
    lines: list[str] = ["## MR Checklist Compliance", ""]
    for result in results:
        lines.append(f"### {result.title} {'✅' if result.status else '❌'}")
        lines.append(result.message)
        lines.append("")

    passed = sum(1 for r in results if r.status)
    total = len(results)
    percentage = round(passed / total * 100) if total else 0
    lines.append("### Summary")
    lines.append(f"{passed} of {total} checklist items passed ({percentage}%)")
    return "\n".join(lines)
