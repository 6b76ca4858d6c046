"""Open pull request inventory via the GitHub CLI.

Returns [] when the project is not a git repository or `gh` is unavailable or
not authenticated. Unparsable `gh` output and timeouts propagate.
"""

from __future__ import annotations

import json
import shutil
import subprocess
from pathlib import Path
from typing import Any

import structlog

from src.config.project_config import ProjectConfig
from src.status.models import CiStatus, PrInfo

logger = structlog.get_logger()

_GH_TIMEOUT_S = 20
_GH_FIELDS = "headRefName,number,title,url,statusCheckRollup,reviewDecision"

_FAIL_CONCLUSIONS = {"FAILURE", "ERROR", "CANCELLED", "TIMED_OUT", "ACTION_REQUIRED"}
_FAIL_STATES = {"FAILURE", "ERROR"}
_PENDING_STATUSES = {"IN_PROGRESS", "QUEUED", "PENDING", "WAITING", "REQUESTED"}
_PENDING_STATES = {"PENDING", "IN_PROGRESS"}
_DONE_CONCLUSIONS = {"SUCCESS", "NEUTRAL", "SKIPPED"}


def _upper(value: Any) -> str | None:
    return value.upper() if isinstance(value, str) and value else None


def derive_ci_status(checks: list[dict[str, Any]] | None) -> CiStatus:
    """Fold CheckRun (status/conclusion) and StatusContext (state) entries into one status.

    Priority: any failure → fail; any pending → pending; all complete → pass; else unknown.
    """
    if not checks:
        return "unknown"

    normalized = [
        (_upper(c.get("conclusion")), _upper(c.get("status")), _upper(c.get("state")))
        for c in checks
        if isinstance(c, dict)
    ]
    if not normalized:
        return "unknown"

    if any(
        conclusion in _FAIL_CONCLUSIONS or state in _FAIL_STATES
        for conclusion, _, state in normalized
    ):
        return "fail"
    if any(
        status in _PENDING_STATUSES or state in _PENDING_STATES
        for _, status, state in normalized
    ):
        return "pending"
    if all(
        conclusion in _DONE_CONCLUSIONS or status == "COMPLETED" or state == "SUCCESS"
        for conclusion, status, state in normalized
    ):
        return "pass"
    return "unknown"


def derive_review_score(review_decision: str | None) -> int | None:
    """APPROVED → 100, CHANGES_REQUESTED → 0, anything else → None."""
    decision = _upper(review_decision)
    if decision == "APPROVED":
        return 100
    if decision == "CHANGES_REQUESTED":
        return 0
    return None


def _is_git_repo(project_dir: Path) -> bool:
    try:
        result = subprocess.run(
            ["git", "rev-parse", "--git-dir"],
            cwd=project_dir,
            capture_output=True,
            text=True,
            timeout=_GH_TIMEOUT_S,
        )
    except FileNotFoundError:
        return False
    return result.returncode == 0


def collect_pr_info(project_dir: Path, config: ProjectConfig) -> list[PrInfo]:
    """Open PRs whose head branch matches one of config.branch_patterns."""
    if shutil.which("gh") is None or not _is_git_repo(project_dir):
        return []

    result = subprocess.run(
        ["gh", "pr", "list", "--state", "open", "--json", _GH_FIELDS],
        cwd=project_dir,
        capture_output=True,
        text=True,
        timeout=_GH_TIMEOUT_S,
    )
    if result.returncode != 0:
        logger.debug(
            "gh_pr_list_unavailable",
            project_dir=str(project_dir),
            stderr=result.stderr.strip()[:200],
        )
        return []

    raw_prs = json.loads(result.stdout or "[]")
    prs: list[PrInfo] = []
    for pr in raw_prs:
        branch = pr.get("headRefName", "")
        if not any(branch.startswith(pattern) for pattern in config.branch_patterns):
            continue
        prs.append(
            PrInfo(
                number=pr["number"],
                title=pr.get("title", ""),
                branch=branch,
                url=pr.get("url", ""),
                ci_status=derive_ci_status(pr.get("statusCheckRollup")),
                review_score=derive_review_score(pr.get("reviewDecision")),
            )
        )
    return prs
