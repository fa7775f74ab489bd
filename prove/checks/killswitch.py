from __future__ import annotations

import logging
import re

from prove.checks.base import CheckResult, PriorResults, failed, passed
from prove.checks.git_policy import commit_subject
from prove.context import Context
from prove.core.diff_parse import added_lines_by_file
from prove.core.paths import is_source_path


logger = logging.getLogger(__name__)

FEAT_RE = re.compile(r"^feat(\([^)]*\))?!?:")

# Each pattern captures the flag name.
KILL_SWITCH_PATTERNS = (
    re.compile(r"""\bis_enabled\(\s*['"]([\w.\-]+)['"]"""),
    re.compile(r"""\bisEnabled\(\s*['"]([\w.\-]+)['"]"""),
    re.compile(r"""\bfeature_flag\(\s*['"]([\w.\-]+)['"]"""),
    re.compile(r"""\bflags?\.(?:enabled|is_on|get)\(\s*['"]([\w.\-]+)['"]"""),
    re.compile(r"""\bos\.environ\.get\(\s*['"](FEATURE_[A-Z0-9_]+)['"]"""),
    re.compile(r"""\b(KILL_SWITCH_[A-Z0-9_]+)\b"""),
)


def find_flag_names(lines: list[str]) -> list[str]:
    found: list[str] = []
    for line in lines:
        for pat in KILL_SWITCH_PATTERNS:
            for m in pat.finditer(line):
                if m.group(1) not in found:
                    found.append(m.group(1))
    return found


async def check_killswitch(ctx: Context, prior: PriorResults) -> CheckResult:
    subject = commit_subject(ctx.vcs.commit_message)
    if not FEAT_RE.match(subject):
        return passed("killswitch-required", "not a feat commit")

    paths = ctx.config.paths
    production = [f for f in ctx.vcs.changed_files if is_source_path(f, paths.src_globs, paths.test_globs)]
    if not production:
        return passed("killswitch-required", "no production files changed")

    added = added_lines_by_file(ctx.vcs.unified_diff)
    flags: list[str] = []
    for f in production:
        for name in find_flag_names(added.get(f, [])):
            if name not in flags:
                flags.append(name)

    if not flags:
        return failed(
            "killswitch-required",
            "feat commit changes production code without a kill-switch (feature flag) guard",
            production_files=production,
            remediation="Do guard the new behavior behind a feature flag, then re-run prove.",
        )

    unregistered: list[str] = []
    if ctx.flags.available:
        unregistered = [n for n in flags if not ctx.flags.is_registered(n)]
        for n in unregistered:
            logger.warning("feature flag %s is not in the flag registry %s", n, ctx.flags.path.name)
    return passed("killswitch-required", flags=flags, unregistered_flags=unregistered)
