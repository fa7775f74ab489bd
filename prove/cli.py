#!/usr/bin/env python3
"""prove CLI: pre-merge verification gate.

This is the installable CLI entrypoint (console_scripts).

Subcommands:
- prove run              → Run every stage and write the report
- prove quick            → Run only quick-mode checks
- prove mode             → Print the resolved delivery mode and where it came from
- prove phase            → Print the TDD phase classification of HEAD
- prove evidence record  → Append a test-run result to the evidence log
- prove report verify    → Verify a detached report signature

Exit codes:
- 0: GO (every attempted check passed)
- 2: NO-GO (at least one check failed, or a signature did not verify)
- 3: usage/configuration/internal error
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path

from prove.checks.registry import build_registry
from prove.config import GateConfig, load_config
from prove.context import build_context
from prove.core.errors import ConfigurationError, DataFormatError, ToolInvocationError
from prove.mode import resolve_delivery_mode
from prove.report import (
    Report,
    aborted_report,
    load_json_file,
    signature_path_for,
    verify_report_signature,
    write_report,
    write_signature,
)
from prove.runner import run_gate
from prove.tdd.classifier import classify_change
from prove.tdd.evidence import PHASES, TestRunSummary, load_test_evidence, record_test_evidence
from prove.vcs import GitAdapter, load_snapshot


def _configure_logging(verbosity: int) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="[prove] %(levelname)s %(name)s: %(message)s", stream=sys.stderr)


def _load_config_or_report(tag: str, repo_root: Path, args: argparse.Namespace) -> GateConfig | None:
    try:
        return load_config(repo_root, config_path=Path(args.config) if args.config else None, env=os.environ)
    except ConfigurationError as e:
        print(f"[{tag}] ERROR: {e}", file=sys.stderr)
        print(f"[{tag}] Remediation: Do fix prove.config.json or the PROVE_* environment overrides, then re-run.", file=sys.stderr)
        return None


def _print_results(tag: str, report: Report) -> None:
    for r in report.results:
        if r.ok:
            suffix = f" ({r.reason})" if r.reason else ""
            print(f"[{tag}]   ok   {r.id}{suffix}", file=sys.stderr)
        else:
            print(f"[{tag}]   FAIL {r.id}: {r.reason}", file=sys.stderr)


def _write_report_or_none(tag: str, path: Path, report: Report, *, deterministic: bool) -> dict | None:
    try:
        return write_report(path, report, deterministic=deterministic)
    except OSError as e:
        print(f"[{tag}] ERROR: cannot write report {path}: {e}", file=sys.stderr)
        print(f"[{tag}] Remediation: Do pass a writable --report path, then re-run {tag}.", file=sys.stderr)
        return None


def _gate(args: argparse.Namespace, *, quick: bool) -> int:
    tag = "prove quick" if quick else "prove run"
    repo_root = Path(args.repo).resolve()
    if not repo_root.is_dir():
        print(f"[{tag}] ERROR: repo path is not a directory: {repo_root}", file=sys.stderr)
        return 3

    config = _load_config_or_report(tag, repo_root, args)
    if config is None:
        return 3
    report_path = Path(args.report) if args.report else repo_root / config.paths.report_file

    try:
        ctx = build_context(
            repo_root,
            config=config,
            env=os.environ,
            pr_labels=args.pr_label or None,
            pr_title=args.pr_title,
            base_ref=args.base_ref,
        )
    except (ConfigurationError, ToolInvocationError) as e:
        _write_report_or_none(tag, report_path, aborted_report(str(e), quick=quick), deterministic=args.deterministic)
        print(f"[{tag}] ERROR: {e}", file=sys.stderr)
        print(f"[{tag}] Remediation: Do fix the reported input, then re-run {tag}.", file=sys.stderr)
        return 3

    report = run_gate(ctx, build_registry(), quick=quick)
    obj = _write_report_or_none(tag, report_path, report, deterministic=args.deterministic)
    if obj is None:
        return 3

    if args.sign_key:
        try:
            sig_path = write_signature(report_path, obj, Path(args.sign_key).read_bytes())
        except (OSError, ValueError) as e:
            print(f"[{tag}] ERROR: cannot sign report: {e}", file=sys.stderr)
            return 3
        print(f"[{tag}] signature: {sig_path}", file=sys.stderr)

    _print_results(tag, report)
    print(f"[{tag}] mode={report.mode} phase={report.phase} report={report_path}", file=sys.stderr)
    if args.json:
        print(json.dumps(obj, indent=2, sort_keys=True, ensure_ascii=False))

    if report.overall_ok:
        print(f"[{tag}] GO", file=sys.stderr)
        return 0
    print(f"[{tag}] NO-GO: {report.summary()['failed']} check(s) failed", file=sys.stderr)
    return 2


def cmd_run(args: argparse.Namespace) -> int:
    return _gate(args, quick=False)


def cmd_quick(args: argparse.Namespace) -> int:
    return _gate(args, quick=True)


def cmd_mode(args: argparse.Namespace) -> int:
    """Print `<mode> <source>`; validates the problem analysis for non-functional work."""

    repo_root = Path(args.repo).resolve()
    config = _load_config_or_report("prove mode", repo_root, args)
    if config is None:
        return 3
    try:
        resolution = resolve_delivery_mode(
            repo_root,
            env=os.environ,
            task_descriptor_path=Path(config.paths.task_descriptor),
            problem_analysis_path=Path(config.paths.problem_analysis),
            pr_labels=args.pr_label or None,
            pr_title=args.pr_title,
        )
    except ConfigurationError as e:
        print(f"[prove mode] ERROR: {e}", file=sys.stderr)
        return 3
    print(f"{resolution.mode} {resolution.source}")
    return 0


def cmd_phase(args: argparse.Namespace) -> int:
    repo_root = Path(args.repo).resolve()
    config = _load_config_or_report("prove phase", repo_root, args)
    if config is None:
        return 3
    try:
        candidates = (args.base_ref,) if args.base_ref else config.git.base_ref_candidates
        snapshot = load_snapshot(GitAdapter(repo_root), base_candidates=candidates, env=os.environ)
        evidence = load_test_evidence(repo_root / config.paths.evidence_log)
    except (ToolInvocationError, DataFormatError) as e:
        print(f"[prove phase] ERROR: {e}", file=sys.stderr)
        return 3
    classification = classify_change(
        snapshot.commit_message,
        evidence,
        snapshot.changed_files,
        test_globs=config.paths.test_globs,
        refactor_keywords=config.refactor_keywords,
    )
    print(json.dumps(classification.to_dict(), indent=2, sort_keys=True))
    return 0


def cmd_evidence_record(args: argparse.Namespace) -> int:
    repo_root = Path(args.repo).resolve()
    config = _load_config_or_report("prove evidence record", repo_root, args)
    if config is None:
        return 3
    if args.passed < 0 or args.failed < 0:
        print("[prove evidence record] ERROR: --passed/--failed must be non-negative", file=sys.stderr)
        return 3
    summary = TestRunSummary(passed=args.passed, failed=args.failed, total=args.passed + args.failed)
    try:
        entry = record_test_evidence(
            repo_root / config.paths.evidence_log,
            summary=summary,
            phase=args.phase,
            changed_files=args.changed_file or (),
            commit_hash=args.commit,
        )
    except (OSError, DataFormatError) as e:
        print(f"[prove evidence record] ERROR: {e}", file=sys.stderr)
        return 3
    print(f"[prove evidence record] recorded: {entry.id}", file=sys.stderr)
    return 0


def cmd_report_verify(args: argparse.Namespace) -> int:
    report_path = Path(args.report)
    sig_path = Path(args.signature) if args.signature else signature_path_for(report_path)
    try:
        report_obj = load_json_file(report_path)
        signature_doc = load_json_file(sig_path)
        public_key = Path(args.public_key).read_bytes()
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        print(f"[prove report verify] ERROR: {e}", file=sys.stderr)
        return 3
    try:
        verify_report_signature(report_obj, signature_doc, public_key)
    except ValueError as e:
        print(f"[prove report verify] NO-GO: {e}", file=sys.stderr)
        return 2
    print(f"[prove report verify] GO: signature valid for {report_path}", file=sys.stderr)
    return 0


def _add_common(p: argparse.ArgumentParser) -> None:
    p.add_argument("--repo", default=".", help="Repo root (default: .)")
    p.add_argument("--config", default=None, help="Path to a config JSON file (default: <repo>/prove.config.json if present)")


def _add_pr_inputs(p: argparse.ArgumentParser) -> None:
    p.add_argument("--pr-label", action="append", default=[], help="PR label (repeatable; default: $GITHUB_PR_LABELS)")
    p.add_argument("--pr-title", default=None, help="PR title (default: $GITHUB_PR_TITLE or $PR_TITLE)")


def _add_gate_options(p: argparse.ArgumentParser) -> None:
    _add_common(p)
    _add_pr_inputs(p)
    p.add_argument("--base-ref", default=None, help="Diff base (default: first existing git.base_ref_candidates, else HEAD~1)")
    p.add_argument("--report", default=None, help="Report output path (default: paths.report_file)")
    p.add_argument("--sign-key", default=None, help="Ed25519 private key (PEM or 64-hex seed) for a detached report signature")
    p.add_argument("--deterministic", action="store_true", help="Use a fixed generated_at timestamp")
    p.add_argument("--json", action="store_true", help="Also print the report JSON to stdout")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="prove", description="prove: pre-merge verification gate")
    parser.add_argument("-v", "--verbose", action="count", default=0, help="More logging (-v info, -vv debug)")
    subparsers = parser.add_subparsers(dest="command", help="Subcommand")

    p_run = subparsers.add_parser("run", help="Run all stages and write the report")
    _add_gate_options(p_run)
    p_run.set_defaults(func=cmd_run)

    p_quick = subparsers.add_parser("quick", help="Run only quick-mode checks")
    _add_gate_options(p_quick)
    p_quick.set_defaults(func=cmd_quick)

    p_mode = subparsers.add_parser("mode", help="Print the resolved delivery mode")
    _add_common(p_mode)
    _add_pr_inputs(p_mode)
    p_mode.set_defaults(func=cmd_mode)

    p_phase = subparsers.add_parser("phase", help="Print the TDD phase classification")
    _add_common(p_phase)
    p_phase.add_argument("--base-ref", default=None, help="Diff base")
    p_phase.set_defaults(func=cmd_phase)

    # evidence (subparser group)
    p_evidence = subparsers.add_parser("evidence", help="Test evidence log commands")
    evidence_subs = p_evidence.add_subparsers(dest="evidence_command", help="Evidence subcommand")
    p_record = evidence_subs.add_parser("record", help="Append a test-run result to the evidence log")
    _add_common(p_record)
    p_record.add_argument("--passed", type=int, required=True, help="Number of passing tests")
    p_record.add_argument("--failed", type=int, required=True, help="Number of failing tests")
    p_record.add_argument("--phase", choices=PHASES, default="unknown", help="TDD phase of this run")
    p_record.add_argument("--changed-file", action="append", default=[], help="Changed file (repeatable)")
    p_record.add_argument("--commit", default=None, help="Commit hash the run belongs to")
    p_record.set_defaults(func=cmd_evidence_record)

    # report (subparser group)
    p_report = subparsers.add_parser("report", help="Report commands")
    report_subs = p_report.add_subparsers(dest="report_command", help="Report subcommand")
    p_verify = report_subs.add_parser("verify", help="Verify a detached report signature")
    p_verify.add_argument("--report", required=True, help="Path to the report JSON")
    p_verify.add_argument("--signature", default=None, help="Signature JSON (default: <report>.sig.json)")
    p_verify.add_argument("--public-key", required=True, help="Ed25519 public key (PEM or 64-hex)")
    p_verify.set_defaults(func=cmd_report_verify)

    args = parser.parse_args(argv)
    _configure_logging(args.verbose)

    if args.command == "evidence" and getattr(args, "evidence_command", None) is None:
        p_evidence.print_help()
        return 3
    if args.command == "report" and getattr(args, "report_command", None) is None:
        p_report.print_help()
        return 3
    if not hasattr(args, "func"):
        parser.print_help()
        return 3
    return int(args.func(args))


if __name__ == "__main__":
    raise SystemExit(main())
