from __future__ import annotations

import argparse
from pathlib import Path

from ozymandias.config import AppConfig, load_config
from ozymandias.github_gateway import GitHubGateway, GitHubRequestError
from ozymandias.job_dispatch import CircleCIJobDispatcher, JobDispatchError
from ozymandias.models import PullRequestRef
from ozymandias.observability import configure_logging
from ozymandias.orchestrator import MergeOrchestrator
from ozymandias.shell import CommandError


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="ozymandias")
    subparsers = parser.add_subparsers(dest="command", required=True)

    green_parser = subparsers.add_parser(
        "merge-on-green", help="Merge a pull request once it is mergeable and green"
    )
    _add_common_arguments(green_parser)

    run_parser = subparsers.add_parser(
        "run-and-merge", help="Run a CircleCI job on the PR head, then merge on green"
    )
    _add_common_arguments(run_parser)
    run_parser.add_argument("--job", required=True, help="CircleCI job name to run")

    comment_parser = subparsers.add_parser(
        "comment",
        help="Route a pull request comment through the merge command parser",
    )
    _add_common_arguments(comment_parser)
    comment_parser.add_argument("--body", required=True, help="Comment text")
    comment_parser.add_argument(
        "--association",
        default="NONE",
        help="Commenter author_association as reported by GitHub (e.g. COLLABORATOR)",
    )

    return parser


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("pr", help="Pull request as owner/name#number or an API URL")
    parser.add_argument("--config", type=Path, default=Path("ozymandias.toml"))
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose runtime logging to stderr",
    )
    parser.add_argument(
        "--quiet-events",
        action="store_true",
        help="With --verbose, only log merge decisions and failures",
    )


def main() -> None:
    args = build_parser().parse_args()
    config = load_config(args.config)
    verbose: bool | str = "low" if args.verbose and args.quiet_events else bool(args.verbose)
    configure_logging(verbose, log_dir=config.runtime.log_dir)
    ref = _resolve_pull_request(config, str(args.pr))

    if args.command == "merge-on-green":
        _cmd_merge_on_green(config, ref)
        return
    if args.command == "run-and-merge":
        _cmd_run_and_merge(config, ref, job_name=str(args.job))
        return
    if args.command == "comment":
        _cmd_comment(config, ref, body=str(args.body), association=str(args.association))
        return

    raise RuntimeError(f"Unknown command: {args.command}")


def _cmd_merge_on_green(config: AppConfig, ref: PullRequestRef) -> None:
    with _build_orchestrator(config) as orchestrator:
        orchestrator.begin_green_merge(ref)
        print(f"Monitoring {ref} until it merges, is rejected, or times out.")
        orchestrator.run(exit_when_idle=True)


def _cmd_run_and_merge(config: AppConfig, ref: PullRequestRef, *, job_name: str) -> None:
    try:
        dispatcher = CircleCIJobDispatcher.from_config(config.circleci)
    except JobDispatchError as exc:
        raise SystemExit(f"Job dispatch failed: {exc}") from exc
    try:
        with _build_orchestrator(config, dispatcher=dispatcher) as orchestrator:
            future = orchestrator.begin_run_then_merge(dispatcher, ref, job_name)
            try:
                future.result()
            except (JobDispatchError, GitHubRequestError, CommandError) as exc:
                raise SystemExit(f"Job dispatch failed: {exc}") from exc
            print(f"Dispatched job [{job_name}] for {ref}; monitoring until it resolves.")
            orchestrator.run(exit_when_idle=True)
    finally:
        dispatcher.close()


def _cmd_comment(config: AppConfig, ref: PullRequestRef, *, body: str, association: str) -> None:
    dispatcher: CircleCIJobDispatcher | None
    try:
        dispatcher = CircleCIJobDispatcher.from_config(config.circleci)
    except JobDispatchError:
        dispatcher = None
    try:
        with _build_orchestrator(config, dispatcher=dispatcher) as orchestrator:
            print(orchestrator.handle_comment(ref, body, association))
            orchestrator.run(exit_when_idle=True)
    finally:
        if dispatcher is not None:
            dispatcher.close()


def _build_orchestrator(
    config: AppConfig, *, dispatcher: CircleCIJobDispatcher | None = None
) -> MergeOrchestrator:
    return MergeOrchestrator(
        config,
        github_by_repo_full_name={
            repo.full_name: GitHubGateway(repo.owner, repo.name) for repo in config.repos
        },
        dispatcher=dispatcher,
    )


def _resolve_pull_request(config: AppConfig, raw_ref: str) -> PullRequestRef:
    ref = PullRequestRef.parse(raw_ref)
    if config.repo_for(ref.full_name) is None:
        available = ", ".join(sorted(repo.full_name for repo in config.repos))
        raise RuntimeError(
            f"Repository {ref.full_name!r} is not configured. Expected one of: {available}"
        )
    return ref
