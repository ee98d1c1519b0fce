"""CLI entry point for repopack."""

from __future__ import annotations

import argparse
import sys

from repopack import __version__
from repopack.config import SyncConfig, compile_pattern
from repopack.errors import SyncError
from repopack.log import setup_logging
from repopack.scanner import find_repos
from repopack.sync import run_sync

_VERBOSITY = {0: None, 1: "INFO", 2: "DEBUG"}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="repopack",
        description=(
            "Clone the current branch of every local git repo whose folder "
            "name matches PATTERN and pack them into one zip archive."
        ),
    )
    parser.add_argument(
        "pattern",
        nargs="?",
        help="Regular expression matched against repository folder names",
    )
    parser.add_argument(
        "aux_files",
        nargs="*",
        metavar="FILE",
        help="Extra files copied to the archive root",
    )
    parser.add_argument(
        "-e", "--regexp",
        metavar="PATTERN",
        help="Give the pattern as an option; then every positional is a FILE",
    )
    parser.add_argument(
        "--root",
        default=".",
        help="Directory to scan for git repos (default: current directory)",
    )
    parser.add_argument(
        "-j", "--jobs",
        type=int,
        dest="clone_workers",
        metavar="N",
        help="Number of concurrent clones (default: 4)",
    )
    parser.add_argument(
        "--walk-workers",
        type=int,
        metavar="N",
        help="Threads used to walk the directory tree (default: 8)",
    )
    parser.add_argument(
        "--depth",
        type=int,
        dest="clone_depth",
        metavar="N",
        help="Commits of history to keep per repo; 0 keeps the whole branch (default: 1)",
    )
    parser.add_argument(
        "--timeout",
        type=int,
        dest="git_timeout",
        metavar="SECONDS",
        help="Timeout for each git command (default: 300)",
    )
    parser.add_argument(
        "--retries",
        type=int,
        dest="clone_retries",
        metavar="N",
        help="Retry a failed clone N times with backoff (default: 0)",
    )
    parser.add_argument(
        "--exclude",
        action="append",
        default=[],
        metavar="NAME",
        help="Directory name never walked into (repeatable; .git is always excluded)",
    )
    parser.add_argument(
        "--output-dir",
        metavar="DIR",
        help="Where to write the archive (default: system temp dir)",
    )
    parser.add_argument(
        "--keep-staging",
        action="store_true",
        help="Leave the staging directory in place after archiving",
    )
    parser.add_argument(
        "--fail-fast",
        action="store_true",
        help="Abort the whole run on the first unreadable directory or failed clone",
    )
    parser.add_argument(
        "--list",
        action="store_true",
        dest="list_only",
        help="Only print the matching repositories, do not clone",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Log progress (-v) or everything (-vv) to stderr",
    )
    parser.add_argument(
        "--log-file",
        metavar="PATH",
        help="Also write log records to this file",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"repopack {__version__}",
    )
    return parser


def _protect_pattern(parser: argparse.ArgumentParser, argv: list[str]) -> list[str]:
    """Rewrite a leading-dash pattern such as `-sync$` into `--regexp=-sync$`.

    argparse reads any token starting with "-" as an option, so the first
    token that is neither an option nor an option's value is the pattern
    and gets passed through --regexp instead.
    """
    argv = list(argv)
    options = parser._option_string_actions
    i = 0
    while i < len(argv):
        token = argv[i]
        if token == "--":
            break
        name = token.split("=", 1)[0]
        if name in options:
            takes_value = options[name].nargs != 0 and "=" not in token
            if takes_value and i + 1 < len(argv):
                value = argv[i + 1]
                if value.startswith("-") and value.split("=", 1)[0] not in options:
                    # -e -sync$ -> -e-sync$, --regexp -sync$ -> --regexp=-sync$
                    sep = "=" if token.startswith("--") else ""
                    argv[i:i + 2] = [f"{token}{sep}{value}"]
                    takes_value = False
            i += 2 if takes_value else 1
            continue
        if not token.startswith("--") and token[:2] in options:
            # short option with its value or further flags attached: -j4, -vv
            i += 1
            continue
        if token.startswith("-") and token != "-":
            argv[i] = f"--regexp={token}"
        break
    return argv


def _print_report(report) -> None:
    from rich.console import Console

    from repopack.theme import RED, render_report

    console = Console(stderr=True)
    if report.results or report.skipped:
        console.print(render_report(report))
    else:
        console.print(f"[{RED}]No matching git repos found.[/{RED}]")


def main(argv: list[str] | None = None) -> int:
    """Entry point for the repopack CLI."""
    parser = build_parser()
    if argv is None:
        argv = sys.argv[1:]
    args = parser.parse_args(_protect_pattern(parser, argv))

    aux_files = list(args.aux_files)
    if args.regexp is not None:
        pattern = args.regexp
        if args.pattern is not None:
            aux_files.insert(0, args.pattern)
    elif args.pattern is not None:
        pattern = args.pattern
    else:
        parser.error("the following arguments are required: pattern")

    try:
        config = SyncConfig.from_env(
            compile_pattern(pattern),
            root=args.root,
            aux_files=tuple(aux_files),
            clone_workers=args.clone_workers,
            walk_workers=args.walk_workers,
            clone_depth=args.clone_depth,
            git_timeout=args.git_timeout,
            clone_retries=args.clone_retries,
            exclude=frozenset({".git", *args.exclude}),
            output_dir=args.output_dir,
            keep_staging=args.keep_staging or None,
            fail_fast=args.fail_fast or None,
            log_level=_VERBOSITY.get(min(args.verbose, 2)),
        )
        config.validate()
        setup_logging(config.log_level, args.log_file)

        if args.list_only:
            for path in find_repos(
                config.root,
                config.pattern,
                workers=config.walk_workers,
                exclude=config.exclude,
                fail_fast=config.fail_fast,
            ):
                print(path)
            return 0

        report = run_sync(config)
    except SyncError as exc:
        print(f"repopack: {exc}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("repopack: interrupted", file=sys.stderr)
        return 130

    _print_report(report)
    print(report.archive)
    return 0


if __name__ == "__main__":
    sys.exit(main())
