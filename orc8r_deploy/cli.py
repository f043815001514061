"""
Command-line entry point.

Usage:
    orc8r-deploy <DOMAIN> <EMAIL> [-v] [--skip-host-setup] [--dry-run]
    orc8r-deploy status [-v]
    orc8r-deploy teardown [--yes] [--purge-host] [-v]

Exit codes: 0 on success, 1 on any fatal step (including missing arguments),
130 when interrupted.
"""

from __future__ import annotations

import argparse
import sys
from typing import Optional, Sequence

from kubernetes import client as k8s_client
from kubernetes import config as k8s_config

from orc8r_deploy import orchestrator, report, teardown
from orc8r_deploy.common import configure_logging, log
from orc8r_deploy.config import Config, DeploymentTarget
from orc8r_deploy.errors import DeployError, FatalStepError
from orc8r_deploy.helm import Helm

SUBCOMMANDS = ("status", "teardown")


class _Parser(argparse.ArgumentParser):
    """Usage errors exit 1, not argparse's default 2."""

    def error(self, message: str):
        self.print_usage(sys.stderr)
        self.exit(1, f"{self.prog}: error: {message}\n")


def _add_verbose(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")


def build_deploy_parser() -> argparse.ArgumentParser:
    parser = _Parser(
        prog="orc8r-deploy",
        description="Deploy (or re-converge) Magma Orchestrator + NMS on single-node k3s",
        epilog="Subcommands: 'status' (read-only report), 'teardown' (remove everything)",
    )
    parser.add_argument("domain", help="Orchestrator domain name, e.g. example.org")
    parser.add_argument("email", help="NMS administrator email")
    _add_verbose(parser)
    parser.add_argument(
        "--skip-host-setup",
        action="store_true",
        help="Assume k3s, helm and kubeconfig are already in place",
    )
    parser.add_argument("--dry-run", action="store_true", help="Print configuration and exit")
    return parser


def build_status_parser() -> argparse.ArgumentParser:
    parser = _Parser(prog="orc8r-deploy status", description="Read-only deployment report")
    _add_verbose(parser)
    return parser


def build_teardown_parser() -> argparse.ArgumentParser:
    parser = _Parser(prog="orc8r-deploy teardown", description="Uninstall all Magma components")
    _add_verbose(parser)
    parser.add_argument("--yes", action="store_true", help="Skip the abort window")
    parser.add_argument("--purge-host", action="store_true", help="Also uninstall k3s and the kubeconfig")
    return parser


def _status(args: argparse.Namespace) -> int:
    cfg = Config(verbose=args.verbose)
    k8s_config.load_kube_config(config_file=cfg.kubeconfig)
    healthy = report.run_status(cfg, k8s_client.CoreV1Api(), Helm(cfg.kubeconfig))
    return 0 if healthy else 1


def _teardown(args: argparse.Namespace) -> int:
    cfg = Config(verbose=args.verbose)
    teardown.run_teardown(
        cfg, Helm(cfg.kubeconfig), assume_yes=args.yes, purge_host=args.purge_host,
    )
    return 0


def _deploy(args: argparse.Namespace) -> int:
    target = DeploymentTarget(args.domain, args.email)
    cfg = Config(
        skip_host_setup=args.skip_host_setup,
        dry_run=args.dry_run,
        verbose=args.verbose,
    )
    if cfg.dry_run:
        cfg.print_banner(target)
        cfg.print_dry_run()
        return 0
    orchestrator.run(cfg, target)
    return 0


def dispatch(argv: Sequence[str]) -> int:
    argv = list(argv)
    if argv and argv[0] in SUBCOMMANDS:
        command, rest = argv[0], argv[1:]
        parser = build_status_parser() if command == "status" else build_teardown_parser()
        handler = _status if command == "status" else _teardown
    else:
        parser, rest, handler = build_deploy_parser(), argv, _deploy

    args = parser.parse_args(rest)
    configure_logging(args.verbose)

    try:
        return handler(args)
    except KeyboardInterrupt:
        log.info("\n✗ Interrupted")
        return 130
    except FatalStepError as exc:
        log.error("✗ Step '%s' failed: %s", exc.step, exc.message)
        return 1
    except DeployError as exc:
        log.error("✗ %s", exc)
        return 1
    except Exception as exc:
        log.error("✗ Deployment failed: %s", exc, exc_info=True)
        return 1


def main(argv: Optional[Sequence[str]] = None) -> None:
    sys.exit(dispatch(sys.argv[1:] if argv is None else argv))


if __name__ == "__main__":
    main()
