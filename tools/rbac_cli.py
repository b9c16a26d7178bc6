#!/usr/bin/env python3
"""
Authorization CLI for inspecting roles, grants and decisions offline.

Evaluates against a YAML authorization config, without a running service.

Usage:
    python -m tools.rbac_cli roles
    python -m tools.rbac_cli normalize ADMIN
    python -m tools.rbac_cli grants --user u-editor
    python -m tools.rbac_cli check-access doc-1 --roles editor --group-id g-legal
    python -m tools.rbac_cli transitions DRAFT --user u-editor
    python -m tools.rbac_cli check-transition DRAFT PENDING_REVIEW --roles manager
"""

import argparse
import json
import sys
from typing import Any, Dict, List, Optional

from adapters.static_store import StaticRbacRepository
from core.rbac.engine import AuthorizationEngine
from core.rbac.errors import RbacError
from core.rbac.grants import EffectiveGrants
from core.rbac.transitions import TransitionRuleStore


def build_engine(config_path: Optional[str]) -> AuthorizationEngine:
    repository = StaticRbacRepository.from_config(config_path)
    # No fetch timeout: the static store is in-process
    store = TransitionRuleStore(source=repository, fetch_timeout_seconds=None)
    return AuthorizationEngine(repository, rule_store=store)


def subject(engine: AuthorizationEngine, args: argparse.Namespace) -> EffectiveGrants:
    """Grants for --user (stored assignments) or --roles (explicit names)."""
    if args.roles:
        names = [name.strip() for name in args.roles.split(",") if name.strip()]
        return engine.subject_for_role_names(args.user, names)
    return engine.subject_for(args.user)


# ============================================================================
# Commands
# ============================================================================

def cmd_roles(engine: AuthorizationEngine, args: argparse.Namespace) -> Dict[str, Any]:
    return {"roles": engine.catalog.describe()}


def cmd_normalize(engine: AuthorizationEngine, args: argparse.Namespace) -> Dict[str, Any]:
    role = engine.catalog.normalize(args.name)
    return {"input": args.name, "role": role.to_dict() if role else None}


def cmd_grants(engine: AuthorizationEngine, args: argparse.Namespace) -> Dict[str, Any]:
    return subject(engine, args).to_dict()


def cmd_explain(engine: AuthorizationEngine, args: argparse.Namespace) -> Dict[str, Any]:
    explanation = engine.explain_permission(subject(engine, args), args.permission)
    return {
        "permission": explanation.permission,
        "granted": explanation.granted,
        "reason": explanation.reason,
        "states": {role_id: state.value for role_id, state in explanation.states.items()},
    }


def cmd_check_access(engine: AuthorizationEngine, args: argparse.Namespace) -> Dict[str, Any]:
    reason = engine.document_access(subject(engine, args), args.document_id, args.group_id, args.group_name)
    return {"document_id": args.document_id, "allowed": reason is not None, "reason": reason}


def cmd_transitions(engine: AuthorizationEngine, args: argparse.Namespace) -> Dict[str, Any]:
    rules = engine.allowed_transitions(subject(engine, args), args.from_status)
    return {
        "from_status": args.from_status.strip().upper(),
        "fallback": engine.rule_store.is_fallback,
        "transitions": [
            {"to_status": r.to_status, "min_level": r.min_level,
             "required_permission": r.required_permission, "description": r.description}
            for r in rules
        ],
    }


def cmd_check_transition(engine: AuthorizationEngine, args: argparse.Namespace) -> Dict[str, Any]:
    return engine.check_transition(subject(engine, args), args.from_status, args.to_status).to_dict()


COMMANDS = {
    "roles": cmd_roles,
    "normalize": cmd_normalize,
    "grants": cmd_grants,
    "explain": cmd_explain,
    "check-access": cmd_check_access,
    "transitions": cmd_transitions,
    "check-transition": cmd_check_transition,
}


# ============================================================================
# Entry Point
# ============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Inspect authorization decisions against a YAML config",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Effective grants of a configured user
  python -m tools.rbac_cli grants --user u-editor

  # Why a role does or does not hold a permission
  python -m tools.rbac_cli explain documents.delete --roles editor,viewer

  # Transitions a manager may take from DRAFT
  python -m tools.rbac_cli transitions DRAFT --roles manager
"""
    )
    parser.add_argument(
        "--config",
        "-c",
        default=None,
        help="Authorization YAML config (default: config/rbac.yaml)"
    )

    subject_args = argparse.ArgumentParser(add_help=False)
    subject_args.add_argument("--user", "-u", help="User id with stored role assignments")
    subject_args.add_argument("--roles", "-r", help="Comma-separated role names instead of stored assignments")

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("roles", help="List roles with levels and aliases")

    p = sub.add_parser("normalize", help="Resolve a role name or legacy alias")
    p.add_argument("name")

    sub.add_parser("grants", parents=[subject_args], help="Effective permissions and capabilities")

    p = sub.add_parser("explain", parents=[subject_args], help="Explain one permission")
    p.add_argument("permission")

    p = sub.add_parser("check-access", parents=[subject_args], help="Document read decision")
    p.add_argument("document_id")
    p.add_argument("--group-id", help="Caller's group id")
    p.add_argument("--group-name", help="Caller's group name")

    p = sub.add_parser("transitions", parents=[subject_args], help="Allowed transitions from a status")
    p.add_argument("from_status")

    p = sub.add_parser("check-transition", parents=[subject_args], help="Check one transition")
    p.add_argument("from_status")
    p.add_argument("to_status")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    args = build_parser().parse_args(argv)
    engine = build_engine(args.config)

    try:
        result = COMMANDS[args.command](engine, args)
    except RbacError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2
    finally:
        engine.rule_store.close()

    print(json.dumps(result, indent=2, default=str))
    return 0


if __name__ == "__main__":
    sys.exit(main())
