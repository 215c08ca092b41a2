import argparse
import asyncio
import json
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

from subagent_delegate.agent.delegation import DEFAULT_ROLE, DelegationResult, Delegator
from .config import (
    DEFAULT_CONFIG_DIR,
    ENDPOINT_KEY,
    MODEL_KEY,
    LOCAL_API_KEY_KEY,
    DelegationConfig,
    get_env_path,
    get_env_value,
    load_config,
    load_env_with_fallback,
)


def _configure_logging(level: str) -> None:
    level = (level or "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _print_config(config_dir: Path, config: DelegationConfig) -> None:
    env_file = load_env_with_fallback(config_dir)
    print(f"Config dir: {config_dir}")
    print(f"Env file: {get_env_path(config_dir)}")
    print(f"Endpoint: {config.endpoint}{' (from .env)' if get_env_value(ENDPOINT_KEY, env_file) else ''}")
    print(f"Model: {config.model}{' (from .env)' if get_env_value(MODEL_KEY, env_file) else ''}")
    print(f"Enabled: {'yes' if config.enabled else 'no'}")
    caps = [
        name
        for name, on in (
            ("filesystem", config.allow_filesystem),
            ("web", config.allow_web),
            ("code", config.allow_code),
        )
        if on
    ]
    print(f"Capabilities: {', '.join(caps) or 'none'}")
    print(f"Auto-save: {'yes' if config.auto_save else 'no'}")
    print(f"Auto-debug: {'yes' if config.auto_debug else 'no'}")
    print(f"Local API key set: {'yes' if get_env_value(LOCAL_API_KEY_KEY, env_file) or config.local_api_key else 'no'}")


async def _run_once(delegator: Delegator, args: argparse.Namespace, workdir: Path) -> DelegationResult:
    try:
        return await delegator.delegate(
            task=args.task,
            agent_role=args.role,
            context=args.context,
            allow_tools=args.allow_tools,
            working_directory=workdir,
            auto_debug=True if args.auto_debug else None,
        )
    finally:
        await delegator.aclose()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Delegate a task to a secondary agent")
    parser.add_argument("task", nargs="?", default="", help="Task for the secondary agent")
    parser.add_argument("--role", default=DEFAULT_ROLE, help="Persona name (see SUBAGENT_PROFILES)")
    parser.add_argument("--context", default="", help="Extra context passed with the task")
    parser.add_argument("--allow-tools", action="store_true", help="Let the secondary agent call tools")
    parser.add_argument("--workdir", default="", help="Workspace directory (default: current directory)")
    parser.add_argument("--auto-debug", action="store_true", help="Run the reviewer pass on generated files")
    parser.add_argument("--json", action="store_true", help="Print the result as JSON")
    parser.add_argument(
        "--config-dir",
        default=str(DEFAULT_CONFIG_DIR),
        help="Directory holding the .env config (default: ~/.config/subagent-delegate)",
    )
    parser.add_argument("--print-config", action="store_true", help="Print active config summary")
    parser.add_argument("--serve", action="store_true", help="Run the local HTTP API instead of a single task")
    parser.add_argument("--host", default="127.0.0.1", help="Local API bind host")
    parser.add_argument("--port", type=int, default=8766, help="Local API bind port")
    parser.add_argument("--log-level", default=os.environ.get("LOG_LEVEL", "INFO"))
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    config_dir = Path(args.config_dir).expanduser().resolve()

    _configure_logging(args.log_level)
    config = load_config(config_dir)

    if args.print_config:
        _print_config(config_dir, config)
        return 0

    workdir = Path(args.workdir or os.getcwd()).expanduser().resolve()
    if not workdir.is_dir():
        print(f"Workspace does not exist: {workdir}", file=sys.stderr)
        return 2

    delegator = Delegator.from_config(config)

    if args.serve:
        from subagent_delegate.api.app import create_app
        import uvicorn

        app = create_app(delegator, workspace_root=workdir)
        uvicorn.run(app, host=args.host, port=args.port, log_level=args.log_level.lower())
        return 0

    if not args.task.strip():
        parser.error("task is required unless --serve or --print-config is given")

    result = asyncio.run(_run_once(delegator, args, workdir))
    if args.json:
        print(json.dumps(result.to_dict(), ensure_ascii=False, indent=2))
    elif result.error is not None:
        print(f"Error: {result.error}", file=sys.stderr)
    else:
        print(result.response)
    return 0 if result.ok else 1


if __name__ == "__main__":
    sys.exit(main())
