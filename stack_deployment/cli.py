import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import Dict, List, Optional

from stack_deployment.config import DeploymentConfig, load_config
from stack_deployment.deployment_pipeline import DeploymentPipeline
from stack_deployment.environments import Environment, select_environment
from stack_deployment.exceptions import ConfigurationError, DeploymentError
from stack_deployment.models import EXIT_ERROR, EXIT_SUCCESS, DeploymentResult

logger = logging.getLogger(__name__)

LOG_FORMAT = "[%(asctime)s] %(levelname)s %(name)s - %(message)s"


def _add_target_arguments(parser: argparse.ArgumentParser) -> None:
    target = parser.add_argument_group("target")
    target.add_argument(
        "--environment",
        help="dev, test or prod. Derived from --ref-type/--ref-name when omitted",
    )
    target.add_argument(
        "--ref-type",
        default=os.getenv("GITHUB_REF_TYPE"),
        help="git ref type that triggered the run (branch or tag)",
    )
    target.add_argument(
        "--ref-name",
        default=os.getenv("GITHUB_REF_NAME"),
        help="git branch or tag name that triggered the run",
    )
    target.add_argument("--config", type=Path, help="path of the deployment YAML file")
    target.add_argument("--region", help="override the configured AWS region")
    target.add_argument("--template", help="override the configured template location")
    target.add_argument("--poll-interval", type=int, help="seconds between status queries")
    target.add_argument(
        "--poll-max-attempts", type=int, help="status queries before giving up"
    )


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="stack-deploy",
        description="Deploy CloudFormation stacks through reviewed change sets",
    )
    parser.add_argument(
        "--log-level",
        default=os.getenv("LOG_LEVEL", "INFO"),
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    resolve = subparsers.add_parser(
        "resolve", help="print the environment, stack and role of the triggering ref"
    )
    _add_target_arguments(resolve)
    resolve.add_argument(
        "--github-output",
        default=os.getenv("GITHUB_OUTPUT"),
        help="file to append key=value lines to",
    )

    plan = subparsers.add_parser("plan", help="create a change set for review")
    _add_target_arguments(plan)
    plan.add_argument("--change-set-name")
    plan.add_argument("--output", type=Path, help="write the change set summary as JSON")

    deploy = subparsers.add_parser("deploy", help="plan, execute and wait")
    _add_target_arguments(deploy)
    deploy.add_argument("--change-set-name")

    execute = subparsers.add_parser("execute", help="execute a reviewed change set")
    _add_target_arguments(execute)
    execute.add_argument("--change-set-id", required=True)

    poll = subparsers.add_parser("poll", help="wait for the stack to settle")
    _add_target_arguments(poll)

    return parser.parse_args(argv)


def resolve_environment(args: argparse.Namespace) -> Environment:
    try:
        if args.environment:
            return Environment.from_name(args.environment)
        if not args.ref_type or not args.ref_name:
            raise ConfigurationError(
                "Either --environment or both --ref-type and --ref-name are required"
            )
        return select_environment(args.ref_type, args.ref_name)
    except ValueError as e:
        raise ConfigurationError(str(e)) from e


def build_config(args: argparse.Namespace) -> DeploymentConfig:
    config = load_config(resolve_environment(args), args.config)
    return config.with_overrides(
        region=args.region,
        template_location=args.template,
        poll_interval_seconds=args.poll_interval,
        poll_max_attempts=args.poll_max_attempts,
    )


def resolved_outputs(config: DeploymentConfig) -> Dict[str, str]:
    return {
        "environment": config.environment.value,
        "stack_name": config.stack_name,
        "region": config.region,
        "role_arn": config.role_arn or "",
    }


def write_outputs(outputs: Dict[str, str], github_output: Optional[str] = None) -> None:
    lines = [f"{k}={o}" for k, o in outputs.items()]
    print("\n".join(lines))
    if github_output:
        with open(github_output, "a") as f:
            f.write("\n".join(lines) + "\n")


def report(result: DeploymentResult) -> int:
    print(json.dumps(result.to_dict(), indent=2))
    if not result.succeeded:
        logger.error(
            f"Deployment of {result.stack_name} ended {result.outcome.value} "
            f"with status {result.stack_status} after {result.attempts} queries"
        )
    return result.exit_code


def run(args: argparse.Namespace) -> int:
    config = build_config(args)

    if args.command == "resolve":
        write_outputs(resolved_outputs(config), args.github_output)
        return EXIT_SUCCESS

    pipeline = DeploymentPipeline(config)
    logger.info(
        f"Target {config.stack_name} in {config.region} ({config.environment.value}), "
        f"polling window {config.polling_window_seconds}s"
    )

    if args.command == "plan":
        change_set = pipeline.plan(args.change_set_name)
        summary = json.dumps(change_set.to_dict(), indent=2)
        print(summary)
        if args.output:
            args.output.write_text(summary)
        return EXIT_SUCCESS
    if args.command == "deploy":
        return report(pipeline.deploy(args.change_set_name))
    if args.command == "execute":
        return report(pipeline.execute(args.change_set_id))
    if args.command == "poll":
        return report(pipeline.poll())
    raise ValueError(f"Unknown command {args.command}")


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_arguments(argv)
    logging.basicConfig(level=args.log_level, format=LOG_FORMAT)
    try:
        return run(args)
    except DeploymentError as e:
        logger.error(str(e))
        return EXIT_ERROR


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
