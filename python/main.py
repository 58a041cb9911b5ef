import argparse
import logging
import os
import subprocess
import sys

from ecr_lifecycle.config_manager import config_manager
from ecr_lifecycle.logging_utils import setup_logging

SCRIPTS_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "scripts")


def load_script_paths():
    return {
        "apply_retention": os.path.join(SCRIPTS_DIR, "apply_retention.py"),
        "apply_lifecycle_policy": os.path.join(SCRIPTS_DIR, "apply_lifecycle_policy.py"),
    }


def get_script_descriptions():
    return {
        "apply_retention": "Decide which images to retain or delete in every repository and delete the expired ones",
        "apply_lifecycle_policy": "Submit the equivalent ECR lifecycle policy document to every repository",
    }


def run_script(script_path, args, dry_run=False):
    """Run a script with the given arguments"""
    if dry_run and "--dry-run" not in args:
        logging.info("Running in DRY RUN mode - no images or policies will be changed")
        args = args + ["--dry-run"]

    if not os.path.exists(script_path):
        logging.error(f"Script not found: {script_path}")
        sys.exit(1)

    logging.info(f"Running script: {script_path}")
    logging.info(f"Arguments: {args}")

    try:
        subprocess.run([sys.executable, script_path] + args, check=True)
    except subprocess.CalledProcessError as e:
        logging.error(f"Error running script {script_path}: {e}")
        sys.exit(e.returncode or 1)


def main(argv=None):
    setup_logging()
    script_paths = load_script_paths()
    script_descriptions = get_script_descriptions()

    parser = argparse.ArgumentParser(
        description="Unified entrypoint for ECR lifecycle scripts",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Available scripts:
  apply_retention         - Decide and delete expired images in every repository
  apply_lifecycle_policy  - Submit the equivalent lifecycle policy document

Configuration:
  The tool uses config.yaml for default settings. You can also use environment variables:
  - ECR_REGION / AWS_DEFAULT_REGION: AWS region
  - ECR_REGISTRY_ID: Registry account id
  - RETENTION_DAYS: Age threshold in days
  - TAG_PREFIXES: Comma-separated protected tag prefixes
  - DRY_RUN: Report decisions without deleting

Examples:
  python main.py apply_retention --dry-run
  python main.py apply_retention --region eu-west-1 --retention-days 14 --force
  python main.py apply_lifecycle_policy --tag-prefixes main,release
  python main.py --config
""",
    )
    parser.add_argument("script", nargs="?", choices=sorted(script_paths), help="Script to run")
    parser.add_argument("--dry-run", action="store_true", help="Force dry-run mode for the script")
    parser.add_argument("--config", action="store_true", help="Print the effective configuration and exit")

    args, script_args = parser.parse_known_args(argv)

    if args.config:
        config_manager.print_config()
        return

    if not args.script:
        parser.print_help()
        print("\nScripts:")
        for name, description in script_descriptions.items():
            print(f"  {name:<24} {description}")
        sys.exit(1)

    run_script(script_paths[args.script], script_args, dry_run=args.dry_run)


if __name__ == "__main__":
    main()
