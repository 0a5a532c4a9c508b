"""
fsbatch CLI - run operation batches against a sandboxed file store.

Provides subcommands:
- fsbatch run: Execute a JSON batch file
- fsbatch version: Display version information
"""

import argparse
import asyncio
import base64
import dataclasses
import json
import sys
from pathlib import Path
from typing import Optional

from fsbatch import config, configure_logging
from fsbatch.batch import BatchExecutor, Command, Operation
from fsbatch.errors import StorageError
from fsbatch.session import Session
from fsbatch.storage.backend import FileObject, StorageProvider
from fsbatch.storage.local import LocalStorage
from fsbatch.transport import HttpTransport


def get_version() -> str:
    """Get the package version."""
    try:
        from importlib.metadata import version

        return version("fsbatch")
    except Exception:
        return "0.1.0"


def cmd_version(args):
    """Handle the 'version' subcommand."""
    print(f"fsbatch version {get_version()}")
    print(f"Python {sys.version}")


def _create_storage(args) -> StorageProvider:
    storage_type = getattr(args, "storage", None) or config.get_storage_type()

    if storage_type == "local":
        if getattr(args, "data_dir", None):
            data_dir = Path(args.data_dir).expanduser().resolve()
        else:
            data_dir = config.get_default_data_dir()
        return LocalStorage(data_dir)

    if storage_type == "s3":
        from fsbatch.storage.s3 import S3Storage

        s3_config = config.get_s3_config()
        bucket = getattr(args, "s3_bucket", None) or s3_config["bucket"]
        if not bucket:
            print("Error: --s3-bucket or FSBATCH_S3_BUCKET is required for S3 storage")
            sys.exit(1)

        return S3Storage(
            bucket=bucket,
            region=getattr(args, "s3_region", None) or s3_config["region"],
            prefix=getattr(args, "s3_prefix", None) or s3_config["prefix"],
            endpoint_url=getattr(args, "s3_endpoint", None) or s3_config["endpoint_url"],
        )

    print(f"Error: Unknown storage type: {storage_type}")
    sys.exit(1)


def load_batch(batch_file: Path) -> list[Operation]:
    try:
        items = json.loads(batch_file.read_text())
    except (OSError, json.JSONDecodeError) as e:
        raise ValueError(f"Could not read batch file {batch_file}: {e}") from e
    if not isinstance(items, list):
        raise ValueError("Batch file must contain a JSON list of operations")

    operations = []
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            raise ValueError(f"Operation {index} must be a JSON object")
        try:
            operations.append(Operation.from_dict(item))
        except (TypeError, ValueError) as e:
            raise ValueError(f"Operation {index}: {e}") from e
    return operations


def _format_read_data(data) -> object:
    if isinstance(data, str):
        return data
    if isinstance(data, bytes):
        return base64.b64encode(data).decode("ascii")
    if isinstance(data, FileObject):
        return {"name": data.name, "size": data.size}
    return None


def summarize_reads(operations: list[Operation]) -> list[dict]:
    reads = []
    for index, op in enumerate(operations):
        if op.cmd != Command.READ or op.result.type is None:
            continue
        reads.append(
            {
                "step": index,
                "type": op.result.type.value,
                "success": op.result.success,
                "data": _format_read_data(op.result.data) if op.result.success else None,
            }
        )
    return reads


def _with_step_reporting(operations: list[Operation]) -> list[Operation]:
    def reporter(index: int, op: Operation):
        def report(result: bool) -> None:
            status = "ok" if result else "FAILED"
            suffix = " (forced)" if op.force and not result else ""
            print(f"[{status}] {index}: {op.cmd}{suffix}")

        return report

    return [
        dataclasses.replace(op, callback=reporter(index, op))
        for index, op in enumerate(operations)
    ]


async def run_batch(
    storage: StorageProvider,
    operations: list[Operation],
    persistent: bool,
    quota_bytes: int,
    fetch_timeout: Optional[float] = None,
) -> bool:
    validate = getattr(storage, "validate_connection", None)
    if validate is not None:
        await validate()

    try:
        try:
            session = await Session.connect(
                storage,
                persistent=persistent,
                quota_bytes=quota_bytes,
                transport=HttpTransport(timeout_seconds=fetch_timeout),
            )
        except StorageError as e:
            print(f"Error: Could not open storage: {e}")
            return False
        return await BatchExecutor(session).run(operations)
    finally:
        await storage.close()


def cmd_run(args):
    """Handle the 'run' subcommand."""
    configure_logging(args.log_level or config.get_log_level())

    try:
        operations = load_batch(Path(args.batch_file))
    except ValueError as e:
        print(f"Error: {e}")
        sys.exit(1)

    storage = _create_storage(args)
    quota_bytes = args.quota_bytes or config.get_quota_bytes()
    reported = _with_step_reporting(operations)

    result = asyncio.run(
        run_batch(
            storage,
            reported,
            persistent=not args.temporary,
            quota_bytes=quota_bytes,
            fetch_timeout=config.get_fetch_timeout(),
        )
    )

    reads = summarize_reads(reported)
    if reads:
        print(json.dumps(reads, indent=2))
    print(f"done: {str(result).lower()}")
    sys.exit(0 if result else 1)


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="fsbatch",
        description="fsbatch - batched operations on a sandboxed, quota-limited file store",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    subparsers = parser.add_subparsers(
        title="commands",
        description="Available commands",
        dest="command",
        required=True,
    )

    # 'run' subcommand
    run_parser = subparsers.add_parser(
        "run",
        help="Run a JSON batch file",
        description="Run a JSON list of operations against the store, in order",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  fsbatch run batch.json                         # Persistent local store in ~/.fsbatch
  fsbatch run batch.json --temporary             # Scratch store, removed afterwards
  fsbatch run batch.json --quota-bytes 1048576   # 1 MiB quota
  fsbatch run batch.json --storage=s3 --s3-bucket=mybucket
  fsbatch run batch.json --storage=s3 --s3-bucket=test --s3-endpoint=http://localhost:4566  # LocalStack

Batch file:
  [{"cmd": "mkdir", "name": "docs", "force": true},
   {"cmd": "chdir", "name": "docs"},
   {"cmd": "open", "name": "a.txt", "create": true},
   {"cmd": "write", "data": "hello"},
   {"cmd": "read", "type": "string"}]
        """,
    )
    run_parser.add_argument("batch_file", type=str, help="Path to the JSON batch file")
    run_parser.add_argument(
        "--data-dir",
        type=str,
        default=None,
        help="Data directory for local storage (default: ~/.fsbatch)",
    )
    run_parser.add_argument(
        "--temporary",
        action="store_true",
        help="Use a temporary store that is removed after the run",
    )
    run_parser.add_argument(
        "--quota-bytes",
        type=int,
        default=None,
        help=f"Storage quota in bytes (default: {config.DEFAULT_QUOTA_BYTES})",
    )
    run_parser.add_argument(
        "--storage",
        type=str,
        default=None,
        choices=list(config.STORAGE_TYPES),
        help="Storage backend type (default: local)",
    )
    run_parser.add_argument(
        "--s3-bucket",
        type=str,
        default=None,
        help="S3 bucket name (required when --storage=s3)",
    )
    run_parser.add_argument(
        "--s3-region",
        type=str,
        default=None,
        help=f"S3 region (default: {config.DEFAULT_S3_REGION})",
    )
    run_parser.add_argument(
        "--s3-prefix",
        type=str,
        default=None,
        help=f"S3 key prefix (default: {config.DEFAULT_S3_PREFIX})",
    )
    run_parser.add_argument(
        "--s3-endpoint",
        type=str,
        default=None,
        help="S3 endpoint URL (for S3-compatible services like LocalStack)",
    )
    run_parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        help=f"Log level (default: {config.DEFAULT_LOG_LEVEL})",
    )
    run_parser.set_defaults(func=cmd_run)

    # 'version' subcommand
    version_parser = subparsers.add_parser(
        "version",
        help="Display version information",
        description="Display fsbatch version and Python version",
    )
    version_parser.set_defaults(func=cmd_version)

    args = parser.parse_args()
    args.func(args)


if __name__ == "__main__":
    main()
