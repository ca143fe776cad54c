"""
Command-line interface for gitvault.

This module wires the vault operations to the user-facing commands:
- init
- add / remove
- list
- encrypt / decrypt (also run by the git hooks)
- install-hooks / uninstall-hooks
- version
- help
"""

from __future__ import annotations

import sys
import json
import getpass
import logging
import argparse
from pathlib import Path
from typing import Dict, List, Optional

from . import git
from .config import (
    BASE_NAME,
    CIPHER_AES_GCM,
    CIPHER_GPG,
    DEFAULT_LFS_THRESHOLD_BYTES,
    ENV_MODE,
    ENV_OP_TIMEOUT,
    ENV_PASSWORD,
    STORAGE_EXTERNAL,
    STORAGE_FILE,
    TOOL_VERSION,
    get_execution_mode,
    load_password_from_env,
)
from .context import RepoContext
from .errors import VaultError
from .hooks import HookAction, HookResult
from .operations import (
    DECRYPTED,
    ENCRYPTED,
    FAILED,
    SKIPPED,
    UNCHANGED,
    BatchResult,
    Vault,
)


# ---------------------------------------------------------------------------
# Color output helpers
# ---------------------------------------------------------------------------


class Colors:
    """ANSI color codes for terminal output."""
    RED = "\033[91m"
    GREEN = "\033[92m"
    YELLOW = "\033[93m"
    BLUE = "\033[94m"
    CYAN = "\033[96m"
    RESET = "\033[0m"
    BOLD = "\033[1m"


def colored(text: str, color: str) -> str:
    """Return colored text for terminal output."""
    return f"{color}{text}{Colors.RESET}"


def print_error(msg: str) -> None:
    """Print error message to stderr."""
    print(colored(f"✗ Error: {msg}", Colors.RED), file=sys.stderr)


def print_success(msg: str) -> None:
    """Print success message."""
    print(colored(f"✓ {msg}", Colors.GREEN))


def print_warning(msg: str) -> None:
    """Print warning message. Shown even with --quiet."""
    print(colored(f"⚠ Warning: {msg}", Colors.YELLOW))


def print_info(msg: str) -> None:
    """Print info message."""
    print(colored(f"ℹ {msg}", Colors.CYAN))


def ask_yes_no(question: str) -> bool:
    """Ask a yes/no question; anything but y/yes (or a closed stdin) is no."""
    try:
        response = input(colored(f"{question} [y/N] ", Colors.YELLOW))
    except EOFError:
        return False
    return response.strip().lower() in ["y", "yes"]


# ---------------------------------------------------------------------------
# CLI context
# ---------------------------------------------------------------------------


class CLIContext:
    """Shared context for CLI commands."""

    def __init__(self, workspace: str, verbose: bool, quiet: bool):
        self.workspace = Path(workspace)
        self.verbose = verbose
        self.quiet = quiet

        # Lazy-loaded
        self._repo: Optional[RepoContext] = None
        self._vault: Optional[Vault] = None

    @property
    def repo(self) -> RepoContext:
        """Discover the repository lazily."""
        if self._repo is None:
            self._repo = RepoContext.discover(self.workspace)
            self.log_verbose(f"Repository root: {self._repo.root}")
            self.log_verbose(f"Hooks directory: {self._repo.hooks_dir}")
        return self._repo

    @property
    def vault(self) -> Vault:
        """Load the vault lazily."""
        if self._vault is None:
            self._vault = Vault.open(self.repo)
        return self._vault

    def user_path(self, path: str) -> Path:
        """Resolve a path argument against the workspace, as the user typed it."""
        candidate = Path(path)
        return candidate if candidate.is_absolute() else (self.workspace / candidate).absolute()

    def log(self, msg: str) -> None:
        """Log message if not quiet."""
        if not self.quiet:
            print(msg)

    def log_verbose(self, msg: str) -> None:
        """Log message if verbose."""
        if self.verbose:
            print(colored(f"  → {msg}", Colors.BLUE))


def _report_hooks(ctx: CLIContext, results: List[HookResult]) -> None:
    for result in results:
        if result.action is HookAction.SKIPPED:
            print_warning(result.message)
        elif result.action is HookAction.APPENDED:
            ctx.log(f"  ✓ {result.name}: appended (backup: {result.backup})")
        else:
            ctx.log(f"  ✓ {result.name}: {result.action.value}")


def _report_batch(ctx: CLIContext, result: BatchResult, done_status: str) -> None:
    for outcome in result.outcomes:
        path = outcome.entry.path
        if outcome.status == done_status:
            line = f"  ✓ {path}"
            if outcome.message:
                line += f" ({outcome.message})"
            ctx.log(line)
        elif outcome.status == UNCHANGED:
            ctx.log_verbose(f"{path} unchanged")
        elif outcome.status == SKIPPED:
            print_warning(f"Skipped {path}: {outcome.message}")
        elif outcome.status == FAILED:
            print_warning(f"Failed {path}: {outcome.message}")

    summary = (
        f"{result.count(done_status)} {done_status}, {result.count(UNCHANGED)} unchanged, "
        f"{result.count(SKIPPED)} skipped, {result.count(FAILED)} failed"
    )
    if result.failed or result.skipped:
        print_warning(f"{result.action.capitalize()}: {summary}")
    elif result.count(done_status):
        if not ctx.quiet:
            print_success(f"{result.action.capitalize()}: {summary}")
    else:
        ctx.log_verbose(f"{result.action.capitalize()}: {summary}")


def _read_password(args: argparse.Namespace) -> Optional[str]:
    """
    Resolve the passphrase for ``add``.

    Order: --password, GV_PASSWORD, --generate, interactive prompt.
    None means "generate one".
    """

    if args.password:
        return args.password
    env_password = load_password_from_env()
    if env_password:
        return env_password
    if args.generate or not sys.stdin.isatty():
        return None

    first = getpass.getpass("Password (leave empty to generate one): ")
    if not first:
        return None
    if getpass.getpass("Repeat password: ") != first:
        raise VaultError("Passwords do not match")
    return first


# ---------------------------------------------------------------------------
# Command implementations
# ---------------------------------------------------------------------------


def cmd_init(ctx: CLIContext, args: argparse.Namespace) -> int:
    """
    Create the vault in the current repository.
    """
    repo = ctx.repo
    reconfigure = False
    if Vault.is_initialized(repo):
        if not args.force and not ask_yes_no("A vault already exists. Reconfigure it?"):
            ctx.log("Aborted")
            return 0
        reconfigure = True

    storage_mode = STORAGE_EXTERNAL if args.storage == "external" else STORAGE_FILE
    threshold = DEFAULT_LFS_THRESHOLD_BYTES
    if args.lfs_threshold_mb is not None:
        threshold = int(args.lfs_threshold_mb * 1024 * 1024)

    vault, result = Vault.initialize(
        repo,
        storage_mode=storage_mode,
        namespace=args.namespace,
        cipher_name=args.cipher,
        lfs_threshold_bytes=threshold,
        install_hooks=not args.no_hooks,
        reconfigure=reconfigure,
    )

    ctx.log(colored("Vault initialized" if not result.reconfigured else "Vault reconfigured", Colors.BOLD))
    ctx.log(f"  Location:      {repo.vault_dir}")
    ctx.log(f"  Storage mode:  {result.config.storage_mode}")
    if result.config.external_namespace:
        ctx.log(f"  1Password:     {result.config.external_namespace}")
    ctx.log(f"  Cipher:        {result.config.cipher}")
    ctx.log(f"  LFS threshold: {result.config.lfs_threshold_bytes} bytes")
    if result.hooks:
        ctx.log("")
        ctx.log("Hooks:")
        _report_hooks(ctx, result.hooks)
    return 0


def cmd_add(ctx: CLIContext, args: argparse.Namespace) -> int:
    """
    Start managing a file or directory.
    """
    repo = ctx.repo
    if not Vault.is_initialized(repo):
        if not args.yes and not ask_yes_no("No vault in this repository. Initialize one now?"):
            print_error("Vault not initialized. Run 'gv init' first.")
            return 1
        vault, init_result = Vault.initialize(repo)
        ctx._vault = vault
        print_info(f"Initialized vault in {repo.vault_dir}")
        _report_hooks(ctx, init_result.hooks)

    result = ctx.vault.add(ctx.user_path(args.path), passphrase=_read_password(args))

    print_success(f"Added {result.entry.path} (hash: {result.entry.hash})")
    ctx.log(f"  Archive: {result.archive_path.relative_to(repo.root)}")
    ctx.log_verbose(f"Archive size: {result.lfs.size} bytes (LFS threshold {result.lfs.threshold})")
    if result.lfs.tracked:
        print_info(f"Archive tracked with Git LFS ({result.lfs.pattern})")
    elif result.lfs.size >= result.lfs.threshold > 0:
        print_warning(result.lfs.reason)
    if result.generated_passphrase:
        print_info("A random password was generated and stored for this path")
    for warning in result.warnings:
        print_warning(warning)
    return 0


def cmd_remove(ctx: CLIContext, args: argparse.Namespace) -> int:
    """
    Stop managing a path. The plaintext in the working tree is kept.
    """
    result = ctx.vault.remove(ctx.user_path(args.path), prune_ignore=args.prune_ignore)

    print_success(f"Removed {result.entry.path} (hash: {result.entry.hash})")
    ctx.log(f"  Secret kept as: {result.entry.secret_ref.path or result.entry.secret_ref.item_id}")
    if result.ignore_pruned:
        ctx.log(f"  Pruned /{result.entry.path} from {git.GITIGNORE}")
    for warning in result.warnings:
        print_warning(warning)
    return 0


def cmd_list(ctx: CLIContext, args: argparse.Namespace) -> int:
    """
    Show every managed path and its health.
    """
    vault = ctx.vault
    rows = vault.list_entries(include_removed=not args.active)
    lfs_available = git.lfs_available()

    if args.json:
        output = {
            "storage_mode": vault.config.storage_mode,
            "external_namespace": vault.config.external_namespace,
            "cipher": vault.config.cipher,
            "lfs_available": lfs_available,
            "lfs_threshold_bytes": vault.config.lfs_threshold_bytes,
            "managed_paths": [
                {**row.entry.to_dict(), "archive_size": row.archive_size, "health": row.health}
                for row in rows
            ],
        }
        print(json.dumps(output, indent=2))
        return 0

    ctx.log(colored("Vault Status", Colors.BOLD))
    ctx.log("")
    ctx.log(f"  Storage mode:  {vault.config.storage_mode}")
    if vault.config.external_namespace:
        ctx.log(f"  1Password:     {vault.config.external_namespace}")
    ctx.log(f"  Cipher:        {vault.config.cipher}")
    ctx.log(f"  Git LFS:       {'available' if lfs_available else 'not available'}"
            f" (threshold {vault.config.lfs_threshold_bytes} bytes)")
    ctx.log("")

    if not rows:
        ctx.log(colored("No managed paths", Colors.YELLOW))
        return 0

    health_colors: Dict[str, str] = {"OK": Colors.GREEN, "Removed": Colors.BLUE}
    ctx.log(f"  {'HASH':<10}{'STATUS':<9}{'BACKEND':<17}{'SIZE':>10}  {'HEALTH':<16}PATH")
    for row in rows:
        size = "-" if row.archive_size is None else str(row.archive_size)
        health = colored(f"{row.health:<16}", health_colors.get(row.health, Colors.RED))
        ctx.log(f"  {row.entry.hash:<10}{row.entry.status:<9}{row.entry.backend:<17}{size:>10}  {health}{row.entry.path}")
    return 0


def cmd_encrypt(ctx: CLIContext, args: argparse.Namespace) -> int:
    """
    Re-seal managed paths whose content changed (pre-commit hook).
    """
    if args.write and args.password is None:
        print_error("--write requires --password")
        return 1

    confirm = (lambda question: True) if args.yes else ask_yes_no
    path = ctx.user_path(args.path) if args.path else None
    result = ctx.vault.encrypt_all(path, password=args.password, write=args.write, confirm=confirm)
    _report_batch(ctx, result, ENCRYPTED)
    return 0


def cmd_decrypt(ctx: CLIContext, args: argparse.Namespace) -> int:
    """
    Restore managed paths from their archives (post-checkout / post-merge hooks).
    """
    if args.write and args.password is None:
        print_error("--write requires --password")
        return 1

    confirm = (lambda question: True) if args.yes else ask_yes_no
    path = ctx.user_path(args.path) if args.path else None
    result = ctx.vault.decrypt_all(path, password=args.password, write=args.write, confirm=confirm)
    _report_batch(ctx, result, DECRYPTED)
    return 0


def cmd_install_hooks(ctx: CLIContext, args: argparse.Namespace) -> int:
    ctx.log(f"Installing hooks into {ctx.repo.hooks_dir}")
    _report_hooks(ctx, ctx.vault.install_hooks())
    return 0


def cmd_uninstall_hooks(ctx: CLIContext, args: argparse.Namespace) -> int:
    ctx.log(f"Removing hooks from {ctx.repo.hooks_dir}")
    _report_hooks(ctx, ctx.vault.uninstall_hooks())
    return 0


def cmd_version(ctx: CLIContext, args: argparse.Namespace) -> int:
    print(f"{BASE_NAME} {TOOL_VERSION}")
    return 0


def cmd_help(ctx: Optional[CLIContext], args: argparse.Namespace) -> int:
    """
    Show help message.
    """
    help_text = f"""
{colored('gv', Colors.BOLD)} - keep encrypted files and directories inside a Git repository

{colored('USAGE:', Colors.CYAN)}
  gv [options] <command> [args]

{colored('DESCRIPTION:', Colors.CYAN)}
  gv seals selected paths into encrypted archives under .vault/storage,
  keeps the plaintext out of Git through .gitignore, and uses Git hooks to
  re-encrypt before each commit and decrypt after checkout and merge.

  Each path has its own password, kept either in a 0600 file beside the
  vault config or in 1Password.

{colored('COMMANDS:', Colors.CYAN)}
  init              Create the vault (storage mode, cipher, hooks)
  add PATH          Start managing a file or directory
  remove PATH       Stop managing a path (its password is kept, marked removed)
  list              Show managed paths and their health
  encrypt [PATH]    Re-encrypt changed paths (run by pre-commit)
  decrypt [PATH]    Restore paths from their archives (post-checkout, post-merge)
  install-hooks     Install the Git hooks
  uninstall-hooks   Remove the Git hooks
  version           Show the version
  help              Show this help message

{colored('GLOBAL OPTIONS:', Colors.CYAN)}
  -C, --workspace PATH      Run as if started in PATH (default: .)
  -v, --verbose             Enable verbose output
  -q, --quiet               Suppress non-error output
  -h, --help                Show this help message and exit

{colored('ENVIRONMENT:', Colors.CYAN)}
  {ENV_PASSWORD:<24}  Password used by 'add' instead of prompting
  {ENV_OP_TIMEOUT:<24}  Timeout in seconds for each 1Password CLI call
  {ENV_MODE:<24}  Optional execution mode (e.g. dev, prod)

{colored('EXAMPLES:', Colors.CYAN)}
  gv init
  gv init --storage external --namespace Work
  gv add secrets/db.env
  gv add config/keys/ --password "correct horse"
  gv list --json
  gv decrypt secrets/db.env --password "old password" --write
  gv encrypt secrets/db.env --password "new password" --write
  gv remove secrets/db.env --prune-ignore

{colored('VERSION:', Colors.CYAN)}
  {TOOL_VERSION}
"""
    print(help_text)
    return 0


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog=BASE_NAME,
        description="Keep encrypted files and directories inside a Git repository",
        add_help=False,
    )

    # Global options
    parser.add_argument(
        "-C", "--workspace",
        default=".",
        help="Run as if started in this directory",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose output",
    )
    parser.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Suppress non-error output",
    )
    parser.add_argument(
        "-h", "--help",
        action="store_true",
        help="Show help message",
    )

    # Output flags are also accepted after the subcommand (the hooks run
    # "gv encrypt --quiet"); SUPPRESS keeps an absent flag from resetting
    # the global value.
    output = argparse.ArgumentParser(add_help=False)
    output.add_argument("-v", "--verbose", action="store_true", default=argparse.SUPPRESS, help="Enable verbose output")
    output.add_argument("-q", "--quiet", action="store_true", default=argparse.SUPPRESS, help="Suppress non-error output")

    # Subcommands
    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    # init command
    init_parser = subparsers.add_parser("init", help="Create the vault", parents=[output])
    init_parser.add_argument("--storage", choices=["file", "external"], default="file", help="Where passwords are kept")
    init_parser.add_argument("--namespace", help="1Password vault to use with --storage external")
    init_parser.add_argument("--cipher", choices=[CIPHER_AES_GCM, CIPHER_GPG], help="Archive cipher (default: keep the current one, else aes-gcm)")
    init_parser.add_argument("--lfs-threshold-mb", type=float, help="Archive size that triggers Git LFS (0 disables)")
    init_parser.add_argument("--no-hooks", action="store_true", help="Do not install Git hooks")
    init_parser.add_argument("--force", action="store_true", help="Reconfigure an existing vault without asking")

    # add command
    add_parser = subparsers.add_parser("add", help="Start managing a path", parents=[output])
    add_parser.add_argument("path", help="File or directory to manage")
    add_parser.add_argument("--password", help="Password for this path")
    add_parser.add_argument("--generate", action="store_true", help="Generate a random password")
    add_parser.add_argument("-y", "--yes", action="store_true", help="Initialize the vault without asking")

    # remove command
    remove_parser = subparsers.add_parser("remove", help="Stop managing a path", parents=[output])
    remove_parser.add_argument("path", help="Managed file or directory")
    remove_parser.add_argument("--prune-ignore", action="store_true", help=f"Also drop the path from {git.GITIGNORE}")

    # list command
    list_parser = subparsers.add_parser("list", help="Show managed paths", parents=[output])
    list_parser.add_argument("--json", action="store_true", help="Output as JSON")
    list_parser.add_argument("--active", action="store_true", help="Hide removed entries")

    # encrypt command
    encrypt_parser = subparsers.add_parser("encrypt", help="Re-encrypt changed paths", parents=[output])
    encrypt_parser.add_argument("path", nargs="?", help="Only this managed path")
    encrypt_parser.add_argument("--password", help="Encrypt with this password instead of the stored one")
    encrypt_parser.add_argument("--write", action="store_true", help="Store --password after a successful encrypt")
    encrypt_parser.add_argument("-y", "--yes", action="store_true", help="Overwrite stored passwords without asking")

    # decrypt command
    decrypt_parser = subparsers.add_parser("decrypt", help="Restore paths from their archives", parents=[output])
    decrypt_parser.add_argument("path", nargs="?", help="Only this managed path")
    decrypt_parser.add_argument("--password", help="Decrypt with this password instead of the stored one")
    decrypt_parser.add_argument("--write", action="store_true", help="Store --password after a successful decrypt")
    decrypt_parser.add_argument("-y", "--yes", action="store_true", help="Overwrite stored passwords without asking")

    subparsers.add_parser("install-hooks", help="Install the Git hooks", parents=[output])
    subparsers.add_parser("uninstall-hooks", help="Remove the Git hooks", parents=[output])
    subparsers.add_parser("version", help="Show the version", parents=[output])
    subparsers.add_parser("help", help="Show help message", parents=[output])

    return parser


# ---------------------------------------------------------------------------
# Main entry point
# ---------------------------------------------------------------------------


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    # Show help if requested or no command
    if args.help or not args.command:
        return cmd_help(None, args)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.ERROR,
        format="%(levelname)s %(name)s: %(message)s",
    )

    ctx = CLIContext(
        workspace=args.workspace,
        verbose=args.verbose,
        quiet=args.quiet,
    )

    # Dispatch to command
    commands = {
        "init": cmd_init,
        "add": cmd_add,
        "remove": cmd_remove,
        "list": cmd_list,
        "encrypt": cmd_encrypt,
        "decrypt": cmd_decrypt,
        "install-hooks": cmd_install_hooks,
        "uninstall-hooks": cmd_uninstall_hooks,
        "version": cmd_version,
        "help": cmd_help,
    }

    cmd_func = commands.get(args.command)
    if not cmd_func:
        print_error(f"Unknown command: {args.command}")
        return 1

    try:
        return cmd_func(ctx, args)
    except KeyboardInterrupt:
        print_error("Interrupted")
        return 130
    except VaultError as e:
        print_error(str(e))
        if e.rolled_back:
            print_info(f"Rolled back: {', '.join(e.rolled_back)}")
        return 1
    except Exception as e:
        print_error(f"Unexpected error: {e}")
        if args.verbose or get_execution_mode() == "dev":
            import traceback
            traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
