import asyncio
import sys
from pathlib import Path

from modload.modload_datatypes import OptionValidationError
from modload.modload_runtime import ModuleRunner
from modload.modload_serialize import load_options_file

USAGE = "usage: modload_cli.py MODULE [--options OPTIONS_FILE]"


def parse_args(argv: list[str]) -> tuple[str | None, str | None]:
    """Returns (module, options_file); module is None when usage is wrong."""
    module = None
    options_file = None
    i = 0
    while i < len(argv):
        arg = argv[i]
        if arg == "--options":
            if i + 1 >= len(argv):
                return None, None
            options_file = argv[i + 1]
            i += 2
            continue
        if arg.startswith("-") or module is not None:
            return None, None
        module = arg
        i += 1
    return module, options_file


async def run_module_file(module: str, options_file: str | None = None) -> int:
    """Evaluate a module and print its value; returns the process exit status."""
    options = None
    if options_file:
        try:
            options = load_options_file(options_file)
        except FileNotFoundError:
            print(f"Error: options file not found: {options_file}", file=sys.stderr)
            return 1
        except (ValueError, OptionValidationError) as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1

    # Bare paths are host references; URLs and file:// locators pass through as strings.
    identifier = module if "://" in module else Path(module).resolve()

    runner = ModuleRunner()
    result = await runner.run_module(identifier, options)
    if result.status == 'error':
        print(result.format_error(), file=sys.stderr)
        return 1
    if result.value is not None:
        print(repr(result.value))
    return 0


def main(argv: list[str] | None = None) -> int:
    module, options_file = parse_args(sys.argv[1:] if argv is None else argv)
    if module is None:
        print(USAGE, file=sys.stderr)
        return 2
    return asyncio.run(run_module_file(module, options_file))


if __name__ == "__main__":
    try:
        raise SystemExit(main())
    except KeyboardInterrupt:
        print("\nExiting.")
