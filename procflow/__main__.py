"""
CLI entry point for the procedure recovery tool.

Usage:
    python -m procflow <path_to_binary> [options]

Examples:
    python -m procflow code.bin --stats-only -v
    python -m procflow code.bin --base 0x10000 --entry 0x10040 -o output/
    python -m procflow code.bin --entry 0x0 --extra-entry 0x80 --extra-entry 0x120
"""

import argparse
import sys

from . import config
from .disasm import Disassembler
from .loader import parse_address


def main(argv=None):
    parser = argparse.ArgumentParser(
        prog="procflow",
        description="Procedure recovery tool - "
                    "Control-flow graph reconstruction for raw x86 code",
    )

    parser.add_argument(
        "binary_path",
        help="Path to the raw binary (flat code blob)",
    )
    parser.add_argument(
        "--entry",
        type=parse_address,
        default=None,
        help="Entry address of the procedure (default: the base address)",
    )
    parser.add_argument(
        "--extra-entry",
        dest="extra_entries",
        type=parse_address,
        action="append",
        default=[],
        help="Additional entry into the same procedure (repeatable)",
    )
    parser.add_argument(
        "--base",
        dest="base_address",
        type=parse_address,
        default=0,
        help="Virtual address of the first byte (default: 0)",
    )
    parser.add_argument(
        "--mode",
        type=int,
        choices=(32, 64),
        default=config.CS_MODE,
        help=f"x86 mode (default: {config.CS_MODE})",
    )
    parser.add_argument(
        "--name",
        default=None,
        help="Procedure name (default: func_<entry>)",
    )
    parser.add_argument(
        "-o", "--output",
        dest="output_dir",
        default=None,
        help="Output directory for JSON databases, graph and listing "
             f"(default: {config.DEFAULT_OUTPUT_DIR}/)",
    )
    parser.add_argument(
        "--stats-only",
        action="store_true",
        help="Print statistics only, don't write output files",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Verbose output with progress information",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Force re-analysis even if cache is valid",
    )

    args = parser.parse_args(argv)

    try:
        disassembler = Disassembler(
            binary_path=args.binary_path,
            entry=args.entry,
            extra_entries=args.extra_entries,
            base_address=args.base_address,
            mode=args.mode,
            name=args.name,
            output_dir=args.output_dir,
            stats_only=args.stats_only,
            verbose=args.verbose,
            force=args.force,
        )
        success = disassembler.run()
        sys.exit(0 if success else 1)

    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(130)
    except Exception as e:
        print(f"Unexpected error: {e}", file=sys.stderr)
        import traceback
        traceback.print_exc()
        sys.exit(2)


if __name__ == "__main__":
    main()
