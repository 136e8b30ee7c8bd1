import logging
import sys
from argparse import ArgumentParser, Namespace
from pathlib import Path

from copyprop import codegen, opt, parser
from copyprop.ir.cfg import MalformedIRError
from copyprop.ir.printer import format_module
from copyprop.parser import IRParseError
from copyprop.source import Source

logger = logging.getLogger("copyprop")

emit_options = [
    ("llvm_ir", ".ll"),
    ("llvm_bc", ".bc"),
    ("object", ".obj" if sys.platform == "win32" else ".o"),
    ("asm", ".s"),
]


def create_source(file: str):
    path = Path(file)
    return Source(path.name, file, path.read_text())


def parse_args(argv: list[str] | None = None) -> Namespace:
    parser = ArgumentParser(
        prog="copyprop",
        description="Propagate copies through memory in a textual LLVM IR module.",
    )
    parser.add_argument("file")
    parser.add_argument(
        "-o", "--output", help="write the optimized IR here instead of stdout"
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="print the function after each pass and the analysis tables to stderr",
    )
    parser.add_argument(
        "--local-only", action="store_true", help="skip the global pass"
    )
    parser.add_argument(
        "--prune-unreachable",
        action="store_true",
        help="delete blocks unreachable from the entry instead of rejecting them",
    )

    for option, _ in emit_options:
        parser.add_argument(
            f"--{option.replace('_', '-')}",
            nargs="?",
            const="file",
            default=None,
        )

    parser.add_argument("--opt", type=int, choices=[0, 1, 2, 3], default=0)
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
    )
    args = parser.parse_args(argv)
    file = Path(args.file)
    for option, suffix in emit_options:
        val = getattr(args, option)
        if val == "file":
            path = file.with_suffix(suffix)
            if path == file:
                path = file.with_suffix(".opt" + suffix)
            setattr(args, option, str(path))
        elif val is not None and Path(val).suffix != suffix:
            logger.warning("%s does not end with %s", val, suffix)
    return args


def wants_codegen(args: Namespace) -> bool:
    return any(getattr(args, option) is not None for option, _ in emit_options)


def report(message: str) -> int:
    print(f"copyprop: error: {message}", file=sys.stderr)
    return 1


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=args.log_level, format="%(name)s: %(levelname)s: %(message)s"
    )
    try:
        source = create_source(args.file)
    except OSError as e:
        return report(f"cannot read {args.file}: {e.strerror}")

    try:
        module = parser.parse(source.text)
        results = opt.optimize(
            module,
            verbose=args.verbose,
            stream=sys.stderr,
            local_only=args.local_only,
            prune_unreachable=args.prune_unreachable,
        )
    except IRParseError as e:
        if e.span is not None:
            print(source.get_lines(e.span), file=sys.stderr)
        return report(f"{source.name}:{e}")
    except MalformedIRError as e:
        return report(str(e))

    for name, result in results.items():
        logger.info("@%s: %s", name, "changed" if result.changed else "unchanged")

    text = format_module(module)
    if args.output is None:
        sys.stdout.write(text)
    else:
        Path(args.output).write_text(text)

    if wants_codegen(args):
        codegen.emit_files(
            module,
            llvm_ir_path=args.llvm_ir,
            llvm_bc_path=args.llvm_bc,
            object_path=args.object,
            asm_path=args.asm,
            opt=args.opt,
        )
    return 0


if __name__ == "__main__":
    sys.exit(main())
