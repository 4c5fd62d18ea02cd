from __future__ import annotations

import argparse
import logging
import sys
import time
from typing import BinaryIO, List, Optional

from streampack.constants import BEHAVIOR_NAMES, COPY_BUFSIZE, DETECT_BUDGET, Behavior
from streampack.errors import StreamPackError, UnableToDetect
from streampack.formats import behavior_name, detect_behavior, resolve_behavior_name
from streampack.packer import AutoPacker
from streampack.unpacker import AutoUnpacker


def _open_output(path: Optional[str]) -> BinaryIO:
    if path is None or path == "-":
        return sys.stdout.buffer
    return open(path, "wb")


def _open_input(path: Optional[str]) -> BinaryIO:
    if path is None or path == "-":
        return sys.stdin.buffer
    return open(path, "rb")


def _print_progress(done: int, total: int, emitted: int) -> None:
    pct = done * 100.0 / total if total else 100.0
    print(f" {pct:6.2f}% packed ({done}/{total} bytes read, {emitted} bytes emitted)", file=sys.stderr)


def cmd_pack(src: str, *, output: Optional[str] = None, fmt: str = "auto", progress: bool = False) -> bool:
    """Pack a directory tree into an archive stream.

    Args:
        src: Source directory.
        output: Destination file; stdout when None or "-".
        fmt: Format name ("auto", "tar", "tar.gz", ...). "auto" packs tar.gz.
        progress: Print progress lines to stderr while packing.
    """
    behavior = resolve_behavior_name(fmt)
    out = _open_output(output)
    emitted = 0
    last_report = 0.0
    t0 = time.time()
    try:
        with AutoPacker(src, behavior) as packer:
            while True:
                chunk = packer.read(COPY_BUFSIZE)
                if not chunk:
                    break
                out.write(chunk)
                emitted += len(chunk)
                now = time.time()
                if progress and now - last_report >= 0.5:
                    last_report = now
                    _print_progress(packer.bytes_complete(), packer.size(), emitted)
            out.flush()
            done = packer.bytes_complete()
            packed_as = packer.behavior
    finally:
        if out is not sys.stdout.buffer:
            out.close()
    dt = max(0.000001, time.time() - t0)
    mib = done / (1024.0 * 1024.0)
    print(
        f"Done: packed {mib:.2f} MiB as {behavior_name(packed_as)} ({emitted} bytes) in {dt:.1f}s; "
        f"{mib / dt:.2f} MiB/s",
        file=sys.stderr,
    )
    return True


def cmd_unpack(dest: str, *, source: Optional[str] = None, fmt: str = "auto") -> bool:
    """Unpack an archive stream into a directory.

    Args:
        dest: Destination directory (created as needed).
        source: Archive file; stdin when None or "-".
        fmt: Format name; "auto" detects from the first bytes.
    """
    behavior = resolve_behavior_name(fmt)
    src = _open_input(source)
    received = 0
    t0 = time.time()
    try:
        with AutoUnpacker(dest, behavior) as unpacker:
            while True:
                chunk = src.read(COPY_BUFSIZE)
                if not chunk:
                    break
                unpacker.write(chunk)
                received += len(chunk)
            detected = unpacker.detected_type
    finally:
        if src is not sys.stdin.buffer:
            src.close()
    dt = max(0.000001, time.time() - t0)
    print(
        f"Done: unpacked {received} bytes of {behavior_name(detected)} into {dest} in {dt:.1f}s",
        file=sys.stderr,
    )
    return True


def cmd_detect(source: Optional[str] = None) -> Behavior:
    """Print the container format of an archive file (or stdin)."""
    src = _open_input(source)
    try:
        prefix = src.read(DETECT_BUDGET)
    finally:
        if src is not sys.stdin.buffer:
            src.close()
    behavior = detect_behavior(prefix)
    if behavior == Behavior.AUTO:
        raise UnableToDetect(f"Stream ended after {len(prefix)} bytes before its type could be detected")
    print(behavior_name(behavior))
    return behavior


def main(argv: List[str] | None = None):
    ap = argparse.ArgumentParser(
        prog="streampack",
        description="Stream directory trees as tar / tar.gz archives and back",
    )
    ap.add_argument(
        "--log-level",
        default="warning",
        choices=["debug", "info", "warning", "error"],
        help="Logging verbosity on stderr (default: warning)",
    )
    sub = ap.add_subparsers(dest="cmd", required=True)
    formats = sorted(BEHAVIOR_NAMES)

    ap_pack = sub.add_parser("pack", help="Pack a directory into an archive stream")
    ap_pack.add_argument("src", help="Source directory")
    ap_pack.add_argument("-o", "--output", help="Output file (default: stdout)")
    ap_pack.add_argument("--format", default="auto", choices=formats, help="Archive format (auto packs tar.gz)")
    ap_pack.add_argument("--progress", action="store_true", help="Report progress on stderr")

    ap_unpack = sub.add_parser("unpack", help="Unpack an archive stream into a directory")
    ap_unpack.add_argument("dest", help="Destination directory")
    ap_unpack.add_argument("-i", "--input", help="Input file (default: stdin)")
    ap_unpack.add_argument("--format", default="auto", choices=formats, help="Archive format (default: detect)")

    ap_detect = sub.add_parser("detect", help="Print the detected archive format")
    ap_detect.add_argument("input", nargs="?", help="Input file (default: stdin)")

    args = ap.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level.upper()),
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    try:
        if args.cmd == "pack":
            cmd_pack(args.src, output=args.output, fmt=args.format, progress=args.progress)
        elif args.cmd == "unpack":
            cmd_unpack(args.dest, source=args.input, fmt=args.format)
        elif args.cmd == "detect":
            cmd_detect(args.input)
        else:
            raise RuntimeError("Unknown command")
    except (StreamPackError, OSError, RuntimeError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
