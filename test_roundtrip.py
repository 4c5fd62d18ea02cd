from __future__ import annotations

import io
import os
import shutil
import stat
import tarfile
import tempfile
import unittest
from pathlib import Path
from typing import Dict, Tuple

from streampack import AutoPacker, AutoUnpacker, Behavior, StreamState
from streampack.errors import ClosedBridge, IOFailure, NotInitialized


def _build_fixture_tree(root: Path) -> Dict[str, Tuple[str, bytes]]:
    files: Dict[str, Tuple[str, bytes]] = {}
    (root / "docs").mkdir()
    (root / "docs" / "notes").mkdir()
    (root / "empty_dir").mkdir()
    content = b"hello world\n" * 20
    (root / "docs" / "readme.txt").write_bytes(content)
    os.chmod(root / "docs" / "readme.txt", 0o644)
    files["docs/readme.txt"] = ("file", content)

    bin_data = os.urandom(70000)
    (root / "docs" / "notes" / "binary.bin").write_bytes(bin_data)
    os.chmod(root / "docs" / "notes" / "binary.bin", 0o600)
    files["docs/notes/binary.bin"] = ("file", bin_data)

    (root / "docs" / "notes" / "empty.txt").write_bytes(b"")
    files["docs/notes/empty.txt"] = ("file", b"")

    script = b"#!/bin/sh\necho hi\n"
    (root / "run.sh").write_bytes(script)
    os.chmod(root / "run.sh", 0o755)
    files["run.sh"] = ("file", script)

    os.symlink("notes", root / "docs" / "ln_notes")
    files["docs/ln_notes"] = ("symlink", b"notes")
    os.symlink("../run.sh", root / "docs" / "ln_run")
    files["docs/ln_run"] = ("symlink", b"../run.sh")
    return files


def _compare_trees(test: unittest.TestCase, src: Path, dst: Path):
    for root_src, dirs_src, files_src in os.walk(src):
        rel = os.path.relpath(root_src, src)
        root_dst = os.path.join(dst, rel) if rel != "." else str(dst)
        test.assertTrue(os.path.isdir(root_dst), f"Missing directory: {root_dst}")

        expected_dirs = sorted(d for d in dirs_src if not os.path.islink(os.path.join(root_src, d)))
        dirs_dst = sorted(
            d for d in os.listdir(root_dst)
            if os.path.isdir(os.path.join(root_dst, d)) and not os.path.islink(os.path.join(root_dst, d))
        )
        test.assertEqual(expected_dirs, dirs_dst, f"Directory mismatch under {root_src}")

        for name in sorted(files_src) + sorted(d for d in dirs_src if os.path.islink(os.path.join(root_src, d))):
            src_path = os.path.join(root_src, name)
            dst_path = os.path.join(root_dst, name)
            if os.path.islink(src_path):
                test.assertTrue(os.path.islink(dst_path), f"Expected symlink at {dst_path}")
                test.assertEqual(os.readlink(src_path), os.readlink(dst_path))
                continue
            with open(src_path, "rb") as sf, open(dst_path, "rb") as df:
                test.assertEqual(sf.read(), df.read(), f"File contents differ: {dst_path}")
            test.assertEqual(
                stat.S_IMODE(os.lstat(src_path).st_mode),
                stat.S_IMODE(os.lstat(dst_path).st_mode),
                f"Mode differs: {dst_path}",
            )


def _pack_bytes(src: Path, behavior: Behavior = Behavior.AUTO, chunk: int = 4096) -> bytes:
    out = io.BytesIO()
    with AutoPacker(str(src), behavior) as packer:
        while True:
            data = packer.read(chunk)
            if not data:
                break
            out.write(data)
    return out.getvalue()


def _feed(unpacker: AutoUnpacker, data: bytes, chunk: int = 777) -> None:
    for i in range(0, len(data), chunk):
        unpacker.write(data[i:i + chunk])
    unpacker.close()


class RoundTripTests(unittest.TestCase):
    def run_with_tmpdir(self, func):
        with tempfile.TemporaryDirectory() as tmp:
            func(Path(tmp))

    def test_auto_packs_gzip_and_round_trips(self):
        def scenario(tmp: Path):
            src = tmp / "src"
            src.mkdir()
            _build_fixture_tree(src)
            data = _pack_bytes(src)
            self.assertEqual(b"\x1f\x8b", data[:2])

            dest = tmp / "dest"
            unpacker = AutoUnpacker(str(dest))
            _feed(unpacker, data)
            self.assertEqual(Behavior.TAR_GZ, unpacker.detected_type)
            self.assertEqual(StreamState.CONFIGURED, unpacker.state)
            self.assertIsNone(unpacker.error())
            _compare_trees(self, src, dest)
            self.assertTrue((dest / "empty_dir").is_dir())

        self.run_with_tmpdir(scenario)

    def test_plain_tar_round_trip(self):
        def scenario(tmp: Path):
            src = tmp / "src"
            src.mkdir()
            _build_fixture_tree(src)
            data = _pack_bytes(src, Behavior.TAR)
            self.assertEqual(b"ustar", data[257:262])

            dest = tmp / "dest"
            unpacker = AutoUnpacker(str(dest))
            _feed(unpacker, data, chunk=100)
            self.assertEqual(Behavior.TAR, unpacker.detected_type)
            _compare_trees(self, src, dest)

        self.run_with_tmpdir(scenario)

    def test_direct_stream_copy(self):
        def scenario(tmp: Path):
            src = tmp / "src"
            src.mkdir()
            _build_fixture_tree(src)
            dest = tmp / "dest"
            with AutoPacker(str(src), bridge_capacity=1024) as packer:
                unpacker = AutoUnpacker(str(dest), bridge_capacity=1024)
                shutil.copyfileobj(packer, unpacker, 3000)
                unpacker.close()
            _compare_trees(self, src, dest)

        self.run_with_tmpdir(scenario)

    def test_explicit_behavior_skips_detection(self):
        def scenario(tmp: Path):
            src = tmp / "src"
            src.mkdir()
            _build_fixture_tree(src)
            data = _pack_bytes(src, Behavior.TAR_GZ)
            dest = tmp / "dest"
            unpacker = AutoUnpacker(str(dest), Behavior.TAR_GZ)
            self.assertEqual(Behavior.TAR_GZ, unpacker.detected_type)
            # A single byte would never be enough for detection
            unpacker.write(data[:1])
            self.assertEqual(StreamState.CONFIGURED, unpacker.state)
            _feed(unpacker, data[1:])
            _compare_trees(self, src, dest)

        self.run_with_tmpdir(scenario)

    def test_hard_links_round_trip(self):
        def scenario(tmp: Path):
            src = tmp / "src"
            src.mkdir()
            (src / "a.txt").write_bytes(b"shared contents")
            os.link(src / "a.txt", src / "b.txt")
            data = _pack_bytes(src, Behavior.TAR)
            with tarfile.open(fileobj=io.BytesIO(data), mode="r:") as tf:
                self.assertTrue(tf.getmember("b.txt").islnk())
            dest = tmp / "dest"
            _feed(AutoUnpacker(str(dest)), data)
            self.assertEqual(b"shared contents", (dest / "b.txt").read_bytes())
            self.assertEqual(os.stat(dest / "a.txt").st_ino, os.stat(dest / "b.txt").st_ino)

        self.run_with_tmpdir(scenario)

    def test_trailing_bytes_after_archive_are_accepted(self):
        def scenario(tmp: Path):
            src = tmp / "src"
            src.mkdir()
            (src / "f.txt").write_bytes(b"x" * 10)
            for behavior in (Behavior.TAR, Behavior.TAR_GZ):
                data = _pack_bytes(src, behavior)
                dest = tmp / f"dest-{behavior.name}"
                unpacker = AutoUnpacker(str(dest))
                unpacker.write(data)
                for _ in range(8):
                    self.assertEqual(4096, unpacker.write(b"\x00" * 4096))
                unpacker.close()
                self.assertEqual(b"x" * 10, (dest / "f.txt").read_bytes())

        self.run_with_tmpdir(scenario)

    def test_existing_files_are_truncated(self):
        def scenario(tmp: Path):
            src = tmp / "src"
            src.mkdir()
            (src / "f.txt").write_bytes(b"short")
            dest = tmp / "dest"
            dest.mkdir()
            (dest / "f.txt").write_bytes(b"a much longer previous content")
            _feed(AutoUnpacker(str(dest)), _pack_bytes(src))
            self.assertEqual(b"short", (dest / "f.txt").read_bytes())

        self.run_with_tmpdir(scenario)


class InteropTests(unittest.TestCase):
    def test_stdlib_reads_packed_stream(self):
        with tempfile.TemporaryDirectory() as tmp:
            src = Path(tmp) / "src"
            src.mkdir()
            files = _build_fixture_tree(src)
            data = _pack_bytes(src)
            with tarfile.open(fileobj=io.BytesIO(data), mode="r:gz") as tf:
                names = set(tf.getnames())
                for name, (kind, payload) in files.items():
                    self.assertIn(name, names)
                    member = tf.getmember(name)
                    if kind == "file":
                        self.assertTrue(member.isfile())
                        self.assertEqual(payload, tf.extractfile(member).read())
                    else:
                        self.assertTrue(member.issym())
                        self.assertEqual(payload.decode(), member.linkname)
                self.assertIn("docs/notes", names)
                # Names are relative to the source root
                self.assertFalse(any(n.startswith(("/", "src")) for n in names))

    def test_unpacks_stdlib_archive(self):
        with tempfile.TemporaryDirectory() as tmp:
            src = Path(tmp) / "src"
            src.mkdir()
            _build_fixture_tree(src)
            buf = io.BytesIO()
            with tarfile.open(fileobj=buf, mode="w:gz") as tf:
                for entry in sorted(os.listdir(src)):
                    tf.add(str(src / entry), arcname=entry)
            dest = Path(tmp) / "dest"
            _feed(AutoUnpacker(str(dest)), buf.getvalue())
            _compare_trees(self, src, dest)


class ProgressTests(unittest.TestCase):
    def test_size_and_bytes_complete(self):
        with tempfile.TemporaryDirectory() as tmp:
            src = Path(tmp) / "src"
            (src / "sub").mkdir(parents=True)
            (src / "a.bin").write_bytes(b"a" * 100)
            (src / "sub" / "b.bin").write_bytes(b"b" * 250)
            os.symlink("a.bin", src / "link")
            packer = AutoPacker(str(src), Behavior.TAR)
            self.assertTrue(packer.wait_for_size(10))
            self.assertEqual(350, packer.size())
            self.assertEqual(0, packer.bytes_complete())
            while True:
                data = packer.read(512)
                self.assertLessEqual(packer.bytes_complete(), packer.size())
                if not data:
                    break
            self.assertEqual(350, packer.bytes_complete())
            packer.close()

    def test_hard_linked_files_counted_once(self):
        with tempfile.TemporaryDirectory() as tmp:
            src = Path(tmp) / "src"
            src.mkdir()
            (src / "a.bin").write_bytes(b"a" * 100)
            (src / "b.bin").write_bytes(b"b" * 250)
            os.link(src / "b.bin", src / "c.bin")
            packer = AutoPacker(str(src), Behavior.TAR)
            self.assertTrue(packer.wait_for_size(10))
            self.assertEqual(350, packer.size())
            while packer.read(512):
                pass
            self.assertEqual(packer.size(), packer.bytes_complete())
            packer.close()

    def test_scan_failure_is_logged_not_fatal(self):
        with tempfile.TemporaryDirectory() as tmp:
            missing = os.path.join(tmp, "missing")
            with self.assertLogs("streampack.packer", level="WARNING") as logs:
                packer = AutoPacker(missing)
                self.assertTrue(packer.wait_for_size(10))
            self.assertEqual(0, packer.size())
            self.assertIsNone(packer.error())
            self.assertTrue(any("calculate size" in line for line in logs.output))


class PackerErrorTests(unittest.TestCase):
    def test_not_initialized(self):
        with self.assertRaises(NotInitialized):
            AutoPacker("").read(10)
        with self.assertRaises(NotInitialized):
            AutoUnpacker("").write(b"x")

    def test_missing_source_fails_every_read(self):
        with tempfile.TemporaryDirectory() as tmp:
            packer = AutoPacker(os.path.join(tmp, "missing"))
            with self.assertRaises(IOFailure) as first:
                while packer.read(4096):
                    pass
            with self.assertRaises(IOFailure) as second:
                packer.read(4096)
            self.assertIs(first.exception, second.exception)
            self.assertEqual(StreamState.FAILED, packer.state)
            packer.close()

    def test_close_cancels_worker(self):
        with tempfile.TemporaryDirectory() as tmp:
            src = Path(tmp) / "src"
            src.mkdir()
            (src / "big.bin").write_bytes(os.urandom(1 << 20))
            packer = AutoPacker(str(src), Behavior.TAR, bridge_capacity=4096)
            self.assertTrue(packer.read(1024))
            packer.close()
            self.assertIsInstance(packer.error(), ClosedBridge)
            with self.assertRaises(ClosedBridge):
                packer.read(1024)


if __name__ == "__main__":
    unittest.main()
