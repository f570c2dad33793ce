import os
import sys
import time
from typing import Optional, Tuple

import pypmd
from pmdstream import InvalidFileError, ExportError

CHUNK_SIZE = 64


def binary_compare(file1, file2):
    with open(file1, 'rb') as f1, open(file2, 'rb') as f2:
        pos = 0
        while True:
            b1 = f1.read(CHUNK_SIZE)
            b2 = f2.read(CHUNK_SIZE)
            if b1 != b2:
                return pos, b1, b2  # offset of the differing chunk and both chunks
            if not b1:
                break
            pos += CHUNK_SIZE
    return -1, b'', b''  # identical

def binary_compare_reversed(file1, file2):  # from end
    size1 = os.path.getsize(file1)
    size2 = os.path.getsize(file2)
    with open(file1, 'rb') as f1, open(file2, 'rb') as f2:
        pos = 0
        while pos < min(size1, size2):
            length = min(CHUNK_SIZE, size1 - pos, size2 - pos)
            f1.seek(-pos - length, os.SEEK_END)
            f2.seek(-pos - length, os.SEEK_END)
            b1 = f1.read(length)
            b2 = f2.read(length)
            if b1 != b2:
                return pos, b1, b2
            pos += length
    if size1 != size2:
        return pos, b'', b''
    return -1, b'', b''

def size_difference(file1, file2):
    size1 = os.path.getsize(file1)
    size2 = os.path.getsize(file2)
    if size1 != size2:
        return size2 - size1

    return 0


def test_roundtrip(pmd_path: str, output_path: Optional[str] = None, trim: bool = False) -> Tuple[bool, str]:
    """Load pmd_path, save it to output_path and compare both files. Returns (identical, message)."""
    if not os.path.isfile(pmd_path):
        print(f"❌ File not found: {pmd_path}")
        return False, f"File not found: {pmd_path}"

    start_time = time.time()
    print(f"📂 Loading: {pmd_path}")
    try:
        model = pypmd.load(pmd_path)
    except (OSError, InvalidFileError) as e:
        print(f"❌ Load failed: {e}")
        return False, f"Load failed: {e}"

    time_taken_ms = (time.time() - start_time) * 1000
    print(f"✅ Loaded: {time_taken_ms:.2f} ms")

    if output_path is None:
        output_path = pmd_path + ".out.pmd"
    if trim:
        model.trimming()

    start_time = time.time()
    print(f"📂 Saving: {output_path}")

    try:
        pypmd.save(output_path, model)
    except (OSError, ExportError) as e:
        print(f"❌ Save failed: {e}")
        return False, f"Save failed: {e}"

    time_taken_ms = (time.time() - start_time) * 1000
    print(f"✅ Saved: {time_taken_ms:.2f} ms")

    diff_pos, b1, b2 = binary_compare(pmd_path, output_path)
    diff_size = size_difference(pmd_path, output_path)

    if diff_pos == -1:
        print("✅ Binary match: no difference before and after saving.")
        return True, f"Round trip identical ({pmd_path} -> {output_path})"

    size_in = os.path.getsize(pmd_path)
    print(f"⚠ Files differ: first difference at byte {diff_pos} from the start. ({diff_pos / max(size_in, 1) * 100:.2f}%)")
    print(f"   before: {list(b1)}")
    print(f"   after:  {list(b2)}")

    ascii_prev = [chr(b) if 32 <= b < 127 else '.' for b in b1]
    ascii_new = [chr(b) if 32 <= b < 127 else '.' for b in b2]
    print(f"   before (ASCII): {''.join(ascii_prev)}")
    print(f"   after (ASCII):  {''.join(ascii_new)}")

    print(f"   size difference: {diff_size} bytes")
    print(f"   before: {size_in} bytes")
    print(f"   after:  {os.path.getsize(output_path)} bytes")

    diff_pos_rev, _, _ = binary_compare_reversed(pmd_path, output_path)
    print(f"⚠ First difference from the end: {diff_pos_rev} bytes")
    return False, f"Round trip differs at byte {diff_pos} ({pmd_path} -> {output_path})"

if __name__ == "__main__":
    if len(sys.argv) != 2:
        input_file = "test.pmd"
    else:
        input_file = sys.argv[1]

    if not os.path.isfile(input_file) or not input_file.lower().endswith(".pmd"):
        print("❌ Input is not a PMD file or does not exist.")
        sys.exit()

    test_roundtrip(input_file)
