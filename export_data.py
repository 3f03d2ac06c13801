"""Dump the configured skill database as a snapshot JSON file."""
import sys

from skill_runtime.config import load_settings, open_session


def main(argv: list) -> int:
    out_path = argv[1] if len(argv) > 1 else "skillgrid-export.json"
    session = open_session(load_settings())
    session.export_to_file(out_path)

    counts = session.get_diagnostics()["counts"]
    for collection, n in counts.items():
        print(f"{collection}: {n}")
    print(f"\nDumped {sum(counts.values())} entities to {out_path} (hash {session.data_hash()})")
    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv))
