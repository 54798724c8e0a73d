import subprocess
import sys
import time

STEPS = [
    ("Load catalog to Redis/Qdrant", "ranking_engine.batch.load_catalog"),
    ("Calculate popular items", "ranking_engine.batch.calc_popular"),
]


def run_step(name: str, module: str, extra_args: list[str]) -> bool:
    print(f"\n{'=' * 60}")
    print(f"Step: {name}")
    print(f"{'=' * 60}\n")

    start = time.time()
    result = subprocess.run([sys.executable, "-m", module, *extra_args])
    elapsed = time.time() - start

    if result.returncode != 0:
        print(f"\nFailed: {name} (exit code {result.returncode})")
        return False

    print(f"\nCompleted: {name} in {elapsed:.1f}s")
    return True


def main():
    # optional catalog path is forwarded to the loader only
    catalog_args = sys.argv[1:2]

    print("Starting batch pipeline...")
    total_start = time.time()

    for name, module in STEPS:
        args = catalog_args if module.endswith("load_catalog") else []
        if not run_step(name, module, args):
            print("\nPipeline failed!")
            sys.exit(1)

    total_elapsed = time.time() - total_start
    print(f"\n{'=' * 60}")
    print(f"Batch pipeline complete! Total time: {total_elapsed:.1f}s")
    print(f"{'=' * 60}")


if __name__ == "__main__":
    main()
