from __future__ import annotations

import subprocess
import sys


def main():
    customer = sys.argv[1] if len(sys.argv) > 1 else "Ben Smith"
    subprocess.run(
        [sys.executable, "-m", "holocron.entrypoints.cli", "--env", "dev", "story", "--customer", customer],
        check=True,
    )


if __name__ == "__main__":
    main()
