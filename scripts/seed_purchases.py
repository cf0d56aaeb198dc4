from __future__ import annotations

import argparse
import random
from pathlib import Path

import yaml

from holocron.tools.purchases import generate_purchases

# order 66 always holds a single Clone Trooper
FIXED_ORDERS = {66: ["F019"]}


def main():
    parser = argparse.ArgumentParser(description="Generate the purchases store from a figurine list.")
    parser.add_argument("--figurines", default="data/figurines.yaml")
    parser.add_argument("--output", default="data/purchases.yaml")
    parser.add_argument("--seed", type=int, default=None, help="Random seed for reproducible orders.")
    args = parser.parse_args()

    data = yaml.safe_load(Path(args.figurines).read_text(encoding="utf-8"))
    figurines = data["figurines"] if isinstance(data, dict) else data
    store = generate_purchases(figurines, fixed_orders=FIXED_ORDERS, rng=random.Random(args.seed))
    store.to_yaml(args.output)
    print(f"Wrote {len(store.orders)} orders for {len(figurines)} figurines to {args.output}")


if __name__ == "__main__":
    main()
