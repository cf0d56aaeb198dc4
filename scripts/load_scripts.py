from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

from holocron.telemetry.logging import setup_logging
from holocron.tools.scripts_search import ScriptLoader
from holocron.utils.settings import load_config


def main():
    parser = argparse.ArgumentParser(description="Chunk movie scripts and upsert them into the script index.")
    parser.add_argument("scripts_dir", nargs="?", default="movie-scripts", help="Directory of <movie-name>.md scripts.")
    parser.add_argument("--env", default="base")
    parser.add_argument("--config-dir", default="configs")
    args = parser.parse_args()

    config = load_config(args.env, args.config_dir)
    setup_logging(config.logging.level)
    tools = config.tools
    if not tools.pinecone_api_key or not tools.pinecone_index_host:
        sys.exit("Set PINECONE_API_KEY and PINECONE_INDEX_HOST before loading scripts.")

    paths = sorted(Path(args.scripts_dir).glob("*.md"))
    if not paths:
        sys.exit(f"No .md scripts found in {args.scripts_dir}")
    loader = ScriptLoader(tools.pinecone_api_key, tools.pinecone_index_host, namespace=tools.pinecone_namespace)
    sent = asyncio.run(loader.load(paths))
    print(f"Loaded {sent} chunks from {len(paths)} scripts into namespace '{tools.pinecone_namespace}'")


if __name__ == "__main__":
    main()
