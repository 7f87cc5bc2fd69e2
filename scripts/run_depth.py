#!/usr/bin/env python3
"""
SOL/USDC depth launcher script.

Runs a buy and sell depth calculation for SOL/USDC with the dev.yaml
configuration and prints the results as JSON.
"""

import asyncio
import sys
from pathlib import Path

# Add the project root to the Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from liqdepth.catalog.jupiter import SOL_MINT, USDC_MINT
from liqdepth.runner.cli import main


if __name__ == "__main__":
    args = [
        "--input-mint",
        SOL_MINT,
        "--output-mint",
        USDC_MINT,
        "--config",
        str(project_root / "configs" / "dev.yaml"),
        "--profile",
        "dev",
        *sys.argv[1:],
    ]

    try:
        sys.exit(asyncio.run(main(args)))
    except KeyboardInterrupt:
        print("\nDepth calculation stopped by user.")
        sys.exit(0)
