"""
Extraction Module Entry Point

Allows execution via: python -m apps.extraction
"""

import asyncio

from apps.extraction.consumer import main

if __name__ == "__main__":
    asyncio.run(main())
