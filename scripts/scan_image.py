# scripts/scan_image.py
"""
用目前的設定（GEMINI_API_KEY 等）對一張本機圖片跑一次成分分析，印出 JSON。

    python -m scripts.scan_image label.jpg
"""
import asyncio
import mimetypes
import sys
from pathlib import Path

from app.core.config import get_settings
from app.services.vision import GeminiVisionClient


async def main(path: str) -> int:
    image = Path(path)
    mime_type = mimetypes.guess_type(image.name)[0] or "image/jpeg"
    client = GeminiVisionClient.from_settings(get_settings())
    try:
        result = await client.analyze(image.read_bytes(), mime_type)
    finally:
        await client.aclose()
    print(result.model_dump_json(by_alias=True, exclude_none=True, indent=2))
    return 0


if __name__ == "__main__":
    if len(sys.argv) != 2:
        print("usage: python -m scripts.scan_image IMAGE_PATH", file=sys.stderr)
        sys.exit(2)
    sys.exit(asyncio.run(main(sys.argv[1])))
