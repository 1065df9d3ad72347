import argparse
import asyncio
import os
import sys
from pathlib import Path

# Ensure src is in pythonpath
sys.path.append(os.path.join(os.path.dirname(__file__), "..", "src"))

from dotenv import load_dotenv
load_dotenv()

from vidmem.config import Settings
from vidmem.embeddings.embedder import build_embedder
from vidmem.encoder.state_machine import Encoder
from vidmem.retriever.retriever import Retriever


def parse_args():
    parser = argparse.ArgumentParser(description="Encode text files into a QR video archive.")
    parser.add_argument("inputs", nargs="+", help="Text files to encode")
    parser.add_argument("--output", default="archive.mp4", help="Output video path")
    parser.add_argument("--index", default="archive.json", help="Output index path")
    parser.add_argument("--query", help="Run a search against the new archive when done")
    parser.add_argument("--top-k", type=int, default=None)
    return parser.parse_args()


async def main():
    args = parse_args()

    print("Loading settings...")
    settings = Settings()
    embedder = build_embedder(settings)
    encoder = Encoder("cli", settings, embedder)

    # 1. Chunk every input file
    for i, name in enumerate(args.inputs):
        path = Path(name)
        print(f"Reading ({i+1}/{len(args.inputs)}): {path}")
        encoder.add_text(path.read_text(encoding="utf-8"))

    print(f"Collected {len(encoder.pending_chunks)} chunks. Building video (this may take time)...")

    # 2. Build video + index
    try:
        stats = await encoder.build(args.output, args.index)
    finally:
        await encoder.close()

    print(
        f"Done! {stats.total_frames} frames, {stats.duration_seconds:.1f}s "
        f"-> {stats.output_path} (index: {stats.index_path})"
    )

    # 3. Optional smoke search
    if args.query:
        retriever = await Retriever.open(args.output, args.index, settings, embedder)
        for rank, text in enumerate(await retriever.search(args.query, args.top_k), start=1):
            print(f"{rank}. {text[:120]}")


if __name__ == "__main__":
    asyncio.run(main())
