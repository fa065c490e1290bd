"""Out-of-band schema and ANN index management for the analyses database"""

import argparse
import asyncio
import sys
from pathlib import Path

from dotenv import load_dotenv

from src.config import AppConfig, config
from src.services.embedder import Embedder, FastEmbedProvider
from src.services.embedding_store import EmbeddingStore
from src.services.errors import SimilaritySearchError


def _print_header(title: str) -> None:
    print("=" * 80)
    print(title)
    print("=" * 80)


def _check_model_dimension(settings: AppConfig, download: bool) -> None:
    provider = FastEmbedProvider(settings)
    embedder = Embedder(provider=provider, settings=settings)
    print(f"  Embedding model: {settings.embedding_model}")
    embedder.check_dimension()
    print(f"✓ Model dimension matches configuration ({settings.embedding_dimension})")

    if download:
        print(f"  Cache directory: {settings.fastembed_cache_dir}")
        provider.download_model()
        print("✓ Embedding model cached")


async def init_db(settings: AppConfig | None = None, download_model: bool = True) -> None:
    """Create tables and the ANN index, and make sure the embedding model is usable"""
    settings = settings or config

    print("\n[1/3] Checking embedding model...")
    _check_model_dimension(settings, download=download_model)

    store = EmbeddingStore(settings=settings)
    try:
        print("\n[2/3] Creating schema...")
        await store.create_schema()
        print(f"✓ Database initialized: {settings.db_path}")

        print("\n[3/3] Verifying schema...")
        await store.verify_schema()
        print(
            f"✓ Index {settings.vector_index_name} ready "
            f"({settings.embedding_dimension} dimensions, cosine similarity)"
        )
    finally:
        store.close()


async def verify_db(settings: AppConfig | None = None) -> None:
    """Check the schema and index against the configured embedding dimension"""
    settings = settings or config

    store = EmbeddingStore(settings=settings)
    try:
        await store.verify_schema()
        indexed = await store.count_indexed()
        print(f"✓ Schema valid: {settings.db_path}")
        print(f"✓ Index {settings.vector_index_name} holds {indexed} embeddings")
    finally:
        store.close()
    _check_model_dimension(settings, download=False)


async def reindex_db(settings: AppConfig | None = None) -> int:
    """Rebuild the ANN index after changing the embedding dimension"""
    settings = settings or config

    store = EmbeddingStore(settings=settings)
    try:
        print(
            f"  Rebuilding {settings.vector_index_name} "
            f"with {settings.embedding_dimension} dimensions"
        )
        indexed = await store.rebuild_index()
        await store.verify_schema()
        print(f"✓ Indexed {indexed} embeddings")
        return indexed
    finally:
        store.close()


async def run(
    command: str, settings: AppConfig | None = None, download_model: bool = True
) -> int:
    _print_header(f"Analyses database: {command}")

    try:
        if command == "init":
            await init_db(settings, download_model=download_model)
        elif command == "verify":
            await verify_db(settings)
        elif command == "reindex":
            await reindex_db(settings)
        return 0
    except SimilaritySearchError as e:
        print(f"\n✗ {command} failed: {e}")
        return 1


def main():
    """Main entry point"""
    # Load .env file first (won't override existing env vars)
    if Path(".env").exists():
        load_dotenv()

    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("command", choices=["init", "verify", "reindex"])
    parser.add_argument(
        "--skip-model-download",
        action="store_true",
        help="Do not pre-download the embedding model during init",
    )
    args = parser.parse_args()

    # Settings are read after .env is loaded so its values take effect
    settings = AppConfig()
    exit_code = asyncio.run(
        run(args.command, settings, download_model=not args.skip_model_download)
    )
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
