#!/usr/bin/env python
"""Validate setup - check dependencies, configuration and service connectivity."""
import sys
import asyncio
import shutil
from pathlib import Path

# Color codes for terminal output
GREEN = "\033[92m"
RED = "\033[91m"
YELLOW = "\033[93m"
BLUE = "\033[94m"
RESET = "\033[0m"

def print_success(msg):
    print(f"{GREEN}✓{RESET} {msg}")

def print_error(msg):
    print(f"{RED}✗{RESET} {msg}")

def print_info(msg):
    print(f"{BLUE}ℹ{RESET} {msg}")

def print_warning(msg):
    print(f"{YELLOW}⚠{RESET} {msg}")

def print_section(title):
    print(f"\n{BLUE}{'='*60}{RESET}")
    print(f"{BLUE}{title:^60}{RESET}")
    print(f"{BLUE}{'='*60}{RESET}\n")

async def main():
    print_section("PDF Chat Support - Setup Validation")

    errors = []
    warnings = []

    # 1. Python version check
    print_section("1. Python Environment")
    python_version = f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}"
    print_info(f"Python version: {python_version}")
    if sys.version_info >= (3, 10):
        print_success("Python version >= 3.10")
    else:
        print_error("Python version < 3.10 (required)")
        errors.append("Python version too old")

    # 2. Import core dependencies
    print_section("2. Core Dependencies")

    dependencies = [
        ("quart", "Quart web framework"),
        ("hypercorn", "Hypercorn ASGI server"),
        ("httpx", "HTTP client"),
        ("pydantic", "Data validation"),
        ("pdfminer", "PDF text extraction"),
        ("watchdog", "File monitoring"),
        ("structlog", "Structured logging"),
        ("pytest", "Testing framework"),
    ]

    for module_name, description in dependencies:
        try:
            __import__(module_name)
            print_success(f"{description:30} ({module_name})")
        except ImportError as e:
            print_error(f"{description:30} ({module_name}) - {e}")
            errors.append(f"Missing: {module_name}")

    # 3. Test configuration
    print_section("3. Configuration")

    try:
        # Add parent directory to path to import pdfchat
        sys.path.insert(0, str(Path(__file__).parent.parent))
        from pdfchat.config import Settings
        from pdfchat.context import build_context

        settings = Settings.from_env()

        print_success("Config loaded successfully")
        print_info(f"  Chat model: {settings.chat_model}")
        print_info(f"  Embedding model: {settings.embedding_model}")
        print_info(f"  API base URL: {settings.openai_base_url}")
        print_info(f"  Index host: {settings.pinecone_index_host or '(not set)'}")
        print_info(f"  Chunk size: {settings.chunk_size} chars")
        print_info(f"  PDF extractor: {settings.pdf_extractor}")
        print_info(f"  Data directory: {settings.data_dir}")

        if not settings.openai_api_key:
            print_error("OPENAI_API_KEY is not set")
            errors.append("OpenAI API key missing")
        if not settings.pinecone_api_key or not settings.pinecone_index_host:
            print_error("PINECONE_API_KEY / PINECONE_INDEX_HOST are not set")
            errors.append("Pinecone configuration missing")

        if settings.pdf_extractor == "pdftotext" and shutil.which("pdftotext") is None:
            print_error("pdftotext binary not found on PATH")
            errors.append("pdftotext missing")
        elif settings.pdf_extractor == "regex":
            print_warning("Regex PDF extractor selected (low fidelity)")
            warnings.append("Low-fidelity PDF extractor")

        context = build_context(settings)
        print_success(f"Database ready: {settings.db_path}")
        print_success(f"Upload directory ready: {settings.upload_dir}")

    except Exception as e:
        print_error(f"Failed to load config: {e}")
        errors.append("Config loading failed")
        return errors, warnings

    # 4. Test OpenAI connection
    print_section("4. OpenAI API")

    try:
        models = await context.completion_client.list_models()
        print_success(f"OpenAI API reachable at {settings.openai_base_url}")
        print_info(f"Found {len(models)} models available")

        for model in (settings.chat_model, settings.embedding_model):
            if model in models:
                print_success(f"Model available: {model}")
            else:
                print_error(f"Model missing: {model}")
                errors.append(f"Missing model: {model}")

        embedding = await context.embedding_client.embed("test")
        print_success(f"Embedding API working (dimension: {len(embedding)})")

    except Exception as e:
        print_error(f"OpenAI check failed: {e}")
        errors.append(f"OpenAI error: {e}")

    # 5. Test Pinecone connection
    print_section("5. Pinecone Index")

    try:
        stats = await context.index_client.describe_index_stats()
        print_success(f"Index reachable at {settings.pinecone_index_host}")
        print_info(f"  Dimension: {stats.get('dimension', 'unknown')}")
        print_info(f"  Total vectors: {stats.get('totalVectorCount', 0)}")
    except Exception as e:
        print_error(f"Pinecone check failed: {e}")
        errors.append(f"Pinecone error: {e}")

    # 6. Summary
    print_section("Summary")

    if not errors:
        print_success(f"All checks passed! ✨")
    else:
        print_error(f"Found {len(errors)} error(s):")
        for i, error in enumerate(errors, 1):
            print(f"  {i}. {error}")

    if warnings:
        print_warning(f"\nFound {len(warnings)} warning(s):")
        for i, warning in enumerate(warnings, 1):
            print(f"  {i}. {warning}")

    print()
    return errors, warnings

if __name__ == "__main__":
    errors, warnings = asyncio.run(main())
    sys.exit(1 if errors else 0)
