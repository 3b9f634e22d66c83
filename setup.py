"""Setup script for Hybrid RAG package."""
from setuptools import setup, find_packages
from pathlib import Path

# Read README
readme_file = Path(__file__).parent / "README.md"
long_description = readme_file.read_text() if readme_file.exists() else ""

setup(
    name="hybrid-rag",
    version="0.1.0",
    author="Hybrid RAG Contributors",
    description="Document and web-site ingestion with hybrid (lexical + vector) retrieval and rank fusion",
    long_description=long_description,
    long_description_content_type="text/markdown",
    url="https://github.com/hybrid-rag/hybrid-rag",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.10",
    install_requires=[
        "aiohttp>=3.9.0",
        "openai>=1.30.0",
        "numpy>=1.24.0",
        "PyMuPDF>=1.23.0",
        "Pillow>=10.0.0",
        "beautifulsoup4>=4.12.0",
        "tqdm>=4.66.0",
        "tenacity>=8.2.0",
        "python-dotenv>=1.0.0",
        "click>=8.1.0",
        "langchain-core>=0.2.0",
        "pydantic>=2.0.0",
    ],
    extras_require={
        "dev": ["pytest", "pytest-asyncio", "httpx", "black", "flake8"],
    },
    entry_points={
        "console_scripts": [
            "hybrid-rag=hybrid_rag.cli:main",
        ],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Topic :: Text Processing :: Indexing",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
    keywords="rag retrieval elasticsearch embeddings rrf crawler pdf",
)
