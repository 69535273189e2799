"""Setup configuration for KB Ingest."""

from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as f:
    long_description = f.read()

setup(
    name="kb-ingest",
    version="0.1.0",
    author="Your Name",
    description="Deterministic segmentation and resilient ingestion of documents into knowledge chunks",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.8",
    install_requires=[
        "tqdm>=4.65.0",
        "pydantic>=2.0.0",
        "pydantic-settings>=2.0.0",
        "tenacity>=8.2.0",
        "pybreaker>=1.0.0",
        "PyYAML>=6.0",
        "pypdf>=4.0.0",
        "langchain>=0.3.0",
        "langchain-community>=0.3.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
        ],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
    ],
)
