"""Setup script for LinguaCache."""

from setuptools import setup, find_packages
from pathlib import Path

# Read the README
readme = Path("README.md").read_text(encoding="utf-8")

setup(
    name="linguacache",
    version="1.0.0",
    description="Content-addressed translation caching and batching engine",
    long_description=readme,
    long_description_content_type="text/markdown",
    author="LinguaCache Team",
    license="MIT",
    
    packages=find_packages(exclude=["tests*", "docs*", "examples*"]),
    
    python_requires=">=3.9",
    
    install_requires=[
        "pyyaml>=6.0",
        "rich>=13.0.0",
        "python-dotenv>=1.0.0",
        "typer>=0.9.0",
        "loguru>=0.7.0",
        "diskcache>=5.6.0",
        "httpx>=0.24.0"
    ],
    
    extras_require={
        "dev": [
            "pytest>=7.4.0",
            "pytest-cov>=4.1.0",
            "pytest-asyncio>=0.21.0",
            "black>=23.0.0",
            "flake8>=6.0.0",
            "mypy>=1.4.0",
            "isort>=5.12.0"
        ],
    },
    
    entry_points={
        "console_scripts": [
            "linguacache=cli.commands.main:cli",
        ],
    },
    
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Topic :: Software Development :: Internationalization",
        "Topic :: Software Development :: Localization",
    ],
    
    keywords="translation i18n l10n cache batching",
)
