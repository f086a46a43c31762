"""Setup script for lore-context package."""

from setuptools import setup, find_packages
import pathlib

# Get the long description from the README file
here = pathlib.Path(__file__).parent.resolve()
long_description = (here / "README.md").read_text(encoding="utf-8") if (here / "README.md").exists() else "lore-context: knowledge entry activation and token-budgeted prompt assembly for roleplay chat."

setup(
    name="lore-context",
    version="0.1.0",
    description="Knowledge entry activation and token-budgeted prompt assembly for roleplay chat",
    long_description=long_description,
    long_description_content_type="text/markdown",
    author="lore-context Team",
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Topic :: Software Development :: Libraries :: Python Modules",
        "Topic :: Scientific/Engineering :: Artificial Intelligence",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
    ],
    keywords="llm, context, lorebook, world-info, token-budgeting, roleplay",
    packages=find_packages(include=["lore_context", "lore_context.*"]),
    python_requires=">=3.8, <4",
    install_requires=[
        "PyYAML>=6.0",
        "Jinja2>=3.0",
    ],
    extras_require={
        "dev": [
            "pytest>=6.0",
            "pytest-cov>=2.0",
            "black>=22.0",
            "flake8>=4.0",
            "mypy>=0.950",
        ],
        "tiktoken": [
            "tiktoken>=0.4.0",
        ],
        "all": [
            "tiktoken>=0.4.0",
            "pytest>=6.0",
            "pytest-cov>=2.0",
            "black>=22.0",
            "flake8>=4.0",
            "mypy>=0.950",
        ],
    },
    entry_points={
        "console_scripts": [
            "lore-context=lore_context.cli:main",
        ],
    },
)
