from setuptools import setup, find_packages
from pathlib import Path

# Read the contents of the README file
this_directory = Path(__file__).parent
long_description = (this_directory / "README.md").read_text(encoding="utf-8")

setup(
    name="achievo",
    version="0.4.0",
    author="Achievo contributors",
    description="A terminal-native daily progress tracker and summarizer for Git repositories.",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "typer>=0.12.3",
        "rich>=13.7.1",
        "questionary>=2.0.1",
        "gitpython>=3.1.43",
        "numpy>=1.26.0",
        "plotille>=5.0.0",
        "pyfiglet>=1.0.2",
        "anthropic",
        "python-dotenv",
        "pydantic>=2.0",
        "sqlmodel>=0.0.16",
        "sqlalchemy>=2.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.4",
            "pytest-asyncio>=0.23",
            "httpx",
        ],
    },
    entry_points={
        "console_scripts": [
            "achievo=achievo_cli.main:main",
        ],
    },
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Environment :: Console",
    ],
    python_requires=">=3.10",
)
