"""
Setup script for scorm-sn.

scorm-sn is the SCORM 2004 sequencing and navigation engine used by the
course player. It serves two roles:

1. Library - the SequencingSession facade the RTE and GUI talk to
2. Tooling - the 'scorm-sn' command for inspecting, linting and tracing
   activity trees without a player
"""

from setuptools import find_packages, setup

setup(
    name="scorm-sn",
    version="1.0.0",
    description="SCORM 2004 sequencing and navigation engine",
    long_description=open("README.md", encoding="utf-8").read() if __import__("os").path.exists("README.md") else "",
    long_description_content_type="text/markdown",
    packages=find_packages(include=["scorm_sn", "scorm_sn.*"]),
    py_modules=["config"],
    python_requires=">=3.10",
    install_requires=[
        # CLI
        "typer>=0.9.0",
        "rich>=13.0.0",
        # Config & Validation
        "pydantic>=2.0.0",
        "pydantic-settings>=2.0.0",
        # Structure files
        "pyyaml>=6.0",
        # Logging
        "loguru>=0.7.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
            "pytest-cov>=4.0.0",
            "ruff>=0.1.0",
            "mypy>=1.0.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "scorm-sn=scorm_sn.cli.sn_cli:main",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Environment :: Console",
        "Intended Audience :: Developers",
        "Intended Audience :: Education",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Education",
        "Topic :: Education :: Computer Aided Instruction (CAI)",
    ],
    keywords="scorm sequencing navigation e-learning lms",
)
