"""
Setup script for the game updater.
"""

from setuptools import setup, find_namespace_packages

# Read the README file
with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

# Read requirements
with open("requirements.txt", "r", encoding="utf-8") as fh:
    requirements = [line.strip() for line in fh if line.strip() and not line.startswith("#")]

setup(
    name="gameupdater",
    version="1.0.0",
    author="",
    author_email="",
    description="Resumable game installer and patch-chain updater",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_namespace_packages(include=["gameupdater", "gameupdater.*"]),
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: End Users/Desktop",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Games/Entertainment",
        "Topic :: System :: Software Distribution",
    ],
    python_requires=">=3.9",
    install_requires=requirements,
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-qt>=4.0.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "gameupdater=gameupdater.main:main",
        ],
    },
    scripts=["run.py"],
    keywords="game launcher updater patch download",
)
