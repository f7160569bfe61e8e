"""
HubProbe Setup Configuration

Makes HubProbe installable as a Python package so the test suite can import
from 'src' modules.
"""

from setuptools import setup, find_packages
from pathlib import Path

# Read the README file
readme_file = Path(__file__).parent / "README.md"
long_description = readme_file.read_text(encoding="utf-8") if readme_file.exists() else ""


def read_requirements(name):
    requirements_file = Path(__file__).parent / name
    if not requirements_file.exists():
        return []
    return [
        line.strip()
        for line in requirements_file.read_text(encoding="utf-8").splitlines()
        if line.strip() and not line.startswith("#")
    ]


setup(
    name="hubprobe",
    version="1.0.0",
    description="End-to-end X.509 message round-trip verification for IoT hubs",
    long_description=long_description,
    long_description_content_type="text/markdown",
    author="HubProbe Team",
    license="MIT",

    # Package discovery
    packages=find_packages(include=["src", "src.*"]),

    # Dependencies
    install_requires=read_requirements("requirements.txt"),
    extras_require={
        "test": read_requirements("requirements-dev.txt"),
    },

    # Python version requirement
    python_requires=">=3.10",

    # Classifiers
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Software Development :: Testing",
        "Topic :: System :: Networking",
    ],

    keywords="iot mqtt amqp x509 end-to-end testing",
)
