"""Setup script for Canvas Sync."""

from setuptools import setup, find_packages

# Read README for long description
with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="canvasync",
    version="0.1.0",
    author="Canvas Sync Team",
    author_email="contact@example.com",
    description="Canvas course export backup with polling, bounded concurrency and resumable downloads",
    long_description=long_description,
    long_description_content_type="text/markdown",
    url="https://github.com/example/canvasync",
    packages=find_packages(exclude=["tests", "tests.*"]),
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Education",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: System :: Archiving :: Backup",
        "Topic :: Utilities",
    ],
    python_requires=">=3.11",
    install_requires=[
        "httpx>=0.25.0",
        "rich>=13.0.0",
        "pydantic>=2.0.0",
        "tenacity>=8.0.0",
        "python-dotenv>=1.0.0",
        "pyyaml>=6.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
            "pytest-cov>=4.0.0",
            "ruff>=0.1.0",
            "black>=23.0.0",
            "mypy>=1.0.0",
        ],
    },
    include_package_data=True,
    zip_safe=False,
)
