"""
Setup file.
"""

import os

from setuptools import find_packages, setup

URL = "https://github.com/BTCDecoded/cascade"
KEYWORDS = "bitcoin rust cargo build release orchestration github cross-compile"
HERE = os.path.dirname(os.path.abspath(__file__))


def read_readme() -> str:
    path = os.path.join(HERE, "README.md")
    if not os.path.exists(path):
        return ""
    with open(path, encoding="utf-8") as f:
        return f.read()


if __name__ == "__main__":
    setup(
        name="cascade-build",
        version="0.2.0",
        description="Build, package and release orchestration for the BLLVM repositories",
        long_description=read_readme(),
        long_description_content_type="text/markdown",
        maintainer="BTCDecoded",
        keywords=KEYWORDS,
        url=URL,
        python_requires=">=3.9",
        package_dir={"": "src"},
        packages=find_packages(where="src"),
        install_requires=[
            "requests>=2.28",
            "tqdm>=4.64",
            "psutil>=5.9",
        ],
        extras_require={
            "test": ["pytest>=7.0"],
        },
        entry_points={
            "console_scripts": [
                "cascade=cascade.cli:main",
            ],
        },
        include_package_data=True)
