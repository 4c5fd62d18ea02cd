from setuptools import setup, find_packages


setup(
    name="streampack",
    version="0.1",
    packages=find_packages(include=["streampack", "streampack.*"]),
    description="Stream directory trees as tar / tar.gz archives and unpack them back with format auto-detection.",
    author="vercingetorx",
    python_requires=">=3.8",
    install_requires=[],
    entry_points={
        "console_scripts": [
            "streampack=streampack.cli:main",
        ]
    },
)
