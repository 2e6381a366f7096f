from setuptools import setup, find_packages

setup(
    name="muxlink",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "asyncssh>=2.14",
        "pydantic>=2.0",
        "PyYAML>=6.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
            "pytest-asyncio>=0.21",
        ],
    },
    entry_points={
        "console_scripts": [
            "muxlink=muxlink.__main__:main",
        ],
    },
    python_requires=">=3.9",
    author="",
    description="Drive remote tmux sessions over SSH",
    classifiers=[
        "Programming Language :: Python :: 3",
        "Operating System :: OS Independent",
    ],
)
