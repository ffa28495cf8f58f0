from setuptools import setup, find_packages

setup(
    name="seeding_reco",
    version="0.1.0",
    description="Stand-alone track seeding (parabola search, stereo extension, clone removal) for parallel-plane trackers",
    author="Your Name",
    author_email="your.email@example.com",
    packages=find_packages(include=["seeding_reco", "seeding_reco.*"]),
    python_requires=">=3.10",
    install_requires=[
        # Runtime dependencies
        "numpy",
        "numba",
        "pandas",
        "matplotlib",
        "orjson",
    ],
    extras_require={
        # Parquet input for load_hits
        "parquet": [
            "pyarrow",
        ],
        # Optional speed/profiling stack
        "speed": [
            "scalene>=1.5.49; platform_system != 'Windows'",
            "py-spy>=0.3.14",
        ],
        # Developer extras
        "dev": [
            "pytest",
            "black",
            "mypy",
        ],
    },
    entry_points={
        "console_scripts": [
            "seeding-reco=seeding_reco.main:main",
        ],
    },
    classifiers=[
        "Programming Language :: Python :: 3",
        "Operating System :: OS Independent",
    ],
)
