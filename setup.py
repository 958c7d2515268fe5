"""
Setup script for torch-milann.

The Triton forward kernels are optional. Install the ``triton`` extra on a
CUDA machine to enable them:

    pip install -e ".[triton]"

Without Triton (or on CPU), the package uses the pure PyTorch round-based
kernels.
"""

from pathlib import Path

from setuptools import find_packages, setup

ROOT = Path(__file__).parent


def read_long_description() -> str:
    readme = ROOT / "README.md"
    if not readme.exists():
        return ""
    return readme.read_text(encoding="utf-8")


def main():
    setup(
        name="torch-milann",
        version="0.1.0",
        description=(
            "Segmented max/mean pooling with hand-derived gradients for "
            "Multiple-Instance Learning in PyTorch"
        ),
        long_description=read_long_description(),
        long_description_content_type="text/markdown",
        package_dir={"": "src"},
        packages=find_packages(where="src"),
        python_requires=">=3.10",
        install_requires=[
            "torch>=2.0",
        ],
        extras_require={
            "triton": ["triton>=2.1"],
            "test": ["pytest>=7.0"],
        },
        classifiers=[
            "Programming Language :: Python :: 3",
            "Topic :: Scientific/Engineering :: Artificial Intelligence",
        ],
    )


if __name__ == "__main__":
    main()
