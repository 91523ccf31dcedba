"""
OCR Inference Engine - Package Setup Configuration
==================================================

Setuptools configuration for the ONNX Runtime OCR engine with
Tesseract fallback. Supports pip installation and development mode.
"""

from setuptools import setup, find_packages
from pathlib import Path

# Read README for long description
this_directory = Path(__file__).parent
long_description = (this_directory / "README.md").read_text(encoding='utf-8')

# Read requirements
requirements = []
requirements_file = this_directory / "requirements.txt"
if requirements_file.exists():
    requirements = requirements_file.read_text().strip().split('\n')
    requirements = [req.strip() for req in requirements if req.strip() and not req.startswith('#')]

setup(
    # Basic package information
    name="ocr-inference-engine",
    version="1.0.0",
    description="OCR inference engine with runtime backend selection and Tesseract fallback",
    long_description=long_description,
    long_description_content_type="text/markdown",

    # Package structure
    packages=find_packages(where="src"),
    package_dir={"": "src"},

    # Include additional files
    include_package_data=True,
    package_data={
        "ocr_inference": [
            "resources/*.yaml",
        ],
    },

    # Dependencies
    install_requires=requirements,

    # Optional dependencies for different use cases
    extras_require={
        "gpu": [
            "onnxruntime-gpu>=1.16.0",
        ],
        "dev": [
            "pytest>=7.0.0",
            "pytest-cov>=4.0.0",
        ],
    },

    python_requires=">=3.10",

    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Scientific/Engineering :: Image Recognition",
    ],

    keywords=[
        "ocr", "optical character recognition", "onnx", "onnxruntime",
        "text detection", "ctc", "tesseract",
    ],

    # Entry points for command-line tools
    entry_points={
        "console_scripts": [
            "ocr-inference=ocr_inference.cli:main",
        ],
    },

    zip_safe=False,
)
