from setuptools import setup, find_packages


setup(
    name="pymotioncorr",
    version="0.1.0",
    description="Chunked motion correction of large image stacks",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    python_requires=">=3.9",
    install_requires=[
        "numpy",
        "scipy",
        "scikit-image",
        "tifffile",
        "pydantic>=2",
        "opencv-python-headless",
        "pyyaml",
        "tomli; python_version < '3.11'",
    ],
    extras_require={
        "test": ["pytest"],
    },
    entry_points={
        "console_scripts": [
            "pymotioncorr=pymotioncorr.cli:main",
        ],
    },
)
