from setuptools import setup, find_packages

setup(
    name="hsicluster",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "h5py~=3.12",
        "numpy>=1.26",
        "scipy>=1.11",
        "tqdm~=4.66",
        "matplotlib~=3.9",
        "scikit-learn~=1.7",
    ],
    extras_require={
        "dev": ["pytest"],
    },
    python_requires=">=3.9",
    description="K-Affine and spectral clustering of hyperspectral images",
    entry_points={
        "console_scripts": [
            "hsicluster=hsicluster.pipeline:main",
        ],
    },
)
